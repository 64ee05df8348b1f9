class DeadLinksError(Exception):
    """Base class for errors raised by deadlinks"""


class MalformedURLError(DeadLinksError, ValueError):
    """A URL that cannot be parsed into an absolute http(s) address"""

    def __init__(self, url: str, reason: str = 'not an absolute http(s) URL'):
        self.url = url
        self.reason = reason
        super().__init__(f'Malformed URL {url!r}: {reason}')
