DEFAULT_USER_AGENT = 'DeadLinksMustDie/4.0 (+https://github.com/deadlinks)'

DEFAULT_HEADERS = {
    'User-Agent': DEFAULT_USER_AGENT,
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.5',
}

DEFAULT_CONCURRENCY = 20
DEFAULT_MAX_PAGES = 2000
DEFAULT_PAGE_TIMEOUT = 10.0
DEFAULT_PROBE_TIMEOUT = 5.0
DEFAULT_MAX_REDIRECTS = 5
DEFAULT_REQUEST_DELAY = 0.5
DEFAULT_JITTER = 0.1
DEFAULT_MAX_RETRIES = 2
DEFAULT_BACKOFF = 0.5
DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_MAX_LINK_CONCURRENCY = 100
DEFAULT_MAX_BODY_BYTES = 64 * 1024

# idle pooled connections are dropped quickly, servers close them under fan-out
DEFAULT_KEEPALIVE_EXPIRY = 5.0

ANCHOR_TEXT_LIMIT = 100

# statuses on which the HEAD probe is retried as a GET
PROBE_REJECTED_STATUSES = frozenset({404, 405})
ACCESS_DENIED_STATUSES = frozenset({401, 403})

# same-origin URLs with these extensions are validated but never crawled as pages
DEFAULT_BLACKLIST_EXTENSIONS = {
    '.7z', '.avi', '.bmp', '.css', '.csv', '.doc', '.docx', '.eot', '.exe', '.gif', '.gz',
    '.ico', '.jpeg', '.jpg', '.js', '.json', '.map', '.mov', '.mp3', '.mp4', '.pdf', '.png',
    '.ppt', '.pptx', '.rar', '.svg', '.tar', '.ttf', '.wav', '.webm', '.webp', '.woff',
    '.woff2', '.xls', '.xlsx', '.xml', '.zip',
}

STATUS_MESSAGES = {
    400: 'Bad Request',
    401: 'Unauthorized',
    403: 'Forbidden',
    404: 'Not Found',
    405: 'Method Not Allowed',
    408: 'Request Timeout',
    410: 'Gone',
    429: 'Too Many Requests',
    500: 'Internal Server Error',
    502: 'Bad Gateway',
    503: 'Service Unavailable',
    504: 'Gateway Timeout',
}
