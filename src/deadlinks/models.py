import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class ReferenceKind(str, Enum):
    LINK = 'link'
    IMAGE = 'image'


class Outcome(str, Enum):
    OK = 'ok'
    BROKEN = 'broken'
    WARNING = 'warning'
    REDIRECT = 'redirect'


class ErrorKind(str, Enum):
    """Why a page fetch or a link check did not succeed"""

    ACCESS_DENIED = 'access_denied'
    CIRCUIT_OPEN = 'circuit_open'
    CONNECTION_ERROR = 'connection_error'
    DNS_FAILURE = 'dns_failure'
    HTTP_CLIENT_ERROR = 'http_client_error'
    HTTP_SERVER_ERROR = 'http_server_error'
    TIMEOUT = 'timeout'
    TOO_MANY_REDIRECTS = 'too_many_redirects'


class Reference(BaseModel):
    """A single <a> or <img> pointer found in a page"""

    model_config = ConfigDict(frozen=True)

    kind: ReferenceKind = ReferenceKind.LINK
    text: str = ''
    url: str


class PageRecord(BaseModel):
    """Everything learned from fetching one page"""

    model_config = ConfigDict(frozen=True)

    content_type: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    final_url: Optional[str] = None
    references: List[Reference] = Field(default_factory=list)
    source: str = 'crawl'
    status_code: Optional[int] = None
    timestamp: datetime.datetime = Field(default_factory=_utcnow)
    title: str = 'Untitled'
    url: str

    @property
    def ok(self) -> bool:
        return self.error is None


class Occurrence(BaseModel):
    """Where a link target was referenced"""

    kind: ReferenceKind
    page: str
    text: str


class LinkVerdict(BaseModel):
    """Liveness result for one canonical link target"""

    checked: bool = True
    error_kind: Optional[ErrorKind] = None
    final_url: Optional[str] = None
    message: Optional[str] = None
    occurrences: List[Occurrence] = Field(default_factory=list)
    outcome: Outcome
    status_code: Optional[int] = None
    url: str


class FetchResult(BaseModel):
    """Outcome of a single HTTP exchange made by the fetcher"""

    body: Optional[str] = None
    final_url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    redirected: bool = False
    requested_url: str
    status_code: int

    @property
    def content_type(self) -> str:
        return self.headers.get('content-type', '').lower()

    @property
    def is_html(self) -> bool:
        return 'text/html' in self.content_type or 'application/xhtml' in self.content_type


class PageLinkIssue(BaseModel):
    """A broken or warning link as seen from one page"""

    kind: ReferenceKind
    message: Optional[str] = None
    outcome: Outcome
    status_code: Optional[int] = None
    text: str
    url: str


class PageSummary(BaseModel):
    """Per-page breakdown in the final report"""

    broken_links: List[PageLinkIssue] = Field(default_factory=list)
    error: Optional[str] = None
    images_count: int = 0
    links_count: int = 0
    source: str = 'crawl'
    status_code: Optional[int] = None
    title: str
    total_references: int = 0
    url: str
    warnings: List[PageLinkIssue] = Field(default_factory=list)


class ReportSummary(BaseModel):
    """Overall counts for a run"""

    broken_links: int = 0
    duration_seconds: Optional[float] = None
    end_time: Optional[datetime.datetime] = None
    links_checked: int = 0
    links_skipped: int = 0
    pages_with_errors: int = 0
    redirects: int = 0
    start_time: Optional[datetime.datetime] = None
    total_links: int = 0
    total_pages: int = 0
    warnings: int = 0
    working_links: int = 0


class Report(BaseModel):
    """The final report of a site check"""

    broken_links: List[LinkVerdict] = Field(default_factory=list)
    discovery_method: str = 'traditional'
    pages: List[PageSummary] = Field(default_factory=list)
    redirects: List[LinkVerdict] = Field(default_factory=list)
    spa_warning: Optional[str] = None
    start_url: str
    summary: ReportSummary = Field(default_factory=ReportSummary)
    warnings: List[LinkVerdict] = Field(default_factory=list)
