from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from .constants import (
    DEFAULT_BACKOFF,
    DEFAULT_CONCURRENCY,
    DEFAULT_FAILURE_THRESHOLD,
    DEFAULT_JITTER,
    DEFAULT_MAX_BODY_BYTES,
    DEFAULT_MAX_LINK_CONCURRENCY,
    DEFAULT_MAX_PAGES,
    DEFAULT_MAX_REDIRECTS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PAGE_TIMEOUT,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_REQUEST_DELAY,
)
from .utils import normalize_url


class CheckerConfig(BaseModel):
    """Settings for one site check"""

    backoff: float = Field(DEFAULT_BACKOFF, ge=0)
    blacklist_extensions: Optional[List[str]] = None
    concurrency: int = Field(DEFAULT_CONCURRENCY, ge=1)
    failure_threshold: int = Field(DEFAULT_FAILURE_THRESHOLD, ge=1)
    jitter: float = Field(DEFAULT_JITTER, ge=0)
    max_body_bytes: int = Field(DEFAULT_MAX_BODY_BYTES, ge=1)
    max_link_concurrency: int = Field(DEFAULT_MAX_LINK_CONCURRENCY, ge=1)
    max_pages: int = Field(DEFAULT_MAX_PAGES, ge=1)
    max_redirects: int = Field(DEFAULT_MAX_REDIRECTS, ge=0)
    max_retries: int = Field(DEFAULT_MAX_RETRIES, ge=0)
    page_timeout: float = Field(DEFAULT_PAGE_TIMEOUT, gt=0)
    probe_timeout: float = Field(DEFAULT_PROBE_TIMEOUT, gt=0)
    request_delay: float = Field(DEFAULT_REQUEST_DELAY, ge=0)
    start_url: str
    use_sitemap_fallback: bool = True
    user_agent: Optional[str] = None
    verify_ssl: bool = True

    @field_validator('start_url')
    @classmethod
    def _start_url_must_normalize(cls, value: str) -> str:
        normalize_url(value)
        return value.strip()

    @property
    def max_connections(self) -> int:
        """Pool size covering both the crawl and the link checks"""
        return self.concurrency + self.max_link_concurrency
