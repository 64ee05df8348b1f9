import logging
from enum import Enum

from .constants import DEFAULT_FAILURE_THRESHOLD

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = 'closed'
    OPEN = 'open'


class CircuitBreaker:
    """
    Per-host breaker: closed until `threshold` consecutive request failures, then open for good.

    Any answer from the server, good or bad, proves the host is reachable and resets the count.
    There is no half-open state; a host that tripped is not probed again during the run.
    """

    def __init__(self, threshold: int = DEFAULT_FAILURE_THRESHOLD, name: str = ''):
        if threshold < 1:
            raise ValueError('threshold must be at least 1')
        self.threshold = threshold
        self.name = name
        self.state = CircuitState.CLOSED
        self.consecutive_failures = 0

    @property
    def is_open(self) -> bool:
        return self.state is CircuitState.OPEN

    def record_success(self) -> None:
        self.consecutive_failures = 0

    def record_http_response(self, status_code: int) -> None:
        self.consecutive_failures = 0

    def record_transport_failure(self) -> None:
        if self.is_open:
            return
        self.consecutive_failures += 1
        if self.consecutive_failures >= self.threshold:
            self.state = CircuitState.OPEN
            logger.warning(
                f'Circuit opened for {self.name or "host"} after {self.consecutive_failures} consecutive failures'
            )
