from .aggregator import ResultAggregator
from .checker import SiteChecker, check_site
from .config import CheckerConfig
from .core import Crawler
from .exceptions import DeadLinksError, MalformedURLError
from .models import LinkVerdict, Outcome, PageRecord, Reference, ReferenceKind, Report
from .validator import LinkValidator

__version__ = '1.0.0'
__all__ = [
    'CheckerConfig',
    'Crawler',
    'DeadLinksError',
    'LinkValidator',
    'LinkVerdict',
    'MalformedURLError',
    'Outcome',
    'PageRecord',
    'Reference',
    'ReferenceKind',
    'Report',
    'ResultAggregator',
    'SiteChecker',
    'check_site',
]
