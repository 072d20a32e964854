"""
leiMatchAPI - Match supplier names to GLEIF LEI records and resolve corporate hierarchies.
"""

from .client import GleifClient, GleifClientError
from .dataset import SupplierDataset
from .hierarchy import HierarchyAssembler, HierarchyBrowser
from .matcher import NameMatcher
from .models import CompanyRecord, HierarchyView, MatchStatus, ReportingException, SupplierRecord
from .parser import parse_record, parse_reporting_exception
from .resolver import LinkResolver

__version__ = "0.1.0"
__all__ = [
    "GleifClient",
    "GleifClientError",
    "SupplierDataset",
    "HierarchyAssembler",
    "HierarchyBrowser",
    "NameMatcher",
    "CompanyRecord",
    "HierarchyView",
    "MatchStatus",
    "ReportingException",
    "SupplierRecord",
    "parse_record",
    "parse_reporting_exception",
    "LinkResolver",
]
