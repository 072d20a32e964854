"""
Assembly of the corporate hierarchy around an LEI record.
"""

import itertools
import logging
import threading
from typing import List, Optional, Tuple, Union

from .client import GleifClient, GleifClientError, GleifNotFoundError
from .models import CompanyRecord, HierarchyView, RelationshipLinks, ReportingException
from .parser import parse_record
from .resolver import LinkResolver

logger = logging.getLogger(__name__)

CHILDREN_PAGE_SIZE = 10
DIRECT_EXCEPTION_CATEGORY = "DIRECT_ACCOUNTING_CONSOLIDATION_PARENT"
ULTIMATE_EXCEPTION_CATEGORY = "ULTIMATE_ACCOUNTING_CONSOLIDATION_PARENT"

ParentSlot = Tuple[Optional[CompanyRecord], Optional[ReportingException]]


class HierarchyAssembler:
    """Builds HierarchyView values: direct parent, ultimate parent and children."""

    def __init__(self, client: GleifClient, resolver: Optional[LinkResolver] = None,
                 children_page_size: int = CHILDREN_PAGE_SIZE):
        """
        Initialize assembler.

        Args:
            client: GleifClient for the children listing and root lookups
            resolver: LinkResolver for parent links (built from client if omitted)
            children_page_size: Maximum number of children fetched
        """
        self.client = client
        self.resolver = resolver or LinkResolver(client)
        self.children_page_size = children_page_size

    def assemble(self, root: CompanyRecord) -> HierarchyView:
        """
        Resolve the relationships of a record into a HierarchyView.

        Each branch is fetched independently. A branch that fails outright
        is left empty and marks the view as partial; this method does not
        raise.

        Args:
            root: Record whose hierarchy is shown

        Returns:
            HierarchyView with root as current
        """
        errors: List[str] = []

        direct_parent, direct_exception = self._resolve_parent(
            root.direct_parent, DIRECT_EXCEPTION_CATEGORY, "direct parent", errors)
        ultimate_parent, ultimate_exception = self._resolve_parent(
            root.ultimate_parent, ULTIMATE_EXCEPTION_CATEGORY, "ultimate parent", errors)
        children = self._fetch_children(root.direct_children, errors)

        if errors:
            logger.warning(f"Partial hierarchy for {root.lei}: {'; '.join(errors)}")

        return HierarchyView(
            current=root,
            direct_parent=direct_parent,
            direct_parent_exception=direct_exception,
            ultimate_parent=ultimate_parent,
            ultimate_parent_exception=ultimate_exception,
            children=children,
            is_partial=bool(errors),
            error="; ".join(errors) if errors else None,
        )

    def assemble_for_lei(self, lei: str) -> Optional[HierarchyView]:
        """
        Fetch a record by LEI and assemble its hierarchy.

        Returns:
            HierarchyView, or None when the root record cannot be fetched
        """
        try:
            root = parse_record(self.client.get_record(lei))
        except GleifNotFoundError:
            logger.info(f"No LEI record for {lei}")
            return None
        except GleifClientError as e:
            logger.error(f"Error fetching LEI record {lei}: {e}")
            return None
        if root is None:
            logger.warning(f"Unparseable LEI record for {lei}")
            return None
        return self.assemble(root)

    def _resolve_parent(self, links: Optional[RelationshipLinks], category: str,
                        label: str, errors: List[str]) -> ParentSlot:
        if links is None or not links.is_present:
            return None, None
        try:
            resolution = self.resolver.resolve_link(links, strict=True)
        except GleifClientError as e:
            errors.append(f"Failed to load {label}: {e}")
            return None, None
        except Exception as e:
            logger.exception(f"Unexpected error resolving {label}")
            errors.append(f"Failed to load {label}: {e}")
            return None, None

        if resolution is None:
            return None, None
        if resolution.kind == "exception":
            exception = resolution.exception
            if not exception.category:
                exception = exception.model_copy(update={"category": category})
            return None, exception
        return resolution.record, None

    def _fetch_children(self, links: Optional[RelationshipLinks], errors: List[str]) -> List[CompanyRecord]:
        if links is None or not links.related:
            return []
        try:
            resources = self.client.list_children(links.related, page_size=self.children_page_size)
        except GleifNotFoundError:
            return []
        except Exception as e:
            logger.error(f"Error fetching child companies: {e}")
            errors.append(f"Failed to load subsidiaries: {e}")
            return []

        children = []
        for resource in resources[:self.children_page_size]:
            child = parse_record(resource)
            if child is None:
                logger.warning("Skipping malformed child record")
                continue
            children.append(child)
        return children


class HierarchyBrowser:
    """
    Holds the hierarchy currently on display and re-roots it on request.

    Every navigation takes a new generation token; a result is applied only
    while its token is still the latest, so a slow fetch that was superseded
    by a later navigation never overwrites the newer view.
    """

    def __init__(self, assembler: HierarchyAssembler):
        self.assembler = assembler
        self.current_view: Optional[HierarchyView] = None
        self._tokens = itertools.count(1)
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def generation(self) -> int:
        return self._generation

    def begin(self) -> int:
        """Start a navigation and return its token."""
        with self._lock:
            self._generation = next(self._tokens)
            return self._generation

    def commit(self, token: int, view: Optional[HierarchyView]) -> bool:
        """Apply a view if token is still current. Returns whether it was applied."""
        with self._lock:
            if token != self._generation:
                logger.debug(f"Discarding stale hierarchy result (token {token}, current {self._generation})")
                return False
            self.current_view = view
            return True

    def navigate(self, root: Union[CompanyRecord, str]) -> Optional[HierarchyView]:
        """
        Replace the current view with a freshly assembled hierarchy.

        Args:
            root: New root record, or its LEI

        Returns:
            The new view, or None if it was superseded or could not be built
        """
        token = self.begin()
        if isinstance(root, CompanyRecord):
            view = self.assembler.assemble(root)
        else:
            view = self.assembler.assemble_for_lei(root)
        return view if self.commit(token, view) else None

    def select(self, index: int) -> Optional[HierarchyView]:
        """Re-root on the index-th pivot entity of the current view."""
        if self.current_view is None:
            raise ValueError("No hierarchy loaded")
        entities = self.current_view.entities()
        if not 0 <= index < len(entities):
            raise IndexError(f"No entity at position {index}")
        return self.navigate(entities[index])
