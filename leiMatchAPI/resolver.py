"""
Resolution of relationship links into related entities or reporting exceptions.
"""

import logging
from typing import Any, Dict, Optional

from .client import GleifClient, GleifClientError, GleifNotFoundError
from .models import LinkResolution, RelationshipLinks
from .parser import classify_resource, parse_record, parse_reporting_exception
from .utils import _dig

logger = logging.getLogger(__name__)


class LinkResolver:
    """Follows relationship links, including the hop through relationship records."""

    def __init__(self, client: GleifClient):
        """
        Initialize resolver with a registry client.

        Args:
            client: GleifClient used for every fetch
        """
        self.client = client

    def resolve_link(self, links: Optional[RelationshipLinks], strict: bool = False) -> Optional[LinkResolution]:
        """
        Materialize the entity or reporting exception behind a relationship.

        When several links are present the direct lei-record link is used
        first, then the reporting exception, then the relationship record.

        Args:
            links: Relationship descriptor of a CompanyRecord
            strict: Propagate transport errors instead of returning None

        Returns:
            LinkResolution tagged "entity" or "exception", or None when the
            relationship cannot be resolved

        Raises:
            GleifClientError: only when strict is set and a fetch fails
        """
        if links is None:
            return None
        url = links.preferred_link()
        if not url:
            return None

        try:
            return self._resolve_url(url)
        except GleifNotFoundError:
            logger.info(f"Relationship target not found: {url}")
            return None
        except GleifClientError as e:
            logger.error(f"Failed to resolve relationship link {url}: {e}")
            if strict:
                raise
            return None

    def _resolve_url(self, url: str) -> Optional[LinkResolution]:
        document = self.client.get_json(url)
        kind = classify_resource(document)

        if kind == "exception":
            exception = parse_reporting_exception(document)
            return LinkResolution(kind="exception", exception=exception) if exception else None

        if kind == "entity":
            record = parse_record(document)
            return LinkResolution(kind="entity", record=record) if record else None

        if kind == "relationship":
            target_url = self._end_node_url(document)
            if not target_url:
                logger.warning(f"Relationship record without an entity link: {url}")
                return None
            target = self.client.get_json(target_url)
            if classify_resource(target) != "entity":
                logger.warning(f"Relationship target is not an LEI record: {target_url}")
                return None
            record = parse_record(target)
            return LinkResolution(kind="entity", record=record) if record else None

        logger.warning(f"Unexpected resource shape at {url}")
        return None

    def _end_node_url(self, document: Dict[str, Any]) -> Optional[str]:
        """Find the link from a relationship record to its parent's LEI record."""
        data = document.get('data', document)
        for name in ('end-node', 'lei-record', 'parent'):
            related = _dig(data, 'relationships', name, 'links', 'related')
            if related:
                return related
        link = _dig(data, 'links', 'end-node')
        if link:
            return link

        end_node = _dig(data, 'attributes', 'relationship', 'endNode')
        if isinstance(end_node, dict) and end_node.get('id') and end_node.get('type', 'LEI') == 'LEI':
            return self.client.record_url(end_node['id'])
        return None
