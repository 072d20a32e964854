"""
Core matching logic: supplier names to GLEIF LEI records.
"""

import os
import time
import random
import logging
from typing import Callable, List, Optional

from .client import GleifClient, GleifClientError
from .dataset import SupplierDataset
from .models import BatchSummary, CompanyRecord, MatchStatus, SupplierRecord
from .parser import parse_record, parse_reporting_exception

logger = logging.getLogger(__name__)

DEFAULT_BATCH_CAP = 40
DEFAULT_THROTTLE_MS = 250
DEFAULT_PREFETCH_LIMIT = 10

ProgressCallback = Callable[[int, int, SupplierRecord], None]


class NameMatcher:
    """Handles supplier name matching against the GLEIF registry."""

    def __init__(self, client: GleifClient, batch_cap: Optional[int] = None,
                 throttle_seconds: Optional[float] = None,
                 prefetch_limit: int = DEFAULT_PREFETCH_LIMIT,
                 rng: Optional[random.Random] = None,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize matcher.

        Args:
            client: GleifClient instance for API access
            batch_cap: Maximum names queried per batch (reads LEIMATCH_BATCH_CAP if not provided)
            throttle_seconds: Pause after each batch request (reads LEIMATCH_THROTTLE_MS if not provided)
            prefetch_limit: Number of batch matches whose exception reasons are fetched eagerly
            rng: Random source for sampling oversized batches
            sleep: Sleep function used for throttling
        """
        self.client = client
        if batch_cap is None:
            batch_cap = int(os.getenv('LEIMATCH_BATCH_CAP', DEFAULT_BATCH_CAP))
        if throttle_seconds is None:
            throttle_seconds = int(os.getenv('LEIMATCH_THROTTLE_MS', DEFAULT_THROTTLE_MS)) / 1000
        if batch_cap < 1:
            raise ValueError("batch_cap must be at least 1")
        if throttle_seconds < 0:
            raise ValueError("throttle_seconds cannot be negative")

        self.batch_cap = batch_cap
        self.throttle_seconds = throttle_seconds
        self.prefetch_limit = prefetch_limit
        self.rng = rng or random.Random()
        self.sleep = sleep

    def _search(self, name: str) -> Optional[CompanyRecord]:
        """Query the registry for the best candidate; transport errors propagate."""
        name = name.strip()
        if not name:
            return None

        logger.info(f"Matching supplier: {name}")
        candidates = self.client.search_by_name(name, page_size=1)
        if not candidates:
            logger.info(f"No LEI record found for {name}")
            return None

        record = parse_record(candidates[0])
        if record is None:
            logger.warning(f"Top candidate for {name} could not be parsed")
        return record

    def match_by_name(self, name: str) -> Optional[CompanyRecord]:
        """
        Match a single name to its top GLEIF candidate.

        Args:
            name: Free-text supplier name

        Returns:
            CompanyRecord of the first search result, or None on no result or failure
        """
        try:
            return self._search(name)
        except GleifClientError as e:
            logger.error(f"Error matching supplier {name}: {e}")
            return None

    def select_for_batch(self, keys: List[int]) -> List[int]:
        """
        Pick the rows a batch will query.

        Oversized inputs are sampled uniformly at random; the result keeps
        input order.
        """
        if len(keys) <= self.batch_cap:
            return list(keys)
        chosen = set(self.rng.sample(keys, self.batch_cap))
        logger.info(f"Processing {self.batch_cap} random suppliers out of {len(keys)}")
        return [key for key in keys if key in chosen]

    def match_batch(self, dataset: SupplierDataset,
                    progress: Optional[ProgressCallback] = None) -> BatchSummary:
        """
        Match the suppliers of a dataset, one request at a time.

        Rows outside the sample stay NOT_ATTEMPTED. A failed row becomes
        NO_MATCH and the batch continues.

        Args:
            dataset: Supplier dataset; matched rows are replaced in place
            progress: Optional callback(done, total, record) after each row

        Returns:
            BatchSummary with counts for the run
        """
        keys = dataset.keys()
        selected = self.select_for_batch(keys)
        summary = BatchSummary(total=len(keys), attempted=len(selected))

        for position, key in enumerate(selected):
            record = dataset.get(key)
            try:
                company = self._search(record.original_name)
            except GleifClientError as e:
                logger.error(f"Error matching supplier {record.original_name}: {e}")
                summary.errors += 1
                company = None

            if company is not None and position < self.prefetch_limit:
                company = self.prefetch_exception_reasons(company)

            updated = record.with_match(company)
            dataset.replace(updated)
            if company is None:
                summary.no_match += 1
            else:
                summary.matched += 1

            if progress:
                progress(position + 1, len(selected), updated)
            self.sleep(self.throttle_seconds)

        logger.info(f"Completed matching: {summary.matched} of {summary.attempted} suppliers matched")
        return summary

    def retry_record(self, dataset: SupplierDataset, key: int) -> Optional[SupplierRecord]:
        """
        Re-run the match for one row outside the batch loop.

        Returns:
            The updated record, or None if the row is already being retried
            or is already matched
        """
        if not dataset.mark_pending(key):
            logger.info(f"Retry already in progress for row {key}")
            return None
        try:
            record = dataset.get(key)
            if record.match_status is MatchStatus.MATCHED:
                return None

            company = self.match_by_name(record.original_name)
            if company is not None:
                company = self.prefetch_exception_reasons(company)

            updated = record.with_match(company)
            dataset.replace(updated)
            return updated
        finally:
            dataset.clear_pending(key)

    def prefetch_exception_reasons(self, company: CompanyRecord) -> CompanyRecord:
        """
        Attach reporting exception reason codes to a record's parent links.

        Only relationships that resolve to their reporting exception are
        fetched; a relationship with an lei-record link resolves to the
        parent entity and gets no reason. Best effort: a failed fetch
        leaves the link without a reason.
        """
        updates = {}
        for field in ('direct_parent', 'ultimate_parent'):
            links = getattr(company, field)
            if links is None or links.reason or not links.reporting_exception:
                continue
            if links.preferred_link() != links.reporting_exception:
                continue
            try:
                exception = parse_reporting_exception(self.client.get_json(links.reporting_exception))
            except GleifClientError as e:
                logger.warning(f"Error fetching {field} exception details for {company.lei}: {e}")
                continue
            if exception is not None and exception.reason_code:
                updates[field] = links.model_copy(update={"reason": exception.reason_code})

        return company.model_copy(update=updates) if updates else company
