"""
In-memory supplier dataset for one matching session.
"""

import threading
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from .models import MatchStatus, SupplierRecord


class SupplierDataset:
    """
    Ordered store of SupplierRecord values keyed by row_id.

    Records are immutable; an update replaces the record stored under its
    key. Nothing is persisted.
    """

    def __init__(self, records: Iterable[SupplierRecord] = ()):
        self._records: Dict[int, SupplierRecord] = {}
        self._pending: Set[int] = set()
        self._lock = threading.Lock()
        for record in records:
            if record.row_id in self._records:
                raise ValueError(f"Duplicate row id: {record.row_id}")
            self._records[record.row_id] = record

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[SupplierRecord]:
        return iter(self.snapshot())

    def __contains__(self, key: int) -> bool:
        return key in self._records

    def keys(self) -> List[int]:
        with self._lock:
            return list(self._records)

    def get(self, key: int) -> Optional[SupplierRecord]:
        with self._lock:
            return self._records.get(key)

    def replace(self, record: SupplierRecord) -> None:
        """
        Store a new version of an existing record.

        Raises:
            KeyError: if no record has this row_id
            ValueError: if the update would return an attempted row to NOT_ATTEMPTED
        """
        with self._lock:
            current = self._records.get(record.row_id)
            if current is None:
                raise KeyError(record.row_id)
            if (record.match_status is MatchStatus.NOT_ATTEMPTED
                    and current.match_status is not MatchStatus.NOT_ATTEMPTED):
                raise ValueError(f"Row {record.row_id} cannot revert to not attempted")
            self._records[record.row_id] = record

    def snapshot(self) -> Tuple[SupplierRecord, ...]:
        """Read-only view of all records, in input order."""
        with self._lock:
            return tuple(self._records.values())

    def counts(self) -> Dict[MatchStatus, int]:
        counts = {status: 0 for status in MatchStatus}
        for record in self.snapshot():
            counts[record.match_status] += 1
        return counts

    def mark_pending(self, key: int) -> bool:
        """Flag a row as being retried. Returns False if it already was."""
        with self._lock:
            if key not in self._records:
                raise KeyError(key)
            if key in self._pending:
                return False
            self._pending.add(key)
            return True

    def clear_pending(self, key: int) -> None:
        with self._lock:
            self._pending.discard(key)

    def is_pending(self, key: int) -> bool:
        with self._lock:
            return key in self._pending
