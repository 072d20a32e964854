"""
Data processing module for supplier file loading and result export.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

import pandas as pd

from .dataset import SupplierDataset
from .matcher import NameMatcher, ProgressCallback
from .models import BatchSummary, MatchStatus, SupplierRecord
from .utils import _clean_value, describe_exception_reason

logger = logging.getLogger(__name__)

# Header spellings recognised for each supplier field, matched case-sensitively
# and in order of preference.
COLUMN_VARIANTS: Dict[str, List[str]] = {
    'supplier_id': ['ID (Lieferanten Nr)', 'ID'],
    'original_name': ['Lieferant (Name)', 'Name'],
    'organisation': ['Organisation'],
    'relationship': ['Beziehung'],
    'status': ['Lieferanten-Status', 'Status'],
}

MATCH_RESULT_LABELS = {
    MatchStatus.NOT_ATTEMPTED: 'Not attempted',
    MatchStatus.NO_MATCH: 'No match found',
    MatchStatus.MATCHED: 'Matched successfully',
}


def read_table(input_file: Union[str, Path, pd.DataFrame]) -> pd.DataFrame:
    """
    Read a supplier file as strings.

    Args:
        input_file: Path to a .csv or .xlsx file, or a DataFrame

    Returns:
        DataFrame with every cell as a string
    """
    if isinstance(input_file, pd.DataFrame):
        logger.info("Loaded supplier data from DataFrame")
        return input_file.copy()

    path = Path(input_file)
    if path.suffix.lower() in ('.xlsx', '.xlsm'):
        df = pd.read_excel(path, engine='openpyxl', dtype=str)
        logger.info(f"Loaded supplier data from Excel file: {path}")
    elif path.suffix.lower() == '.csv':
        df = pd.read_csv(path, dtype=str, keep_default_na=False, encoding='utf-8-sig')
        logger.info(f"Loaded supplier data from CSV file: {path}")
    else:
        raise ValueError(f"Unsupported file type: {path.suffix or path.name}. Please upload a CSV file")
    return df


def _pick(row: Dict[str, str], variants: List[str]) -> str:
    for column in variants:
        value = row.get(column, "")
        if value:
            return value
    return ""


def rows_to_records(df: pd.DataFrame) -> List[SupplierRecord]:
    """
    Normalize table rows into SupplierRecord values.

    Rows whose cells are all blank are dropped. Columns outside the
    recognised variants are kept in extra_columns.
    """
    recognised = {column for variants in COLUMN_VARIANTS.values() for column in variants}
    records = []

    for row_id, raw in enumerate(df.to_dict(orient='records')):
        row = {str(column): _clean_value(value) for column, value in raw.items()}
        if not any(row.values()):
            continue

        fields = {field: _pick(row, variants) for field, variants in COLUMN_VARIANTS.items()}
        extra = {column: value for column, value in row.items() if column not in recognised}
        records.append(SupplierRecord(row_id=row_id, extra_columns=extra, **fields))

    return records


class DataProcessor:
    """Handles supplier loading, batch matching and result export."""

    def __init__(self, matcher: NameMatcher):
        """
        Initialize data processor.

        Args:
            matcher: NameMatcher instance for API calls
        """
        self.matcher = matcher

    def load_suppliers(self, input_file: Union[str, Path, pd.DataFrame]) -> SupplierDataset:
        """
        Load a supplier file into a fresh dataset.

        Raises:
            ValueError: if the file holds no non-blank rows
        """
        records = rows_to_records(read_table(input_file))
        if not records:
            raise ValueError("No valid supplier data found in CSV")
        logger.info(f"Processed {len(records)} supplier records")
        return SupplierDataset(records)

    def run_matching(self, dataset: SupplierDataset,
                     progress: Optional[ProgressCallback] = None) -> BatchSummary:
        return self.matcher.match_batch(dataset, progress=progress)

    def retry_unmatched(self, dataset: SupplierDataset) -> int:
        """Retry every NO_MATCH row once. Returns the number of new matches."""
        recovered = 0
        for record in dataset.snapshot():
            if record.match_status is not MatchStatus.NO_MATCH:
                continue
            updated = self.matcher.retry_record(dataset, record.row_id)
            if updated is not None and updated.match_status is MatchStatus.MATCHED:
                recovered += 1
        return recovered

    @staticmethod
    def to_dataframe(dataset: SupplierDataset) -> pd.DataFrame:
        """
        One output row per supplier: input columns followed by the match result.

        Match result columns carry a "match_" prefix. An input column whose
        name is already taken is kept under "<name> (input)".
        """
        results = []
        for record in dataset.snapshot():
            company = record.company
            row = {
                'supplier_id': record.supplier_id,
                'original_name': record.original_name,
                'organisation': record.organisation,
                'relationship': record.relationship,
                'status': record.status,
            }
            match = {
                'match_result': MATCH_RESULT_LABELS[record.match_status],
                'match_official_name': company.legal_name if company else '',
                'match_lei': company.lei if company else '',
                'match_address': company.address if company else '',
                'match_jurisdiction': company.jurisdiction or '' if company else '',
                'match_registration_status': company.registration_status or '' if company else '',
                'match_legal_form': company.legal_form or '' if company else '',
                'match_direct_parent_exception': _exception_text(company, 'direct_parent'),
                'match_ultimate_parent_exception': _exception_text(company, 'ultimate_parent'),
            }
            for column, value in record.extra_columns.items():
                row[_passthrough_name(column, row, match)] = value
            row.update(match)
            results.append(row)
        return pd.DataFrame(results)

    def export_results(self, dataset: SupplierDataset, output_file: Union[str, Path]) -> Path:
        """
        Write match results to a .csv or .xlsx file.

        Returns:
            Path of the written file
        """
        path = Path(output_file)
        df_output = self.to_dataframe(dataset)
        if path.suffix.lower() == '.xlsx':
            df_output.to_excel(path, index=False, engine='openpyxl')
        elif path.suffix.lower() == '.csv':
            df_output.to_csv(path, index=False, encoding='utf-8')
        else:
            raise ValueError(f"Unsupported output type: {path.suffix or path.name}")
        logger.info(f"Wrote {len(df_output)} result rows to {path}")
        return path


def _passthrough_name(column: str, *taken: Dict[str, str]) -> str:
    name = column
    while any(name in columns for columns in taken):
        name = f"{name} (input)"
    return name


def _exception_text(company, field: str) -> str:
    if company is None:
        return ''
    links = getattr(company, field)
    if links is None or not links.reason or links.preferred_link() != links.reporting_exception:
        return ''
    return describe_exception_reason(links.reason)
