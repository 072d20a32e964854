"""
Utility functions for leiMatchAPI.
"""

import pandas as pd
import numpy as np
from typing import Any, Dict, Optional


REGISTRATION_STATUS_DESCRIPTIONS: Dict[str, str] = {
    "ISSUED": "Active and in good standing",
    "LAPSED": "Registration has lapsed but can be renewed",
    "MERGED": "Entity has been merged into another entity",
    "RETIRED": "Entity is no longer operating",
    "ANNULLED": "Registration has been invalidated",
    "DUPLICATE": "This is a duplicate entry",
    "TRANSFERRED": "Entity has been transferred to another jurisdiction",
    "PENDING_ARCHIVAL": "Entity is pending removal from the database",
    "PENDING_VALIDATION": "Entity is awaiting validation",
    "ACTIVE": "Entity is active and operational",
}

LEGAL_FORM_DESCRIPTIONS: Dict[str, str] = {
    "8Z6G": "Limited Partnership (Kommanditgesellschaft - KG)",
    "FIBV": "Public Limited Company (Aktiengesellschaft - AG)",
    "570L": "Private Limited Company (GmbH)",
    "ZSJG": "Public Limited Company (SE)",
    "LJK9": "Registered Association (e.V.)",
    "54GR": "Public Limited Partnership (KGaA)",
    "7P3S": "Public Institution (Anstalt des öffentlichen Rechts)",
    "V6XX": "General Partnership (Offene Handelsgesellschaft - OHG)",
    "WDYE": "Cooperative (Genossenschaft)",
    "5Z1V": "Sole Proprietorship",
}

EXCEPTION_REASON_DESCRIPTIONS: Dict[str, str] = {
    "NATURAL_PERSONS": "Controlled by natural persons",
    "NON_CONSOLIDATING": "Parent does not prepare consolidated financial statements",
    "NO_KNOWN_PERSON": "No known person controls the entity",
    "NON_PUBLIC": "Parent information is not public",
    "NO_LEI": "Parent does not have an LEI",
    "BINDING_LEGAL_COMMITMENTS": "Disclosure prevented by binding legal commitments",
    "LEGAL_OBSTACLES": "Disclosure prevented by legal obstacles",
    "DISCLOSURE_DETRIMENTAL": "Disclosure would be detrimental to the entity or parent",
}


def describe_registration_status(status: Optional[str]) -> str:
    """Human-readable registration status; unknown statuses pass through."""
    if not status:
        return ""
    return REGISTRATION_STATUS_DESCRIPTIONS.get(status, status)


def describe_legal_form(code: Optional[str]) -> str:
    """Human-readable legal form for an ELF code; unmapped codes pass through."""
    if not code:
        return ""
    return LEGAL_FORM_DESCRIPTIONS.get(code, code)


def describe_exception_reason(reason: Optional[str]) -> str:
    """Human-readable reporting exception reason; unknown codes pass through."""
    if not reason:
        return ""
    return EXCEPTION_REASON_DESCRIPTIONS.get(reason, reason)


def _clean_value(value):
    """Clean a spreadsheet cell value into a plain stripped string."""
    if value is None:
        return ""
    if isinstance(value, (np.float64, np.float32, np.int64, np.int32)):
        if np.isnan(value) or np.isinf(value):
            return ""
    elif not isinstance(value, (list, dict)) and pd.isna(value):
        return ""
    return str(value).strip()


def _dig(payload: Any, *keys: str) -> Any:
    """Walk nested dictionaries, returning None as soon as a level is missing."""
    current = payload
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current
