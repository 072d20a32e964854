"""
Parsing of GLEIF API payloads into CompanyRecord and ReportingException values.

Nothing in this module performs network I/O, and the public parse functions
never raise: a payload without the expected structure yields None.
"""

import logging
from typing import Any, Dict, Iterable, Optional

from pydantic import ValidationError

from .models import CompanyRecord, RelationshipLinks, ReportingException
from .utils import _dig

logger = logging.getLogger(__name__)

ENTITY_TYPE = "lei-records"
EXCEPTION_TYPE = "reporting-exceptions"
RELATIONSHIP_TYPE = "relationship-records"


def _unwrap(payload: Any) -> Optional[Dict[str, Any]]:
    """Accept either a bare resource or a {"data": resource} envelope."""
    if not isinstance(payload, dict):
        return None
    data = payload.get('data', payload) if 'attributes' not in payload else payload
    return data if isinstance(data, dict) else None


def format_address(parts: Iterable[Any]) -> str:
    """Join the non-empty address components with ", "."""
    return ", ".join(str(part) for part in parts if part)


def _address_parts(address: Dict[str, Any]) -> list:
    lines = address.get('addressLines') or []
    if isinstance(lines, str):
        lines = [lines]
    return [
        ", ".join(line for line in lines if line),
        address.get('city'),
        address.get('region'),
        address.get('postalCode'),
        address.get('country'),
    ]


def format_legal_address(entity: Dict[str, Any]) -> str:
    address = entity.get('legalAddress')
    if not isinstance(address, dict):
        return ""
    return format_address(_address_parts(address))


def format_headquarters_address(entity: Dict[str, Any]) -> Optional[str]:
    address = entity.get('headquartersAddress')
    if not isinstance(address, dict):
        return None
    return format_address(_address_parts(address)) or None


def format_legal_form(entity: Dict[str, Any]) -> Optional[str]:
    """Render the legal form as "<code>" or "<code> - <other>", or None."""
    legal_form = entity.get('legalForm')
    if not isinstance(legal_form, dict) or not legal_form.get('id'):
        return None
    other = legal_form.get('other')
    if other:
        return f"{legal_form['id']} - {other}"
    return legal_form['id']


def extract_relationship_links(resource: Dict[str, Any], name: str) -> Optional[RelationshipLinks]:
    """
    Collect the sub-links of one named relationship of a record.

    Args:
        resource: LEI record resource (the element inside "data")
        name: Relationship name, e.g. "direct-parent"

    Returns:
        RelationshipLinks with every link present, or None when the
        relationship carries none of the links we follow.
    """
    links = _dig(resource, 'relationships', name, 'links')
    if not isinstance(links, dict):
        return None

    extracted = RelationshipLinks(
        relationship_record=links.get('relationship-record') or None,
        lei_record=links.get('lei-record') or None,
        reporting_exception=links.get('reporting-exception') or None,
        related=links.get('related') or None,
    )
    return extracted if extracted.is_present else None


def classify_resource(resource: Any) -> Optional[str]:
    """
    Tell what kind of registry resource a payload holds.

    Returns:
        "entity", "exception", "relationship" or None for anything else
    """
    data = _unwrap(resource)
    if data is None:
        return None

    resource_type = data.get('type')
    if resource_type == ENTITY_TYPE:
        return "entity"
    if resource_type == EXCEPTION_TYPE:
        return "exception"
    if resource_type == RELATIONSHIP_TYPE:
        return "relationship"

    attributes = data.get('attributes')
    if not isinstance(attributes, dict):
        return None
    if isinstance(attributes.get('entity'), dict):
        return "entity"
    if 'reason' in attributes or 'exceptionReason' in attributes:
        return "exception"
    if isinstance(attributes.get('relationship'), dict):
        return "relationship"
    return None


def parse_record(payload: Any) -> Optional[CompanyRecord]:
    """
    Normalize a GLEIF LEI record into a CompanyRecord.

    Args:
        payload: LEI record resource, or a response envelope holding one

    Returns:
        CompanyRecord, or None when the payload lacks the record structure
    """
    try:
        return _parse_record(payload)
    except (AttributeError, KeyError, TypeError, ValueError, ValidationError) as e:
        logger.warning(f"Could not parse LEI record: {e}")
        return None


def _parse_record(payload: Any) -> Optional[CompanyRecord]:
    data = _unwrap(payload)
    if data is None:
        return None

    attributes = data.get('attributes')
    if not isinstance(attributes, dict):
        return None
    entity = attributes.get('entity')
    if not isinstance(entity, dict):
        return None

    lei = data.get('id') or attributes.get('lei')
    legal_name = _dig(entity, 'legalName', 'name')
    if not lei or not legal_name:
        return None

    registration = attributes.get('registration') or {}
    bic = attributes.get('bic') or []
    if isinstance(bic, str):
        bic = [bic]

    return CompanyRecord(
        lei=lei,
        legal_name=legal_name,
        address=format_legal_address(entity),
        jurisdiction=entity.get('jurisdiction'),
        entity_status=entity.get('status'),
        registration_status=registration.get('status'),
        legal_form=format_legal_form(entity),
        legal_form_code=_dig(entity, 'legalForm', 'id'),
        entity_category=entity.get('category') or None,
        registration_authority=registration.get('managingLou'),
        initial_registration_date=registration.get('initialRegistrationDate'),
        last_update_date=registration.get('lastUpdateDate'),
        next_renewal_date=registration.get('nextRenewalDate'),
        bic=list(bic),
        headquarters_address=format_headquarters_address(entity),
        associated_lei=_dig(entity, 'associatedEntity', 'lei'),
        direct_parent=extract_relationship_links(data, 'direct-parent'),
        ultimate_parent=extract_relationship_links(data, 'ultimate-parent'),
        direct_children=extract_relationship_links(data, 'direct-children'),
    )


def parse_reporting_exception(payload: Any) -> Optional[ReportingException]:
    """
    Parse a reporting-exceptions resource.

    Args:
        payload: Reporting exception resource, or a response envelope holding one

    Returns:
        ReportingException, or None when the payload is not an exception
    """
    data = _unwrap(payload)
    if data is None or classify_resource(data) != "exception":
        return None

    attributes = data.get('attributes')
    if not isinstance(attributes, dict):
        return None

    reference = attributes.get('reference')
    if isinstance(reference, list):
        reference = ", ".join(str(item) for item in reference if item) or None

    try:
        return ReportingException(
            category=attributes.get('category') or attributes.get('exceptionCategory'),
            reason_code=attributes.get('reason') or attributes.get('exceptionReason'),
            valid_from=attributes.get('validFrom'),
            valid_to=attributes.get('validTo'),
            reference=reference,
        )
    except ValidationError as e:
        logger.warning(f"Could not parse reporting exception: {e}")
        return None
