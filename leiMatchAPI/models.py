"""
Pydantic models for registry records, hierarchy views and supplier rows.
"""

from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .utils import describe_exception_reason, describe_legal_form, describe_registration_status


class RelationshipLinks(BaseModel):
    """Links the registry exposes for one relationship of an LEI record."""
    model_config = ConfigDict(frozen=True)

    relationship_record: Optional[str] = None
    lei_record: Optional[str] = None
    reporting_exception: Optional[str] = None
    related: Optional[str] = None
    reason: Optional[str] = Field(None, description="Prefetched reporting exception reason code")

    @property
    def is_present(self) -> bool:
        return bool(self.relationship_record or self.lei_record
                    or self.reporting_exception or self.related)

    def preferred_link(self) -> Optional[str]:
        """
        Pick the link to resolve when several are present.

        A direct lei-record link wins, then a reporting exception, then the
        indirect relationship record.
        """
        return self.lei_record or self.reporting_exception or self.relationship_record


class CompanyRecord(BaseModel):
    """Canonical LEI record of a legal entity."""
    model_config = ConfigDict(frozen=True)

    lei: str = Field(..., min_length=1)
    legal_name: str
    address: str = ""
    jurisdiction: Optional[str] = None
    entity_status: Optional[str] = None
    registration_status: Optional[str] = None
    legal_form: Optional[str] = None
    legal_form_code: Optional[str] = None
    entity_category: Optional[str] = None
    registration_authority: Optional[str] = None
    initial_registration_date: Optional[str] = None
    last_update_date: Optional[str] = None
    next_renewal_date: Optional[str] = None
    bic: List[str] = []
    headquarters_address: Optional[str] = None
    associated_lei: Optional[str] = None
    direct_parent: Optional[RelationshipLinks] = None
    ultimate_parent: Optional[RelationshipLinks] = None
    direct_children: Optional[RelationshipLinks] = None

    @property
    def has_direct_parent(self) -> bool:
        return self.direct_parent is not None and self.direct_parent.is_present

    @property
    def has_ultimate_parent(self) -> bool:
        return self.ultimate_parent is not None and self.ultimate_parent.is_present

    @property
    def has_children(self) -> bool:
        return self.direct_children is not None and bool(self.direct_children.related)

    @property
    def legal_form_description(self) -> str:
        return describe_legal_form(self.legal_form_code)

    @property
    def registration_status_description(self) -> str:
        return describe_registration_status(self.registration_status)


class ReportingException(BaseModel):
    """A disclosed absence of parent data, with its coded reason."""
    model_config = ConfigDict(frozen=True)

    category: Optional[str] = None
    reason_code: Optional[str] = None
    valid_from: Optional[str] = None
    valid_to: Optional[str] = None
    reference: Optional[str] = None

    @property
    def scope(self) -> Optional[str]:
        """DIRECT or ULTIMATE, read from the exception category."""
        category = (self.category or "").upper()
        if "ULTIMATE" in category:
            return "ULTIMATE"
        if "DIRECT" in category:
            return "DIRECT"
        return None

    @property
    def reason_description(self) -> str:
        return describe_exception_reason(self.reason_code)


class LinkResolution(BaseModel):
    """Outcome of resolving a relationship link: an entity or an exception."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["entity", "exception"]
    record: Optional[CompanyRecord] = None
    exception: Optional[ReportingException] = None

    @model_validator(mode="after")
    def check_payload_matches_kind(self):
        if self.kind == "entity" and (self.record is None or self.exception is not None):
            raise ValueError("An entity resolution carries exactly a record")
        if self.kind == "exception" and (self.exception is None or self.record is not None):
            raise ValueError("An exception resolution carries exactly an exception")
        return self


class HierarchyView(BaseModel):
    """Corporate hierarchy around one entity."""
    model_config = ConfigDict(frozen=True)

    current: CompanyRecord
    direct_parent: Optional[CompanyRecord] = None
    direct_parent_exception: Optional[ReportingException] = None
    ultimate_parent: Optional[CompanyRecord] = None
    ultimate_parent_exception: Optional[ReportingException] = None
    children: List[CompanyRecord] = []
    is_partial: bool = False
    error: Optional[str] = None

    @model_validator(mode="after")
    def check_parent_slots(self):
        if self.direct_parent is not None and self.direct_parent_exception is not None:
            raise ValueError("Direct parent cannot be both an entity and an exception")
        if self.ultimate_parent is not None and self.ultimate_parent_exception is not None:
            raise ValueError("Ultimate parent cannot be both an entity and an exception")
        return self

    @property
    def has_relationships(self) -> bool:
        return bool(self.direct_parent or self.ultimate_parent or self.children
                    or self.direct_parent_exception or self.ultimate_parent_exception)

    def entities(self) -> List[CompanyRecord]:
        """Entities a user can pivot to, in display order."""
        pivots = []
        if self.ultimate_parent:
            pivots.append(self.ultimate_parent)
        if self.direct_parent and (
            not self.ultimate_parent or self.direct_parent.lei != self.ultimate_parent.lei
        ):
            pivots.append(self.direct_parent)
        pivots.extend(self.children)
        return pivots


class MatchStatus(str, Enum):
    NOT_ATTEMPTED = "not_attempted"
    NO_MATCH = "no_match"
    MATCHED = "matched"


class SupplierRecord(BaseModel):
    """One row of the uploaded supplier file and its match state."""
    model_config = ConfigDict(frozen=True)

    row_id: int
    original_name: str = ""
    supplier_id: str = ""
    organisation: str = ""
    relationship: str = ""
    status: str = ""
    extra_columns: Dict[str, str] = {}
    match_status: MatchStatus = MatchStatus.NOT_ATTEMPTED
    company: Optional[CompanyRecord] = None

    @field_validator('original_name', 'supplier_id', 'organisation', 'relationship', 'status')
    @classmethod
    def strip_text(cls, v):
        return v.strip()

    @model_validator(mode="after")
    def check_company_matches_status(self):
        if (self.company is not None) != (self.match_status is MatchStatus.MATCHED):
            raise ValueError("A company is present exactly when the supplier is matched")
        return self

    @property
    def can_retry(self) -> bool:
        return self.match_status in (MatchStatus.NOT_ATTEMPTED, MatchStatus.NO_MATCH)

    def with_match(self, company: Optional[CompanyRecord]) -> "SupplierRecord":
        """Return a copy in MATCHED state for a company, NO_MATCH for None."""
        if company is None:
            return self.model_copy(update={"match_status": MatchStatus.NO_MATCH, "company": None})
        return self.model_copy(update={"match_status": MatchStatus.MATCHED, "company": company})


class BatchSummary(BaseModel):
    """Counts reported after a batch matching run."""
    total: int = 0
    attempted: int = 0
    matched: int = 0
    no_match: int = 0
    errors: int = 0

    @property
    def not_attempted(self) -> int:
        return self.total - self.attempted
