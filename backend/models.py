"""
Pydantic Data Models

All structured data types used throughout the app:
  - ResearchBrief: The user's research input (service, area, audience, URL)
  - LeadStatus: Per-lead enrichment state machine
  - ContactInfo / GroundingMetadata: Enrichment payloads from the AI gateway
  - Lead: One candidate company and its accumulated enrichment state
  - SavedSearch: One persisted unit of work (brief + leads + summary)
  - CandidateLead / LeadDetails / EmailDraft: Gateway results
  - AppPhase: What the front-end should be showing

Persisted field names are camelCase (storage layout); Python attributes are
snake_case with aliases, and either spelling is accepted on input.
"""

import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from errors import BriefValidationError, InvalidTransitionError
from utils import new_id


class LeadStatus(str, Enum):
    """Lead enrichment states, in pipeline order."""
    INITIAL = "initial"
    FETCHING_DETAILS = "fetching_details"
    FETCHING_EMAIL = "fetching_email"
    COMPLETED = "completed"
    ERROR_DETAILS = "error_details"
    ERROR_EMAIL = "error_email"


TERMINAL_STATUSES = frozenset({
    LeadStatus.COMPLETED,
    LeadStatus.ERROR_DETAILS,
    LeadStatus.ERROR_EMAIL,
})

# Only forward moves. Terminal states have no outgoing edges within a run.
ALLOWED_TRANSITIONS: dict[LeadStatus, frozenset[LeadStatus]] = {
    LeadStatus.INITIAL: frozenset({LeadStatus.FETCHING_DETAILS}),
    LeadStatus.FETCHING_DETAILS: frozenset({LeadStatus.FETCHING_EMAIL, LeadStatus.ERROR_DETAILS}),
    LeadStatus.FETCHING_EMAIL: frozenset({LeadStatus.COMPLETED, LeadStatus.ERROR_EMAIL}),
    LeadStatus.COMPLETED: frozenset(),
    LeadStatus.ERROR_DETAILS: frozenset(),
    LeadStatus.ERROR_EMAIL: frozenset(),
}


class AppPhase(str, Enum):
    """Front-end phases exposed by the session controller."""
    AWAITING_API_KEY = "awaiting_credential"
    DASHBOARD = "dashboard"
    IDLE = "new_search_form"
    LOADING_INITIAL_LEADS = "loading_candidates"
    PROCESSING_LEAD_ENRICHMENT = "enriching"
    RESULTS_DISPLAYED = "results_shown"
    FATAL_ERROR = "fatal_error"


# ──────────────────────────────────────────────
# Research brief
# ──────────────────────────────────────────────

_URL_RE = re.compile(r"^https?://\S+\.\S+$", re.IGNORECASE)

# (label, minimum length) per field, used for validation messages
_BRIEF_RULES = {
    "service_description": ("Service description", 10),
    "target_area": ("Target area", 3),
    "target_audience": ("Target audience", 5),
}

_FIELD_ALIASES = {
    "service_description": "serviceDescription",
    "target_area": "targetArea",
    "target_audience": "targetAudience",
    "service_url": "serviceUrl",
}


class ResearchBrief(BaseModel):
    """Immutable research input. A changed brief means a new search."""
    model_config = ConfigDict(populate_by_name=True, frozen=True, str_strip_whitespace=True)

    service_description: str = Field(alias="serviceDescription")
    target_area: str = Field(alias="targetArea")
    target_audience: str = Field(alias="targetAudience")
    service_url: Optional[str] = Field(default=None, alias="serviceUrl")

    @field_validator("service_description", "target_area", "target_audience")
    @classmethod
    def _check_length(cls, value: str, info) -> str:
        label, min_len = _BRIEF_RULES[info.field_name]
        if not value:
            raise ValueError(f"{label} is required.")
        if len(value) < min_len:
            raise ValueError(f"{label} should be at least {min_len} characters.")
        return value

    @field_validator("service_url", mode="before")
    @classmethod
    def _blank_url_is_none(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return value

    @field_validator("service_url")
    @classmethod
    def _check_url(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not _URL_RE.match(value):
            raise ValueError("Service URL must be a valid http(s) URL.")
        return value


def build_brief(
    service_description: Optional[str],
    target_area: Optional[str],
    target_audience: Optional[str],
    service_url: Optional[str] = None,
) -> ResearchBrief:
    """Validate form input and build a ResearchBrief.

    Raises:
        BriefValidationError: with one message per invalid field.
    """
    try:
        return ResearchBrief(
            service_description=service_description or "",
            target_area=target_area or "",
            target_audience=target_audience or "",
            service_url=service_url,
        )
    except ValidationError as e:
        field_errors: dict[str, str] = {}
        for err in e.errors():
            loc = str(err["loc"][0]) if err.get("loc") else "brief"
            key = _FIELD_ALIASES.get(loc, loc)
            ctx_error = (err.get("ctx") or {}).get("error")
            field_errors.setdefault(key, str(ctx_error) if ctx_error else err["msg"])
        raise BriefValidationError(field_errors) from e


# ──────────────────────────────────────────────
# Enrichment payloads
# ──────────────────────────────────────────────

class ContactInfo(BaseModel):
    """A contact suggested by the AI for a lead."""
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    role: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    is_primary: Optional[bool] = Field(default=None, alias="isPrimary")


class GroundingChunkWeb(BaseModel):
    uri: str
    title: Optional[str] = None


class GroundingChunk(BaseModel):
    web: Optional[GroundingChunkWeb] = None


class GroundingMetadata(BaseModel):
    """Source citations attached to a grounded AI call."""
    model_config = ConfigDict(populate_by_name=True)

    grounding_chunks: list[GroundingChunk] = Field(default_factory=list, alias="groundingChunks")

    @property
    def sources(self) -> list[tuple[str, str]]:
        """(uri, title) pairs, title falling back to the uri."""
        return [
            (c.web.uri, c.web.title or c.web.uri)
            for c in self.grounding_chunks
            if c.web is not None
        ]


class CandidateLead(BaseModel):
    name: str


class LeadDetails(BaseModel):
    details: list[str] = Field(default_factory=list)
    contacts: list[ContactInfo] = Field(default_factory=list)
    grounding_metadata: Optional[GroundingMetadata] = None


class EmailDraft(BaseModel):
    subject: str
    body: str


# ──────────────────────────────────────────────
# Lead + saved search
# ──────────────────────────────────────────────

class Lead(BaseModel):
    """One candidate company moving through the enrichment pipeline."""
    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    id: str = Field(default_factory=new_id)
    name: str = Field(frozen=True)
    status: LeadStatus = LeadStatus.INITIAL
    error_message: Optional[str] = Field(default=None, alias="errorMessage")
    details: Optional[list[str]] = None
    contacts: Optional[list[ContactInfo]] = None
    email_subject: Optional[str] = Field(default=None, alias="emailSubject")
    email_body: Optional[str] = Field(default=None, alias="emailBody")
    grounding_metadata: Optional[GroundingMetadata] = Field(default=None, alias="groundingMetadata")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def primary_contact(self) -> Optional[ContactInfo]:
        for contact in self.contacts or []:
            if contact.is_primary:
                return contact
        return None

    def advance(self, status: LeadStatus, **updates) -> None:
        """Move to ``status`` (forward only) and apply field ``updates``."""
        status = LeadStatus(status)
        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Lead '{self.name}' cannot move from {self.status.value} to {status.value}"
            )
        for field_name, value in updates.items():
            setattr(self, field_name, value)
        self.status = status

    def reset(self) -> None:
        """Return to ``initial``, dropping partial enrichment. Only used by an explicit resume."""
        self.status = LeadStatus.INITIAL
        self.error_message = None
        self.details = None
        self.contacts = None
        self.email_subject = None
        self.email_body = None
        self.grounding_metadata = None


class SavedSearch(BaseModel):
    """A persisted research session."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    timestamp: int  # epoch ms of the last write
    user_input: ResearchBrief = Field(alias="userInput")
    leads: list[Lead] = Field(default_factory=list)
    summary: str = ""

    @property
    def is_fully_processed(self) -> bool:
        return all(lead.is_terminal for lead in self.leads)


def to_storage_dict(model: BaseModel) -> dict:
    """Serialize a model using the persisted (camelCase) layout."""
    return model.model_dump(by_alias=True, exclude_none=True, mode="json")
