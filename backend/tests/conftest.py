"""
Shared test fixtures for the entire test suite.

Provides:
  - Memory-only LocalStorage / SearchStore
  - Fake AI clients shaped like AsyncOpenAI chat completions
  - A scriptable fake AIGateway for pipeline / controller tests
  - Sample data factories for briefs, leads, saved searches
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from errors import NotInitializedError

# ── Sample data factories ──────────────────────


def make_brief(**overrides):
    """Create a ResearchBrief with sensible defaults."""
    from models import ResearchBrief

    defaults = {
        "service_description": "Managed IT support for small offices",
        "target_area": "Austin, TX",
        "target_audience": "independent dental clinics",
        "service_url": None,
    }
    defaults.update(overrides)
    return ResearchBrief(**defaults)


def make_lead(**overrides):
    """Create a Lead with sensible defaults."""
    from models import Lead

    defaults = {"name": "Acme Dental"}
    defaults.update(overrides)
    return Lead(**defaults)


def make_saved_search(**overrides):
    """Create a SavedSearch with sensible defaults."""
    from models import SavedSearch
    from utils import new_id, summarize_brief

    brief = overrides.pop("user_input", None) or make_brief()
    defaults = {
        "id": new_id(),
        "timestamp": 1_700_000_000_000,
        "user_input": brief,
        "leads": [make_lead()],
        "summary": summarize_brief(brief),
    }
    defaults.update(overrides)
    return SavedSearch(**defaults)


# ── Fake OpenAI objects ──────────────────────

def make_url_citation(url, title=None):
    return SimpleNamespace(
        type="url_citation",
        url_citation=SimpleNamespace(url=url, title=title, start_index=0, end_index=1),
    )


def make_completion(content, annotations=None):
    """Shape of an AsyncOpenAI chat completion with one choice."""
    if not isinstance(content, str):
        content = json.dumps(content)
    message = SimpleNamespace(content=content, annotations=annotations or [], role="assistant")
    return SimpleNamespace(choices=[SimpleNamespace(message=message, index=0)])


def make_openai_client(*responses):
    """MagicMock client whose chat.completions.create returns/raises ``responses`` in order."""
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=list(responses))
    return client


def make_status_error(cls=openai.AuthenticationError, status=401, message="Incorrect API key provided"):
    """Build a real openai status error without a network call."""
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(status, request=request)
    return cls(message, response=response, body=None)


# ── Fake gateway ──────────────────────

class FakeGateway:
    """Scriptable stand-in for AIGateway.

    ``details`` / ``emails`` map a lead name to a LeadDetails / EmailDraft or
    an exception to raise. Every call is recorded in ``calls`` in order.
    """

    def __init__(self, candidates=None, details=None, emails=None, initialized=True):
        self.candidates = candidates if candidates is not None else []
        self.details = details or {}
        self.emails = emails or {}
        self.calls = []
        self.initialized = initialized
        self.initialize_error = None

    @property
    def is_initialized(self):
        return self.initialized

    def initialize(self, api_key):
        if self.initialize_error is not None:
            self.initialized = False
            raise self.initialize_error
        self.initialized = True
        self.calls.append(("initialize", api_key))

    def clear(self):
        self.initialized = False
        self.calls.append(("clear", None))

    async def generate_candidate_leads(self, brief):
        self.calls.append(("candidates", brief.target_audience))
        if not self.initialized:
            raise NotInitializedError("AI Service not initialized. Please provide a valid API Key.")
        if isinstance(self.candidates, BaseException):
            raise self.candidates
        if callable(self.candidates):
            return await self.candidates(brief)
        return list(self.candidates)

    async def generate_lead_details(self, lead_name, brief):
        self.calls.append(("details", lead_name))
        result = self._lookup(self.details, lead_name, "details")
        if isinstance(result, BaseException):
            raise result
        return result

    async def generate_email_draft(self, lead_name, details, contacts, brief):
        self.calls.append(("email", lead_name))
        result = self._lookup(self.emails, lead_name, "email")
        if isinstance(result, BaseException):
            raise result
        return result

    @staticmethod
    def _lookup(table, lead_name, kind):
        from models import ContactInfo, EmailDraft, LeadDetails

        if lead_name in table:
            return table[lead_name]
        if kind == "details":
            return LeadDetails(
                details=[f"{lead_name} opened a second location", f"{lead_name} is hiring"],
                contacts=[ContactInfo(name="Jane Doe", role="Owner", is_primary=True)],
            )
        return EmailDraft(subject=f"Helping {lead_name}", body="Dear Jane Doe,\n\nHello.")


# ── Fixtures ──────────────────────

@pytest.fixture
def memory_storage():
    from storage import LocalStorage
    return LocalStorage(path=None)


@pytest.fixture
def search_store(memory_storage):
    from search_store import SearchStore
    return SearchStore(memory_storage)


@pytest.fixture
def brief():
    return make_brief()
