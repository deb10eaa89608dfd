"""
AI Gateway — single point of contact with the generative-AI service.

Three domain operations, each one request/response round trip:
  1. generate_candidate_leads — web-search grounded, returns real business names
  2. generate_lead_details   — web-search grounded, 2-3 facts + up to 3 contacts + citations
  3. generate_email_draft    — plain JSON mode, no search (works on gathered facts)

The gateway owns exactly one client at a time. ``initialize`` swaps it
atomically; every operation resolves the client once at its start, so an
in-flight call finishes (or fails) on the instance it started with.

Errors are normalized at this boundary: credential problems become
``AuthError`` (structured status first, message substrings as a fallback),
bad model output becomes ``ParseError``, and everything else is a
``TransientError``. Nothing is retried here; retries are up to the caller.
"""

import logging
import re
from typing import Callable, Optional

import httpx
import openai
from openai import AsyncOpenAI

from config import (
    AI_API_BASE,
    CONNECT_TIMEOUT,
    MAX_CONTACTS_PER_LEAD,
    MAX_LEADS_TO_GENERATE,
    REQUEST_TIMEOUT,
    SEARCH_MODEL,
    TEXT_MODEL,
)
from errors import AuthError, GatewayError, NotInitializedError, ParseError, TransientError
from json_extract import parse_json_response
from models import (
    CandidateLead,
    ContactInfo,
    EmailDraft,
    GroundingChunk,
    GroundingChunkWeb,
    GroundingMetadata,
    LeadDetails,
    ResearchBrief,
)

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Prompts
# ──────────────────────────────────────────────

CANDIDATE_LEADS_PROMPT = """My business offers services described as: "{service_description}".
{service_url_line}

Using web search, find a list of up to {max_leads} REAL business names that fit the description of "{target_audience}" located in or primarily serving the "{target_area}" area.
These businesses should be potential leads for my company.
Consider various types of businesses that would match the audience description.

Return the list as a JSON array of objects, where each object has a "name" key.
Example: [{{"name": "Real Example Corp"}}, {{"name": "Local Actual Biz"}}]

Do not include any other text, comments, or explanations outside the JSON array.
If no plausible leads can be found, return an empty array [].
"""

LEAD_DETAILS_PROMPT = """My business offers services described as: "{service_description}".
{service_url_line}

For the REAL company named "{lead_name}", a potential lead fitting the description "{target_audience}" that could benefit from my services, use web search to find:

1. 2-3 distinct, VERIFIABLE pieces of personalized information or recent news/updates, specific enough to use in a personalized cold outreach email
   (e.g. a recent announcement on their website, a publicly known challenge in their sector, a growth area relevant to my services).
2. Up to {max_contacts} publicly listed contacts at "{lead_name}" relevant to my offering (name, role, email, phone where public).
   Mark at most ONE contact as the best person to address with "isPrimary": true.

Return ONLY a JSON object in this format:
{{
  "details": ["fact 1", "fact 2", "fact 3"],
  "contacts": [
    {{"name": "Jane Doe", "role": "Head of Operations", "email": "jane@example.com", "phone": "+1-555-0100", "isPrimary": true}}
  ]
}}

IMPORTANT:
- Only include contacts that actually appear in public sources. Do NOT invent names or emails.
- If no contacts can be found, return "contacts": [].
- Do not include any other text, comments, or explanations outside the JSON object.
"""

EMAIL_DRAFT_PROMPT = """My business offers services like: "{service_description}".
{service_url_style_line}

I am writing an outreach email to "{lead_name}", a company fitting the description "{target_audience}".
Personalized information gathered about them via web search:
{details_block}

Known contacts at {lead_name}:
{contacts_block}

Craft a highly personalized cold outreach email to "{lead_name}". The email should:
1. Have a compelling and relevant subject line.
2. Open with the salutation "{salutation}"
3. Reference one or more pieces of the personalized information to show genuine research.
4. Clearly and concisely explain how my services can specifically benefit {lead_name}, connecting to needs implied by the information above.
5. Keep a professional, respectful and engaging tone.
6. End with a clear, polite call to action (e.g. a brief introductory call).
7. Do NOT use placeholders like "[Your Name]" or "[Your Company Name]". Assume the email is from a single individual representing their service.

Return ONLY a JSON object with exactly two keys, "subject" and "body".
"""


def _service_url_line(brief: ResearchBrief, style: bool = False) -> str:
    if not brief.service_url:
        return ""
    line = f"My business website for additional context, tone, and style is: {brief.service_url}."
    if style:
        line += " Please emulate this style if appropriate."
    return line


def _format_contacts(contacts: list[ContactInfo]) -> str:
    if not contacts:
        return "- (none found)"
    lines = []
    for c in contacts:
        parts = [p for p in (c.name, c.role, c.email, c.phone) if p]
        label = " | ".join(parts) or "(unnamed contact)"
        if c.is_primary:
            label += " [primary]"
        lines.append(f"- {label}")
    return "\n".join(lines)


def salutation_for(lead_name: str, contacts: list[ContactInfo]) -> str:
    """Salutation driven by the primary contact, else the company team."""
    primary = next((c for c in contacts if c.is_primary), None)
    if primary and primary.name:
        return f"Dear {primary.name},"
    return f"Dear {lead_name} Team,"


# ──────────────────────────────────────────────
# Error classification
# ──────────────────────────────────────────────

# Last-resort markers for failures that don't carry a status code
AUTH_ERROR_MARKERS = (
    "api key not valid",
    "api_key_invalid",
    "invalid api key",
    "incorrect api key",
    "permission denied",
    "authentication required",
    "unauthorized",
)


def _is_auth_failure(exc: BaseException) -> bool:
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return True
    if isinstance(exc, openai.APIStatusError) and exc.status_code in (401, 403):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in AUTH_ERROR_MARKERS)


def _describe(operation: str, lead_name: Optional[str]) -> str:
    return f"{operation} for {lead_name}" if lead_name else operation


def classify_error(
    exc: BaseException,
    operation: str = "",
    lead_name: Optional[str] = None,
) -> GatewayError:
    """Map any failure to the gateway error taxonomy.

    GatewayErrors pass through unchanged (ParseError stays a ParseError).
    """
    if isinstance(exc, GatewayError):
        return exc
    if _is_auth_failure(exc):
        return AuthError(
            f"API key error ({_describe(operation, lead_name)}): {exc}. "
            "Please check your API key and its permissions.",
            operation=operation,
            lead_name=lead_name,
        )
    return TransientError(
        str(exc) or type(exc).__name__,
        operation=operation,
        lead_name=lead_name,
    )


# ──────────────────────────────────────────────
# Response helpers
# ──────────────────────────────────────────────

def _clean_email(email) -> Optional[str]:
    """Validate and clean an email address the model returned."""
    if not email or not isinstance(email, str):
        return None
    email = email.strip().lower()
    if re.match(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$", email):
        return email
    return None


def _clean_text(value) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def _parse_contacts(raw, max_contacts: int = MAX_CONTACTS_PER_LEAD) -> list[ContactInfo]:
    if not isinstance(raw, list):
        return []
    contacts = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        contact = ContactInfo(
            name=_clean_text(item.get("name")),
            role=_clean_text(item.get("role")),
            email=_clean_email(item.get("email")),
            phone=_clean_text(item.get("phone")),
            is_primary=True if item.get("isPrimary", item.get("is_primary")) is True else None,
        )
        if not any((contact.name, contact.role, contact.email, contact.phone)):
            continue
        contacts.append(contact)
        if len(contacts) >= max_contacts:
            break
    return contacts


def extract_grounding(message) -> Optional[GroundingMetadata]:
    """Collect url_citation annotations from a chat message, de-duplicated by URI."""
    chunks = []
    seen = set()
    for annotation in getattr(message, "annotations", None) or []:
        if getattr(annotation, "type", None) != "url_citation":
            continue
        citation = getattr(annotation, "url_citation", None)
        uri = getattr(citation, "url", None)
        if not uri or uri in seen:
            continue
        seen.add(uri)
        chunks.append(GroundingChunk(
            web=GroundingChunkWeb(uri=uri, title=getattr(citation, "title", None) or None)
        ))
    return GroundingMetadata(grounding_chunks=chunks) if chunks else None


def _default_client_factory(api_key: str) -> AsyncOpenAI:
    return AsyncOpenAI(
        api_key=api_key,
        base_url=AI_API_BASE,
        timeout=httpx.Timeout(REQUEST_TIMEOUT, connect=CONNECT_TIMEOUT),
        max_retries=0,  # retry policy belongs to the caller
    )


# ──────────────────────────────────────────────
# Gateway
# ──────────────────────────────────────────────

class AIGateway:
    """Owns the credentialed AI client and exposes the three lead operations.

    Args:
        client_factory: Builds a client from an API key. Defaults to AsyncOpenAI
            against ``AI_API_BASE``; tests pass a fake.
        search_model: Model used for the web-search grounded calls.
        text_model: Model used for the email draft.
        max_leads: Upper bound on candidate names per search.
    """

    def __init__(
        self,
        client_factory: Optional[Callable[[str], object]] = None,
        search_model: str = SEARCH_MODEL,
        text_model: str = TEXT_MODEL,
        max_leads: int = MAX_LEADS_TO_GENERATE,
    ):
        self._client_factory = client_factory or _default_client_factory
        self._client = None
        self.search_model = search_model
        self.text_model = text_model
        self.max_leads = max_leads

    # ── Lifecycle ────────────────────────────

    @property
    def is_initialized(self) -> bool:
        return self._client is not None

    def initialize(self, api_key: str) -> None:
        """Bind a new client to ``api_key``. No network call is made.

        Raises:
            AuthError: if the key is blank or the client can't be constructed.
        """
        if not api_key or not api_key.strip():
            self.clear()
            raise AuthError("API Key cannot be empty.", operation="initialize")
        try:
            client = self._client_factory(api_key.strip())
        except Exception as e:
            self.clear()
            logger.error("Failed to initialize AI client: %s", type(e).__name__)
            raise AuthError(f"Failed to initialize AI client: {e}", operation="initialize") from e
        self._client = client
        logger.info("AI client initialized")

    def clear(self) -> None:
        """Drop the active client. Safe to call repeatedly."""
        if self._client is not None:
            logger.info("AI client cleared")
        self._client = None

    def _require_client(self, operation: str, lead_name: Optional[str] = None):
        client = self._client
        if client is None:
            raise NotInitializedError(
                "AI Service not initialized. Please provide a valid API Key.",
                operation=operation,
                lead_name=lead_name,
            )
        return client

    async def _complete(self, client, operation: str, lead_name: Optional[str], **request):
        """Run one chat completion and return its first message, classifying failures."""
        try:
            response = await client.chat.completions.create(**request)
        except Exception as e:
            err = classify_error(e, operation, lead_name)
            logger.warning(
                "AI %s failed (%s): %s",
                _describe(operation, lead_name), type(err).__name__, str(e)[:200],
            )
            raise err from e
        if not response.choices:
            raise TransientError(
                f"Empty response from AI for {_describe(operation, lead_name)}",
                operation=operation,
                lead_name=lead_name,
            )
        return response.choices[0].message

    @staticmethod
    def _parse(text, context: str, expected, operation: str, lead_name: Optional[str]):
        try:
            return parse_json_response(text or "", context, expected=expected)
        except ParseError as e:
            e.operation = operation
            e.lead_name = lead_name
            raise

    # ── Operations ───────────────────────────

    async def generate_candidate_leads(self, brief: ResearchBrief) -> list[CandidateLead]:
        """Find up to ``max_leads`` real businesses matching the brief."""
        operation = "initial leads"
        client = self._require_client(operation)

        prompt = CANDIDATE_LEADS_PROMPT.format(
            service_description=brief.service_description,
            service_url_line=_service_url_line(brief),
            max_leads=self.max_leads,
            target_audience=brief.target_audience,
            target_area=brief.target_area,
        )
        message = await self._complete(
            client, operation, None,
            model=self.search_model,
            messages=[{"role": "user", "content": prompt}],
            web_search_options={},
        )
        data = self._parse(message.content, operation, None, operation, None)

        if not isinstance(data, list):
            logger.warning("Parsed leads is not an array (%s), treating as none", type(data).__name__)
            return []

        leads = []
        seen_names = set()
        for item in data:
            name = _clean_text(item.get("name")) if isinstance(item, dict) else None
            if not name or name.lower() in seen_names:
                continue
            seen_names.add(name.lower())
            leads.append(CandidateLead(name=name))
            if len(leads) >= self.max_leads:
                break

        logger.info("Generated %d candidate leads for %s in %s",
                    len(leads), brief.target_audience, brief.target_area)
        return leads

    async def generate_lead_details(self, lead_name: str, brief: ResearchBrief) -> LeadDetails:
        """Gather verifiable facts, contacts and source citations for one lead."""
        operation = "lead details"
        client = self._require_client(operation, lead_name)

        prompt = LEAD_DETAILS_PROMPT.format(
            service_description=brief.service_description,
            service_url_line=_service_url_line(brief),
            lead_name=lead_name,
            target_audience=brief.target_audience,
            max_contacts=MAX_CONTACTS_PER_LEAD,
        )
        message = await self._complete(
            client, operation, lead_name,
            model=self.search_model,
            messages=[{"role": "user", "content": prompt}],
            web_search_options={},
        )
        data = self._parse(message.content, f"details for {lead_name}", dict, operation, lead_name)

        raw_details = data.get("details")
        details = [d.strip() for d in raw_details if isinstance(d, str) and d.strip()] \
            if isinstance(raw_details, list) else []
        contacts = _parse_contacts(data.get("contacts"))
        grounding = extract_grounding(message)

        logger.info(
            "Details for %s: %d facts, %d contacts, %d sources",
            lead_name, len(details), len(contacts),
            len(grounding.grounding_chunks) if grounding else 0,
        )
        return LeadDetails(details=details, contacts=contacts, grounding_metadata=grounding)

    async def generate_email_draft(
        self,
        lead_name: str,
        details: list[str],
        contacts: list[ContactInfo],
        brief: ResearchBrief,
    ) -> EmailDraft:
        """Draft a personalized outreach email from already-gathered facts."""
        operation = "email draft"
        client = self._require_client(operation, lead_name)
        contacts = contacts or []

        details_block = "\n".join(f"- {d}" for d in details) if details else "- (no specific details found)"
        prompt = EMAIL_DRAFT_PROMPT.format(
            service_description=brief.service_description,
            service_url_style_line=_service_url_line(brief, style=True),
            lead_name=lead_name,
            target_audience=brief.target_audience,
            details_block=details_block,
            contacts_block=_format_contacts(contacts),
            salutation=salutation_for(lead_name, contacts),
        )
        message = await self._complete(
            client, operation, lead_name,
            model=self.text_model,
            messages=[{"role": "user", "content": prompt}],
            response_format={"type": "json_object"},
            temperature=0.7,
        )
        context = f"email draft for {lead_name}"
        data = self._parse(message.content, context, dict, operation, lead_name)

        subject = _clean_text(data.get("subject"))
        body = _clean_text(data.get("body"))
        if not subject or not body:
            raise ParseError(
                f"Email draft for {lead_name} is missing a subject or body",
                context=context,
                raw_excerpt=(message.content or "")[:200],
                operation=operation,
                lead_name=lead_name,
            )
        return EmailDraft(subject=subject, body=body)
