"""
Pipeline Engine — The core enrichment loop for seeded leads.

Each lead goes through two stages, strictly one lead (and one AI call) at a
time, in seeding order:

    initial → fetching_details → fetching_email → completed
                      ↘ error_details        ↘ error_email

A failed stage is recorded on that lead and the loop moves on, except for an
AuthError, which stops the whole run so the caller can force a credential
reset. Leads after the failing one keep whatever status they had.

Every lead mutation is emitted on the PipelineRun *before* the next AI call,
so a listener (the session controller) can persist partial progress.

Usage:
    from pipeline_engine import PipelineRun, process_leads

    run = PipelineRun(session_id, listeners=[on_event])
    outcome = await process_leads(leads, brief, gateway, run)
"""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from ai_gateway import AIGateway, classify_error
from errors import AuthError, GatewayError, NotInitializedError
from models import Lead, LeadStatus, ResearchBrief, to_storage_dict

logger = logging.getLogger(__name__)

Listener = Callable[["PipelineRun", dict], Awaitable[None]]


class PipelineRun:
    """Event fan-out for one enrichment run, tagged with its session id.

    The tag lets listeners drop events from a run whose session is no
    longer the active one.
    """

    def __init__(self, session_id: Optional[str], listeners: Optional[list[Listener]] = None):
        self.session_id = session_id
        self._listeners: list[Listener] = list(listeners or [])

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    async def emit(self, event: dict) -> None:
        event = {"session_id": self.session_id, **event}
        for listener in self._listeners:
            try:
                await listener(self, event)
            except Exception as e:
                logger.error("Pipeline listener failed on %s event: %s",
                             event.get("type"), e, exc_info=True)


@dataclass
class RunOutcome:
    """What a run did. There is no run-level success flag; inspect the leads."""
    session_id: Optional[str]
    stats: dict = field(default_factory=lambda: {
        LeadStatus.COMPLETED.value: 0,
        LeadStatus.ERROR_DETAILS.value: 0,
        LeadStatus.ERROR_EMAIL.value: 0,
        "skipped": 0,
    })
    aborted: bool = False
    auth_error: Optional[AuthError] = None


async def _emit_lead(run: PipelineRun, index: int, total: int, lead: Lead) -> None:
    await run.emit({
        "type": "lead",
        "index": index,
        "total": total,
        "lead_id": lead.id,
        "status": lead.status.value,
        "lead": to_storage_dict(lead),
    })


async def _emit_error(run: PipelineRun, index: int, total: int, lead: Lead, stage: str, err: GatewayError) -> None:
    await run.emit({
        "type": "error",
        "index": index,
        "total": total,
        "lead_id": lead.id,
        "stage": stage,
        "error_type": type(err).__name__,
        "error": str(err)[:200],
    })


async def _finish(run: PipelineRun, outcome: RunOutcome) -> RunOutcome:
    if outcome.auth_error is not None:
        await run.emit({"type": "auth_error", "error": str(outcome.auth_error)[:200]})
    await run.emit({
        "type": "complete",
        "summary": dict(outcome.stats),
        "aborted": outcome.aborted,
    })
    return outcome


async def process_leads(
    leads: list[Lead],
    brief: ResearchBrief,
    gateway: AIGateway,
    run: PipelineRun,
) -> RunOutcome:
    """
    Drive ``leads`` through detail-fetch → email-draft, in order, one at a time.

    Leads are mutated in place. Only leads in ``initial`` are processed;
    anything else is left alone (already finished, or owned by another run).

    Args:
        leads: Seeded leads, in generation order
        brief: The research brief every prompt is built from
        gateway: Initialized AI gateway handle
        run: PipelineRun receiving lead / error / complete events

    Returns:
        RunOutcome with per-status counts and, if the run stopped early, the AuthError.
    """
    total = len(leads)
    outcome = RunOutcome(session_id=run.session_id)
    await run.emit({"type": "init", "total": total})

    for i, lead in enumerate(leads):
        if lead.status != LeadStatus.INITIAL:
            logger.debug("Skipping %s (status %s)", lead.name, lead.status.value)
            outcome.stats["skipped"] += 1
            continue

        # Credential may have been cleared between leads
        if not gateway.is_initialized:
            outcome.aborted = True
            outcome.auth_error = NotInitializedError(
                "AI Service not initialized. Please provide a valid API Key.",
                operation="lead details",
                lead_name=lead.name,
            )
            logger.error("Gateway no longer initialized, aborting run at lead %d/%d", i + 1, total)
            return await _finish(run, outcome)

        # ── Stage 1: details + contacts ──
        lead.advance(LeadStatus.FETCHING_DETAILS)
        await _emit_lead(run, i, total, lead)
        try:
            lead_details = await gateway.generate_lead_details(lead.name, brief)
        except Exception as e:
            err = classify_error(e, "lead details", lead.name)
            logger.warning("Details failed for %s: %s", lead.name, err)
            lead.advance(LeadStatus.ERROR_DETAILS, error_message=str(err))
            outcome.stats[LeadStatus.ERROR_DETAILS.value] += 1
            await _emit_lead(run, i, total, lead)
            await _emit_error(run, i, total, lead, "details", err)
            if isinstance(err, AuthError):
                outcome.aborted = True
                outcome.auth_error = err
                return await _finish(run, outcome)
            continue

        lead.advance(
            LeadStatus.FETCHING_EMAIL,
            details=lead_details.details,
            contacts=lead_details.contacts,
            grounding_metadata=lead_details.grounding_metadata,
        )
        await _emit_lead(run, i, total, lead)

        # ── Stage 2: email draft ──
        try:
            draft = await gateway.generate_email_draft(
                lead.name, lead_details.details, lead_details.contacts, brief,
            )
        except Exception as e:
            err = classify_error(e, "email draft", lead.name)
            logger.warning("Email draft failed for %s: %s", lead.name, err)
            lead.advance(LeadStatus.ERROR_EMAIL, error_message=str(err))
            outcome.stats[LeadStatus.ERROR_EMAIL.value] += 1
            await _emit_lead(run, i, total, lead)
            await _emit_error(run, i, total, lead, "email", err)
            if isinstance(err, AuthError):
                outcome.aborted = True
                outcome.auth_error = err
                return await _finish(run, outcome)
            continue

        lead.advance(
            LeadStatus.COMPLETED,
            email_subject=draft.subject,
            email_body=draft.body,
        )
        outcome.stats[LeadStatus.COMPLETED.value] += 1
        await _emit_lead(run, i, total, lead)
        logger.info("Lead %d/%d ready: %s", i + 1, total, lead.name)

    return await _finish(run, outcome)
