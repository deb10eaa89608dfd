"""
Tests for pipeline_engine.py

Covers process_leads ordering, per-stage failure isolation, auth abort
semantics, event emission, and PipelineRun listener fan-out. The gateway is
the scriptable FakeGateway from conftest.
"""

import pytest
from unittest.mock import AsyncMock

from errors import AuthError, ParseError, TransientError
from models import LeadDetails, LeadStatus
from pipeline_engine import PipelineRun, process_leads
from conftest import FakeGateway, make_brief, make_lead


def _events_recorder():
    events = []

    async def listener(run, event):
        events.append(event)

    return events, listener


# ═══════════════════════════════════════════════
# PipelineRun
# ═══════════════════════════════════════════════

class TestPipelineRun:
    @pytest.mark.asyncio
    async def test_tags_events_with_session(self):
        events, listener = _events_recorder()
        run = PipelineRun("sess-1", listeners=[listener])
        await run.emit({"type": "init", "total": 0})
        assert events == [{"session_id": "sess-1", "type": "init", "total": 0}]

    @pytest.mark.asyncio
    async def test_subscribe(self):
        listener = AsyncMock()
        run = PipelineRun("s")
        run.subscribe(listener)
        await run.emit({"type": "x"})
        listener.assert_awaited_once()
        assert listener.await_args.args[0] is run

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_stop_others(self):
        events, good = _events_recorder()
        bad = AsyncMock(side_effect=RuntimeError("boom"))
        run = PipelineRun("s", listeners=[bad, good])
        await run.emit({"type": "x"})
        assert len(events) == 1


# ═══════════════════════════════════════════════
# process_leads
# ═══════════════════════════════════════════════

class TestProcessLeads:
    @pytest.mark.asyncio
    async def test_all_complete_in_order(self):
        leads = [make_lead(name=n) for n in ("A", "B", "C")]
        gateway = FakeGateway()
        outcome = await process_leads(leads, make_brief(), gateway, PipelineRun("s"))

        assert [lead.status for lead in leads] == [LeadStatus.COMPLETED] * 3
        assert gateway.calls == [
            ("details", "A"), ("email", "A"),
            ("details", "B"), ("email", "B"),
            ("details", "C"), ("email", "C"),
        ]
        assert outcome.stats["completed"] == 3
        assert not outcome.aborted
        assert outcome.auth_error is None

    @pytest.mark.asyncio
    async def test_enrichment_copied_onto_lead(self):
        lead = make_lead(name="A")
        await process_leads([lead], make_brief(), FakeGateway(), PipelineRun("s"))
        assert lead.details == ["A opened a second location", "A is hiring"]
        assert lead.contacts[0].name == "Jane Doe"
        assert lead.email_subject == "Helping A"
        assert lead.email_body.startswith("Dear Jane Doe,")

    @pytest.mark.asyncio
    async def test_details_failure_is_isolated(self):
        leads = [make_lead(name=n) for n in ("A", "B")]
        gateway = FakeGateway(details={"A": TransientError("timeout", operation="lead details", lead_name="A")})
        outcome = await process_leads(leads, make_brief(), gateway, PipelineRun("s"))

        assert leads[0].status == LeadStatus.ERROR_DETAILS
        assert "timeout" in leads[0].error_message
        assert leads[0].details is None
        assert leads[1].status == LeadStatus.COMPLETED
        assert ("email", "A") not in gateway.calls
        assert outcome.stats["error_details"] == 1

    @pytest.mark.asyncio
    async def test_email_failure_keeps_details(self):
        lead = make_lead(name="A")
        gateway = FakeGateway(emails={"A": ParseError("bad json", context="email draft for A")})
        outcome = await process_leads([lead], make_brief(), gateway, PipelineRun("s"))

        assert lead.status == LeadStatus.ERROR_EMAIL
        assert lead.details
        assert lead.contacts
        assert lead.email_subject is None
        assert lead.email_body is None
        assert outcome.stats["error_email"] == 1

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_transient(self):
        lead = make_lead(name="A")
        gateway = FakeGateway(details={"A": KeyError("weird")})
        await process_leads([lead], make_brief(), gateway, PipelineRun("s"))
        assert lead.status == LeadStatus.ERROR_DETAILS

    @pytest.mark.asyncio
    async def test_auth_error_aborts_run(self):
        leads = [make_lead(name=n) for n in ("A", "B", "C")]
        auth = AuthError("API key error", operation="lead details", lead_name="B")
        gateway = FakeGateway(details={"B": auth})
        outcome = await process_leads(leads, make_brief(), gateway, PipelineRun("s"))

        assert leads[0].status == LeadStatus.COMPLETED
        assert leads[1].status == LeadStatus.ERROR_DETAILS
        assert leads[2].status == LeadStatus.INITIAL
        assert outcome.aborted
        assert outcome.auth_error is auth
        assert ("details", "C") not in gateway.calls

    @pytest.mark.asyncio
    async def test_auth_error_on_email_aborts(self):
        leads = [make_lead(name=n) for n in ("A", "B")]
        gateway = FakeGateway(emails={"A": AuthError("revoked")})
        outcome = await process_leads(leads, make_brief(), gateway, PipelineRun("s"))
        assert leads[0].status == LeadStatus.ERROR_EMAIL
        assert leads[1].status == LeadStatus.INITIAL
        assert outcome.aborted

    @pytest.mark.asyncio
    async def test_uninitialized_gateway_aborts_before_any_call(self):
        leads = [make_lead(name="A")]
        gateway = FakeGateway(initialized=False)
        outcome = await process_leads(leads, make_brief(), gateway, PipelineRun("s"))
        assert outcome.aborted
        assert isinstance(outcome.auth_error, AuthError)
        assert leads[0].status == LeadStatus.INITIAL
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_non_initial_leads_skipped(self):
        leads = [
            make_lead(name="Done", status=LeadStatus.COMPLETED),
            make_lead(name="Failed", status=LeadStatus.ERROR_DETAILS),
            make_lead(name="New"),
        ]
        gateway = FakeGateway()
        outcome = await process_leads(leads, make_brief(), gateway, PipelineRun("s"))
        assert gateway.calls == [("details", "New"), ("email", "New")]
        assert outcome.stats["skipped"] == 2
        assert leads[0].status == LeadStatus.COMPLETED
        assert leads[1].status == LeadStatus.ERROR_DETAILS

    @pytest.mark.asyncio
    async def test_empty_list(self):
        events, listener = _events_recorder()
        outcome = await process_leads([], make_brief(), FakeGateway(), PipelineRun("s", [listener]))
        assert [e["type"] for e in events] == ["init", "complete"]
        assert outcome.stats["completed"] == 0

    @pytest.mark.asyncio
    async def test_no_details_still_drafts_email(self):
        lead = make_lead(name="A")
        gateway = FakeGateway(details={"A": LeadDetails(details=[], contacts=[])})
        await process_leads([lead], make_brief(), gateway, PipelineRun("s"))
        assert lead.status == LeadStatus.COMPLETED
        assert lead.details == []


# ═══════════════════════════════════════════════
# Events
# ═══════════════════════════════════════════════

class TestEvents:
    @pytest.mark.asyncio
    async def test_lead_events_per_transition(self):
        events, listener = _events_recorder()
        lead = make_lead(name="A")
        await process_leads([lead], make_brief(), FakeGateway(), PipelineRun("s", [listener]))

        lead_events = [e for e in events if e["type"] == "lead"]
        assert [e["status"] for e in lead_events] == ["fetching_details", "fetching_email", "completed"]
        assert lead_events[-1]["lead"]["emailSubject"] == "Helping A"
        assert all(e["session_id"] == "s" for e in events)
        assert events[0]["type"] == "init"
        assert events[-1]["type"] == "complete"

    @pytest.mark.asyncio
    async def test_state_visible_before_next_call(self):
        """Each transition is emitted before the gateway is called for the next stage."""
        seen = []
        gateway = FakeGateway()

        async def listener(run, event):
            if event["type"] == "lead":
                seen.append((event["status"], len(gateway.calls)))

        await process_leads([make_lead(name="A")], make_brief(), gateway, PipelineRun("s", [listener]))
        assert seen == [("fetching_details", 0), ("fetching_email", 1), ("completed", 2)]

    @pytest.mark.asyncio
    async def test_error_and_auth_events(self):
        events, listener = _events_recorder()
        gateway = FakeGateway(details={"A": AuthError("bad key")})
        await process_leads([make_lead(name="A")], make_brief(), gateway, PipelineRun("s", [listener]))
        types = [e["type"] for e in events]
        assert types == ["init", "lead", "lead", "error", "auth_error", "complete"]
        error = next(e for e in events if e["type"] == "error")
        assert error["stage"] == "details"
        assert error["error_type"] == "AuthError"
        assert events[-1]["aborted"] is True
