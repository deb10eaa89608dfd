"""
Session Controller — ties brief → candidates → enrichment → persistence together.

Owns:
  - the current session identity (search id, brief, working lead list)
  - the credential lifecycle (memory + local storage + gateway client)
  - the front-end phase and the last global error / notice

Every lead change the pipeline reports is written back to the SearchStore
while the run is live, so an interrupted run still leaves a saved search with
partial progress. Each run is tagged with the search id active when it
started; events and completions from a run whose search is no longer current
are ignored.
"""

import logging
from typing import Optional

from ai_gateway import AIGateway
from config import LOCAL_STORAGE_API_KEY
from errors import AuthError, GatewayError, NotInitializedError, StorageError
from models import AppPhase, Lead, ResearchBrief, SavedSearch, build_brief
from pipeline_engine import Listener, PipelineRun, RunOutcome, process_leads
from search_store import SearchStore
from storage import LocalStorage
from utils import new_id, now_ms, summarize_brief

logger = logging.getLogger(__name__)

NO_LEADS_NOTICE = (
    "No potential leads were generated. Try broadening your criteria. "
    "(Results depend on real web data.)"
)
STORED_KEY_INVALID = "Stored API key is invalid or expired. Please enter a new one."


class SessionController:
    """Top-level orchestration for one local user.

    Args:
        gateway: AI gateway handle (owned here, injected into every run)
        storage: Key/value store holding the credential and saved searches
        store: Saved-search store; built on ``storage`` when omitted
    """

    def __init__(
        self,
        gateway: Optional[AIGateway] = None,
        storage: Optional[LocalStorage] = None,
        store: Optional[SearchStore] = None,
    ):
        self.gateway = gateway or AIGateway()
        self.storage = storage if storage is not None else LocalStorage()
        self.store = store or SearchStore(self.storage)
        self.store.load()

        self.phase = AppPhase.AWAITING_API_KEY
        self.brief: Optional[ResearchBrief] = None
        self.leads: list[Lead] = []
        self.current_search_id: Optional[str] = None
        self.global_error: Optional[str] = None
        self.api_key_error: Optional[str] = None
        self.notice: Optional[str] = None

        self._api_key: Optional[str] = None
        self._listeners: list[Listener] = []

    # ── Read-only views ──────────────────────

    @property
    def saved_searches(self) -> list[SavedSearch]:
        return self.store.list()

    @property
    def has_credential(self) -> bool:
        return self._api_key is not None and self.gateway.is_initialized

    def subscribe(self, listener: Listener) -> None:
        """Receive pipeline events for every future run (progress display)."""
        self._listeners.append(listener)

    # ── Credential lifecycle ─────────────────

    def restore_credential(self) -> bool:
        """Re-use a stored credential at startup, if one exists and initializes."""
        stored = self.storage.get_item(LOCAL_STORAGE_API_KEY)
        if not stored:
            self.phase = AppPhase.AWAITING_API_KEY
            return False
        try:
            self.gateway.initialize(stored)
        except AuthError as e:
            logger.warning("Stored API key rejected: %s", e)
            self._clear_credential()
            self.api_key_error = STORED_KEY_INVALID
            self.phase = AppPhase.AWAITING_API_KEY
            return False
        self._api_key = stored
        self.api_key_error = None
        self.phase = AppPhase.DASHBOARD
        return True

    def submit_credential(self, api_key: str) -> bool:
        """Accept ``api_key`` only if the gateway initializes with it."""
        self.api_key_error = None
        self.global_error = None
        try:
            self.gateway.initialize(api_key)
        except AuthError as e:
            self.api_key_error = str(e)
            self._clear_credential()
            self.phase = AppPhase.AWAITING_API_KEY
            return False

        self._api_key = api_key.strip()
        try:
            self.storage.set_item(LOCAL_STORAGE_API_KEY, self._api_key)
        except StorageError as e:
            # Still usable for this process, just not remembered
            logger.error("Could not persist API key: %s", e)
        self.phase = AppPhase.DASHBOARD
        return True

    def change_credential(self) -> None:
        """Explicitly forget the credential and the current session context."""
        self._clear_credential()
        self._clear_context()
        self.global_error = None
        self.api_key_error = None
        self.phase = AppPhase.AWAITING_API_KEY

    def _clear_credential(self) -> None:
        self._api_key = None
        self.gateway.clear()
        try:
            self.storage.remove_item(LOCAL_STORAGE_API_KEY)
        except StorageError as e:
            logger.error("Could not remove stored API key: %s", e)

    def _handle_auth_failure(self, error: AuthError) -> None:
        logger.error("Credential failure during %s, resetting credential", error.operation or "request")
        self._clear_credential()
        self.global_error = f"API Key Error: {error}. Please re-enter your API key."
        self.phase = AppPhase.AWAITING_API_KEY

    # ── Session context ──────────────────────

    def _clear_context(self) -> None:
        self.brief = None
        self.leads = []
        self.current_search_id = None
        self.notice = None

    def _is_stale(self, search_id: Optional[str]) -> bool:
        return search_id is None or search_id != self.current_search_id

    def _save(self, search_id: str, brief: ResearchBrief, leads: list[Lead]) -> None:
        self.store.upsert(SavedSearch(
            id=search_id,
            timestamp=now_ms(),
            user_input=brief,
            leads=leads,
            summary=summarize_brief(brief),
        ))

    def start_new_project(self) -> None:
        """Open an empty research form."""
        self._clear_context()
        self.global_error = None
        self.phase = AppPhase.IDLE if self.has_credential else AppPhase.AWAITING_API_KEY

    def reset_to_dashboard(self) -> None:
        """Drop the current session. Any in-flight run becomes stale."""
        self._clear_context()
        self.global_error = None
        self.phase = AppPhase.DASHBOARD if self.has_credential else AppPhase.AWAITING_API_KEY

    # ── Searches ─────────────────────────────

    async def submit(
        self,
        service_description: Optional[str],
        target_area: Optional[str],
        target_audience: Optional[str],
        service_url: Optional[str] = None,
    ) -> Optional[RunOutcome]:
        """Validate form input, then start a new search.

        Raises:
            BriefValidationError: before any AI call if a field is invalid.
        """
        brief = build_brief(service_description, target_area, target_audience, service_url)
        return await self.start_new_search(brief)

    async def start_new_search(self, brief: ResearchBrief) -> Optional[RunOutcome]:
        """Generate candidates for ``brief``, persist the seed, then enrich.

        Returns the pipeline outcome, or None when no run was started.
        """
        if not self.gateway.is_initialized:
            self._handle_auth_failure(NotInitializedError(
                "AI Service not initialized. Please provide a valid API Key.",
                operation="initial leads",
            ))
            return None

        search_id = new_id()
        self._clear_context()
        self.brief = brief
        self.current_search_id = search_id
        self.global_error = None
        self.api_key_error = None
        self.phase = AppPhase.LOADING_INITIAL_LEADS

        try:
            candidates = await self.gateway.generate_candidate_leads(brief)
        except AuthError as e:
            self._handle_auth_failure(e)
            return None
        except GatewayError as e:
            if self._is_stale(search_id):
                logger.info("Ignoring candidate failure for abandoned search %s", search_id)
                return None
            logger.error("Failed to fetch initial leads: %s", e)
            self.global_error = f"Failed to fetch initial leads: {e}"
            self.phase = AppPhase.IDLE
            return None

        if self._is_stale(search_id):
            logger.info("Discarding %d candidates for abandoned search %s", len(candidates), search_id)
            return None

        leads = [Lead(name=c.name) for c in candidates]
        self.leads = leads
        try:
            self._save(search_id, brief, leads)
        except StorageError as e:
            logger.error("Could not save new search: %s", e)
            self.global_error = str(e)
            self.phase = AppPhase.FATAL_ERROR
            return None

        if not leads:
            self.notice = NO_LEADS_NOTICE
            self.phase = AppPhase.DASHBOARD
            return None

        logger.info("Seeded %d leads for search %s", len(leads), search_id)
        return await self._run_pipeline(search_id, brief, leads)

    async def _run_pipeline(self, search_id: str, brief: ResearchBrief, leads: list[Lead]) -> RunOutcome:
        self.phase = AppPhase.PROCESSING_LEAD_ENRICHMENT

        async def reconcile(run: PipelineRun, event: dict) -> None:
            if self._is_stale(run.session_id):
                logger.debug("Ignoring %s event from stale run %s", event.get("type"), run.session_id)
                return
            if event.get("type") != "lead":
                return
            self.leads = leads
            try:
                self._save(search_id, brief, leads)
            except StorageError as e:
                logger.error("Could not save progress for search %s: %s", search_id, e)
                self.global_error = f"Could not save progress: {e}"

        run = PipelineRun(search_id, listeners=[reconcile, *self._listeners])
        outcome = await process_leads(leads, brief, self.gateway, run)

        stale = self._is_stale(search_id)
        if outcome.auth_error is not None:
            # A cleared client after the user moved on is not a credential failure
            if not (stale and isinstance(outcome.auth_error, NotInitializedError)):
                self._handle_auth_failure(outcome.auth_error)
            return outcome
        if stale:
            logger.info("Run for search %s finished after it was abandoned, ignoring", search_id)
            return outcome

        self.phase = AppPhase.RESULTS_DISPLAYED
        return outcome

    def load_search(self, search_id: str) -> bool:
        """Show a saved search as-is. Does not restart enrichment."""
        search = self.store.get(search_id)
        if search is None:
            logger.warning("Saved search %s not found", search_id)
            return False
        self.brief = search.user_input
        self.leads = search.leads
        self.current_search_id = search.id
        self.global_error = None
        self.api_key_error = None
        self.notice = None
        self.phase = AppPhase.RESULTS_DISPLAYED
        return True

    async def resume_search(self) -> Optional[RunOutcome]:
        """Re-run enrichment for the loaded search's unfinished leads.

        Finished leads (completed or errored) are left alone; leads that were
        interrupted mid-stage start over from ``initial``.
        """
        if self.current_search_id is None or self.brief is None:
            return None
        pending = [lead for lead in self.leads if not lead.is_terminal]
        if not pending:
            logger.info("Search %s has no unfinished leads", self.current_search_id)
            return None
        if not self.gateway.is_initialized:
            self._handle_auth_failure(NotInitializedError(
                "AI Service not initialized. Please provide a valid API Key.",
                operation="resume",
            ))
            return None

        for lead in pending:
            lead.reset()
        logger.info("Resuming %d unfinished leads for search %s", len(pending), self.current_search_id)
        return await self._run_pipeline(self.current_search_id, self.brief, self.leads)

    def delete_search(self, search_id: str) -> None:
        """Remove a saved search; resets the view if it was the active one."""
        self.store.remove(search_id)
        if search_id == self.current_search_id:
            self.reset_to_dashboard()
