# core/generation_orchestrator.py - Drives one site generation from prompt to commit

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional, Sequence, Set

from .errors import ErrorKind, GenerationError, MalformedAiResponse, UnknownAccount
from .file_merge import merge_files
from .history_ledger import HistoryLedger
from .interfaces import AccountStore, AiCollaborator, IntegrationSync, LearningStore
from .project_state_manager import ProjectStateManager
from .prompts import RESPONSE_SCHEMA, build_prompt_parts, build_system_instruction
from .response_parser import MalformedResponse, ValidResponse, parse_ai_response
from .retry_policy import RetryPolicy
from .state_models import (Attachment, ChatMessage, FileEntry, GenerationState, Learning, Project,
                           UsageAccount)
from .usage_metering import AuthorizationDecision, UsageMeter

MULTI_PAGE_NOTICE = ("I've generated a multi-page website. Navigation between pages may not work in this "
                     "preview, but all files are in the 'Code' tab and will be fully functional when downloaded.")


class GenerationStage(Enum):
    IDLE = "idle"
    AUTHORIZING = "authorizing"
    BUILDING_CONTEXT = "building_context"
    REQUESTING = "requesting"
    VALIDATING = "validating"
    MERGING = "merging"
    COMMITTING = "committing"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    account_id: str
    attachment: Optional[Attachment] = None


@dataclass
class GenerationResult:
    """Outcome of one generation. Failures are reported here, never raised."""
    success: bool
    stage: GenerationStage
    project: Project
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    failed_stage: Optional[GenerationStage] = None
    changed_file_count: int = 0
    rollback_state_index: Optional[int] = None
    rollback_label: Optional[str] = None
    coins_charged: int = 0
    duration: float = 0.0


def needs_multi_page_notice(files: Sequence[FileEntry]) -> bool:
    """More than one HTML page and no React entry point: page links will not work in the preview."""
    html_pages = [entry for entry in files if entry.path.lower().endswith(".html")]
    is_react_app = any(entry.path.lower().endswith(".js") and "React.createElement" in entry.content
                       for entry in files)
    return len(html_pages) > 1 and not is_react_app


class GenerationOrchestrator:
    """
    Runs generations against ProjectStateManager instances passed in by the caller.

    Work for the same project id is serialized with a per-project lock. All
    mutation happens in the committing stage, which has no await in it, so a
    request cancelled while waiting on the AI leaves the project untouched.
    """

    def __init__(self, ai_collaborator: AiCollaborator, account_store: AccountStore,
                 usage_meter: Optional[UsageMeter] = None, retry_policy: Optional[RetryPolicy] = None,
                 ledger: Optional[HistoryLedger] = None, learning_store: Optional[LearningStore] = None,
                 integration_syncs: Sequence[IntegrationSync] = (), learning_timeout: float = 5.0,
                 sync_timeout: float = 30.0):
        self.ai_collaborator = ai_collaborator
        self.account_store = account_store
        self.usage_meter = usage_meter or UsageMeter()
        self.retry_policy = retry_policy or RetryPolicy()
        self.ledger = ledger or HistoryLedger()
        self.learning_store = learning_store
        self.integration_syncs = list(integration_syncs)
        self.learning_timeout = learning_timeout
        self.sync_timeout = sync_timeout
        self.logger = logging.getLogger(__name__)

        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._pending_syncs: Set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, config, ai_collaborator: AiCollaborator, account_store: AccountStore,
                    learning_store: Optional[LearningStore] = None,
                    integration_syncs: Sequence[IntegrationSync] = ()) -> "GenerationOrchestrator":
        """Build an orchestrator from an EngineConfig."""
        return cls(
            ai_collaborator=ai_collaborator,
            account_store=account_store,
            usage_meter=UsageMeter(prompt_cost=config.prompt_cost),
            retry_policy=RetryPolicy(max_attempts=config.max_attempts, backoff_base=config.backoff_base,
                                     max_jitter=config.max_jitter),
            learning_store=learning_store,
            integration_syncs=integration_syncs,
            learning_timeout=config.learning_timeout,
            sync_timeout=config.sync_timeout,
        )

    @asynccontextmanager
    async def _project_lock(self, project_id: str):
        """Hold the lock of one project. The entry is dropped once nobody holds or waits for it."""
        lock = self._locks.get(project_id)
        if lock is None:
            lock = self._locks[project_id] = asyncio.Lock()
        self._lock_users[project_id] = self._lock_users.get(project_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[project_id] -= 1
            if not self._lock_users[project_id]:
                del self._lock_users[project_id]
                del self._locks[project_id]

    def is_busy(self, project_id: str) -> bool:
        lock = self._locks.get(project_id)
        return bool(lock and lock.locked())

    # --- Public operations ---

    async def generate(self, state: ProjectStateManager, request: GenerationRequest) -> GenerationResult:
        """Run one generation for ``state``'s project. Waits for any in-flight work on the same project."""
        async with self._project_lock(state.project_id):
            result = await self._run(state, request)
        if result.success:
            self._schedule_syncs(result.project)
        return result

    async def rollback(self, state: ProjectStateManager, index: int) -> List[FileEntry]:
        """Restore the project to the state before change ``index`` + 1. Raises IndexOutOfRange."""
        async with self._project_lock(state.project_id):
            files = state.rollback(index)
        self.logger.info("Rollback successful. The next change will branch from this point.")
        return files

    async def wait_for_pending_syncs(self):
        """Wait until every background integration push has finished."""
        if self._pending_syncs:
            await asyncio.gather(*list(self._pending_syncs), return_exceptions=True)

    # --- Pipeline ---

    async def _run(self, state: ProjectStateManager, request: GenerationRequest) -> GenerationResult:
        project = state.project
        started = time.monotonic()
        stage = GenerationStage.IDLE
        state.generation_state = GenerationState.GENERATING
        self.logger.info(f"Generating with prompt: \"{request.prompt}\"")

        try:
            stage = self._advance(project, GenerationStage.AUTHORIZING)
            account = None
            if self.usage_meter.needs_account(project):
                account = self._get_account(request.account_id)
            decision = self.usage_meter.authorize(project, account)
            if not decision.allowed:
                raise decision.reason

            stage = self._advance(project, GenerationStage.BUILDING_CONTEXT)
            learnings = await self._load_learnings()
            system_instruction = build_system_instruction(project, learnings)
            prompt_parts = build_prompt_parts(project, request.prompt, request.attachment)

            stage = self._advance(project, GenerationStage.REQUESTING)
            raw = await self.retry_policy.run(
                lambda: self.ai_collaborator.generate(system_instruction, prompt_parts, RESPONSE_SCHEMA))

            stage = self._advance(project, GenerationStage.VALIDATING)
            parsed = parse_ai_response(raw)
            if isinstance(parsed, MalformedResponse):
                self.logger.error(f"Malformed AI response: {parsed.reason}")
                raise MalformedAiResponse(parsed.reason)
            self.logger.info(f"Received {parsed.changed_file_count} files from AI.")

            stage = self._advance(project, GenerationStage.MERGING)
            merged = merge_files(project.files, parsed.files)

            stage = self._advance(project, GenerationStage.COMMITTING)
            result = self._commit(state, request, parsed, merged, decision, started)

        except GenerationError as e:
            self.logger.error(f"Generation failed during {stage.value}: {e.message}")
            state.record_failure(request.prompt, request.attachment, e.message)
            return GenerationResult(
                success=False,
                stage=GenerationStage.FAILED,
                project=state.project,
                error_kind=e.kind,
                error_message=e.message,
                failed_stage=stage,
                duration=time.monotonic() - started,
            )
        except asyncio.CancelledError:
            self.logger.warning(f"Generation for project {project.id} cancelled during {stage.value}; nothing committed.")
            state.generation_state = GenerationState.IDLE
            raise
        except Exception:
            self.logger.error(f"Unexpected error during {stage.value} for project {project.id}", exc_info=True)
            state.generation_state = GenerationState.ERROR
            raise

        self._advance(project, GenerationStage.SUCCESS)
        return result

    def _get_account(self, account_id: str) -> UsageAccount:
        try:
            return self.account_store.get(account_id)
        except KeyError:
            raise UnknownAccount(account_id)

    def _advance(self, project: Project, stage: GenerationStage) -> GenerationStage:
        self.logger.debug(f"[{project.id}] -> {stage.value}")
        return stage

    def _commit(self, state: ProjectStateManager, request: GenerationRequest, response: ValidResponse,
                merged: List[FileEntry], decision: AuthorizationDecision, started: float) -> GenerationResult:
        # No awaits below this line: the commit runs to completion or not at all.
        project = state.project
        history = project.history
        rollback_index = None
        rollback_label = None

        if project.files:
            rollback_index, history = self.ledger.record_snapshot(project)
            rollback_label = self.ledger.rollback_label(project, len(history))

        duration = time.monotonic() - started
        messages = [
            ChatMessage.user(request.prompt, request.attachment),
            ChatMessage.model(
                summary=response.summary,
                ai_summary=response.ai_summary,
                commit_message=response.commit_message,
                edits_made=response.changed_file_count,
                generated_files=[entry.path for entry in merged],
                thought_duration=round(duration),
                rollback_state_index=rollback_index,
                rollback_label=rollback_label,
            ),
        ]
        if needs_multi_page_notice(merged):
            messages.append(ChatMessage.system(MULTI_PAGE_NOTICE))

        coins_charged = 0
        if decision.chargeable:
            # Debit before the swap: it is the only step here that can fail.
            try:
                self.usage_meter.charge(self.account_store, request.account_id)
            except KeyError:
                raise UnknownAccount(request.account_id)
            coins_charged = self.usage_meter.prompt_cost
        else:
            self.logger.info("First free prompt used for this project.")

        committed = state.commit_generation(merged, history, messages)
        return GenerationResult(
            success=True,
            stage=GenerationStage.SUCCESS,
            project=committed,
            changed_file_count=response.changed_file_count,
            rollback_state_index=rollback_index,
            rollback_label=rollback_label,
            coins_charged=coins_charged,
            duration=duration,
        )

    # --- Best-effort collaborators ---

    async def _load_learnings(self) -> List[Learning]:
        if self.learning_store is None:
            return []
        try:
            return list(await asyncio.wait_for(self.learning_store.list_learnings(), timeout=self.learning_timeout))
        except Exception as e:
            self.logger.warning(f"Learning store unavailable, continuing without learnings: {e!r}")
            return []

    def _schedule_syncs(self, project: Project):
        for sync in self.integration_syncs:
            task = asyncio.create_task(self._notify_sync(sync, replace(project)))
            self._pending_syncs.add(task)
            task.add_done_callback(self._pending_syncs.discard)

    async def _notify_sync(self, sync: IntegrationSync, project: Project):
        name = sync.__class__.__name__
        try:
            await asyncio.wait_for(sync.notify(project), timeout=self.sync_timeout)
            self.logger.info(f"{name}: project \"{project.name}\" saved successfully.")
        except asyncio.TimeoutError:
            self.logger.error(f"{name}: push for project \"{project.name}\" timed out after {self.sync_timeout}s")
        except Exception as e:
            self.logger.error(f"{name}: failed to save project \"{project.name}\": {e}", exc_info=True)
