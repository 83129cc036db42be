# File: tests/test_generation_orchestrator.py

import asyncio

import pytest

from core.errors import AiRateLimitError, AiTransportError, ErrorKind, IndexOutOfRange
from core.generation_orchestrator import (MULTI_PAGE_NOTICE, GenerationOrchestrator, GenerationRequest,
                                          GenerationStage, needs_multi_page_notice)
from core.interfaces import IntegrationSync, LearningStore
from core.state_models import (FileEntry, GenerationState, HistorySnapshot, Learning, MessageRole,
                               UsageAccount)
from services.account_store import InMemoryAccountStore
from tests.fakes import ScriptedCollaborator, ai_payload


def _orchestrator(collaborator, account_store, retry_policy, **kwargs):
    return GenerationOrchestrator(ai_collaborator=collaborator, account_store=account_store,
                                  retry_policy=retry_policy, **kwargs)


def _request(prompt="Build a bakery site", account_id="alice"):
    return GenerationRequest(prompt=prompt, account_id=account_id)


@pytest.mark.asyncio
async def test_first_generation_is_free_and_records_no_snapshot(empty_state, account_store, retry_policy):
    collaborator = ScriptedCollaborator(ai_payload({"index.html": "<h1>Bakery</h1>"}))
    orchestrator = _orchestrator(collaborator, account_store, retry_policy)

    result = await orchestrator.generate(empty_state, _request())

    assert result.success
    assert result.coins_charged == 0
    assert result.rollback_label is None
    project = empty_state.project
    assert project.history == ()
    assert project.free_prompt_used
    assert project.files == [FileEntry("index.html", "<h1>Bakery</h1>")]
    assert account_store.get("alice").coins == 100
    assert [m.role for m in project.chat_history] == [MessageRole.USER, MessageRole.MODEL]
    assert empty_state.generation_state is GenerationState.SUCCESS


@pytest.mark.asyncio
async def test_later_generation_snapshots_previous_files_and_charges(seeded_state, account_store, retry_policy):
    before = list(seeded_state.project.files)
    collaborator = ScriptedCollaborator(ai_payload({"index.html": "<html><body>v2</body></html>"}))
    orchestrator = _orchestrator(collaborator, account_store, retry_policy)

    result = await orchestrator.generate(seeded_state, _request("Change the headline"))

    project = seeded_state.project
    assert result.success
    assert len(project.history) == 1
    assert list(project.history[0].files) == before
    assert result.rollback_state_index == 0
    assert result.rollback_label == "(#1)"
    assert result.coins_charged == 10
    assert account_store.get("alice").coins == 90
    # style.css was not returned by the AI and is kept
    assert [f.path for f in project.files] == ["index.html", "style.css"]

    model_message = project.chat_history[-1]
    assert model_message.rollback_label == "(#1)"
    assert model_message.edits_made == 1
    assert model_message.generated_files == ["index.html", "style.css"]


@pytest.mark.asyncio
async def test_generation_after_rollback_is_labelled_as_branch(seeded_state, account_store, retry_policy):
    seeded_state.project.history = tuple(
        HistorySnapshot(files=(FileEntry("index.html", f"v{i}"),)) for i in range(3))
    collaborator = ScriptedCollaborator(ai_payload({"index.html": "branched"}))
    orchestrator = _orchestrator(collaborator, account_store, retry_policy)

    restored = await orchestrator.rollback(seeded_state, 1)
    assert restored == [FileEntry("index.html", "v1")]
    assert len(seeded_state.project.history) == 3

    result = await orchestrator.generate(seeded_state, _request("Try another direction"))

    assert result.rollback_state_index == 3
    assert result.rollback_label == "(2/4)"
    assert len(seeded_state.project.history) == 4
    assert seeded_state.project.branched_from is None


@pytest.mark.asyncio
async def test_rollback_out_of_range_raises(seeded_state, account_store, retry_policy):
    orchestrator = _orchestrator(ScriptedCollaborator(), account_store, retry_policy)
    with pytest.raises(IndexOutOfRange):
        await orchestrator.rollback(seeded_state, 0)


@pytest.mark.asyncio
async def test_insufficient_balance_never_calls_the_ai(seeded_state, retry_policy):
    store = InMemoryAccountStore([UsageAccount("alice", coins=5)])
    collaborator = ScriptedCollaborator(ai_payload({"index.html": "never"}))
    orchestrator = _orchestrator(collaborator, store, retry_policy)
    files_before = list(seeded_state.project.files)

    result = await orchestrator.generate(seeded_state, _request())

    assert not result.success
    assert result.error_kind is ErrorKind.INSUFFICIENT_BALANCE
    assert result.failed_stage is GenerationStage.AUTHORIZING
    assert collaborator.calls == []
    assert seeded_state.project.files == files_before
    assert store.get("alice").coins == 5
    error_message = seeded_state.project.chat_history[-1]
    assert error_message.is_error
    assert error_message.content.startswith("I encountered an error: Insufficient coins")


@pytest.mark.asyncio
async def test_rate_limited_twice_then_success(seeded_state, account_store, retry_policy, sleep_recorder):
    collaborator = ScriptedCollaborator(AiRateLimitError("429"), AiRateLimitError("429"),
                                        ai_payload({"index.html": "ok"}))
    orchestrator = _orchestrator(collaborator, account_store, retry_policy)

    result = await orchestrator.generate(seeded_state, _request())

    assert result.success
    assert len(collaborator.calls) == 3
    assert len(sleep_recorder.delays) == 2


@pytest.mark.asyncio
async def test_transport_failure_is_not_retried(seeded_state, account_store, retry_policy, sleep_recorder):
    collaborator = ScriptedCollaborator(AiTransportError("connection refused"))
    orchestrator = _orchestrator(collaborator, account_store, retry_policy)

    result = await orchestrator.generate(seeded_state, _request())

    assert not result.success
    assert result.error_kind is ErrorKind.TRANSPORT_FAILURE
    assert result.failed_stage is GenerationStage.REQUESTING
    assert sleep_recorder.delays == []
    assert seeded_state.generation_state is GenerationState.ERROR


@pytest.mark.asyncio
async def test_malformed_files_change_nothing(seeded_state, account_store, retry_policy):
    files_before = list(seeded_state.project.files)
    collaborator = ScriptedCollaborator('{"summary": "oops", "files": [{"path": "index.html"}]}')
    orchestrator = _orchestrator(collaborator, account_store, retry_policy)

    result = await orchestrator.generate(seeded_state, _request())

    assert not result.success
    assert result.error_kind is ErrorKind.MALFORMED_AI_RESPONSE
    assert result.failed_stage is GenerationStage.VALIDATING
    assert seeded_state.project.files == files_before
    assert seeded_state.project.history == ()
    assert account_store.get("alice").coins == 100


@pytest.mark.asyncio
async def test_multi_page_site_gets_a_notice(empty_state, account_store, retry_policy):
    collaborator = ScriptedCollaborator(ai_payload({"index.html": "<a href='about.html'>About</a>",
                                                    "about.html": "<p>About us</p>"}))
    orchestrator = _orchestrator(collaborator, account_store, retry_policy)

    await orchestrator.generate(empty_state, _request())

    last = empty_state.project.chat_history[-1]
    assert last.role is MessageRole.SYSTEM
    assert last.content == MULTI_PAGE_NOTICE


def test_react_app_needs_no_multi_page_notice():
    files = [FileEntry("index.html", ""), FileEntry("page.html", ""),
             FileEntry("app.js", "React.createElement('div')")]
    assert not needs_multi_page_notice(files)
    assert needs_multi_page_notice(files[:2])


class StaticLearnings(LearningStore):
    async def list_learnings(self):
        return [Learning("Photographers need a gallery.")]


class BrokenLearnings(LearningStore):
    async def list_learnings(self):
        raise ConnectionError("knowledge base offline")


@pytest.mark.asyncio
async def test_learnings_reach_the_system_instruction(empty_state, account_store, retry_policy):
    collaborator = ScriptedCollaborator(ai_payload({"index.html": "x"}))
    orchestrator = _orchestrator(collaborator, account_store, retry_policy, learning_store=StaticLearnings())

    await orchestrator.generate(empty_state, _request())

    assert "Photographers need a gallery." in collaborator.calls[0]["system_instruction"]


@pytest.mark.asyncio
async def test_learning_store_failure_does_not_fail_generation(empty_state, account_store, retry_policy):
    collaborator = ScriptedCollaborator(ai_payload({"index.html": "x"}))
    orchestrator = _orchestrator(collaborator, account_store, retry_policy, learning_store=BrokenLearnings())

    result = await orchestrator.generate(empty_state, _request())

    assert result.success


class RecordingSync(IntegrationSync):
    def __init__(self, fail=False):
        self.fail = fail
        self.projects = []

    async def notify(self, project):
        self.projects.append(project)
        if self.fail:
            raise RuntimeError("remote rejected the push")


@pytest.mark.asyncio
async def test_integrations_are_notified_after_commit(empty_state, account_store, retry_policy):
    good, bad = RecordingSync(), RecordingSync(fail=True)
    collaborator = ScriptedCollaborator(ai_payload({"index.html": "x"}))
    orchestrator = _orchestrator(collaborator, account_store, retry_policy, integration_syncs=[good, bad])

    result = await orchestrator.generate(empty_state, _request())
    await orchestrator.wait_for_pending_syncs()

    assert result.success
    assert good.projects[0].files == [FileEntry("index.html", "x")]
    assert len(bad.projects) == 1


@pytest.mark.asyncio
async def test_failed_generation_notifies_no_integration(seeded_state, account_store, retry_policy):
    sync = RecordingSync()
    orchestrator = _orchestrator(ScriptedCollaborator(AiTransportError("down")), account_store, retry_policy,
                                 integration_syncs=[sync])

    await orchestrator.generate(seeded_state, _request())
    await orchestrator.wait_for_pending_syncs()

    assert sync.projects == []


class HangingCollaborator(ScriptedCollaborator):
    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()

    async def generate(self, system_instruction, prompt_parts, response_schema):
        self.started.set()
        await asyncio.Event().wait()


@pytest.mark.asyncio
async def test_cancellation_leaves_project_untouched(seeded_state, account_store, retry_policy):
    collaborator = HangingCollaborator()
    orchestrator = _orchestrator(collaborator, account_store, retry_policy)
    files_before = list(seeded_state.project.files)

    task = asyncio.create_task(orchestrator.generate(seeded_state, _request()))
    await collaborator.started.wait()
    assert orchestrator.is_busy(seeded_state.project_id)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert seeded_state.project.files == files_before
    assert seeded_state.project.history == ()
    assert seeded_state.project.chat_history == []
    assert account_store.get("alice").coins == 100
    assert seeded_state.generation_state is GenerationState.IDLE
    assert not orchestrator.is_busy(seeded_state.project_id)


@pytest.mark.asyncio
async def test_concurrent_generations_on_one_project_are_serialized(empty_state, account_store, retry_policy):
    collaborator = ScriptedCollaborator(ai_payload({"index.html": "first"}), ai_payload({"index.html": "second"}))
    orchestrator = _orchestrator(collaborator, account_store, retry_policy)

    first, second = await asyncio.gather(
        orchestrator.generate(empty_state, _request("first")),
        orchestrator.generate(empty_state, _request("second")),
    )

    assert first.success and second.success
    assert first.coins_charged == 0
    assert second.coins_charged == 10
    assert len(empty_state.project.history) == 1
    assert empty_state.project.history[0].files == (FileEntry("index.html", "first"),)
    assert empty_state.project.files == [FileEntry("index.html", "second")]


@pytest.mark.asyncio
async def test_free_prompt_does_not_need_an_account(empty_state, account_store, retry_policy):
    collaborator = ScriptedCollaborator(ai_payload({"index.html": "hi"}))
    orchestrator = _orchestrator(collaborator, account_store, retry_policy)

    result = await orchestrator.generate(empty_state, _request("hi", account_id="newcomer"))

    assert result.success
    assert result.coins_charged == 0
    assert len(collaborator.calls) == 1


@pytest.mark.asyncio
async def test_unknown_account_fails_like_any_other_generation(seeded_state, account_store, retry_policy):
    collaborator = ScriptedCollaborator(ai_payload({"index.html": "never"}))
    orchestrator = _orchestrator(collaborator, account_store, retry_policy)
    files_before = list(seeded_state.project.files)

    result = await orchestrator.generate(seeded_state, _request(account_id="mallory"))

    assert not result.success
    assert result.error_kind is ErrorKind.UNKNOWN_ACCOUNT
    assert result.failed_stage is GenerationStage.AUTHORIZING
    assert collaborator.calls == []
    assert seeded_state.project.files == files_before
    assert seeded_state.generation_state is GenerationState.ERROR
    user, error = seeded_state.project.chat_history
    assert user.content == "Build a bakery site"
    assert error.is_error and "mallory" in error.content


@pytest.mark.asyncio
async def test_empty_file_list_keeps_files_but_records_snapshot(seeded_state, account_store, retry_policy):
    files_before = list(seeded_state.project.files)
    orchestrator = _orchestrator(ScriptedCollaborator(ai_payload({})), account_store, retry_policy)

    result = await orchestrator.generate(seeded_state, _request("Nothing to change, really"))

    project = seeded_state.project
    assert result.success
    assert result.changed_file_count == 0
    assert project.files == files_before
    assert len(project.history) == 1
    assert list(project.history[0].files) == files_before
    assert project.chat_history[-1].edits_made == 0
    assert result.coins_charged == 10
    assert account_store.get("alice").coins == 90


@pytest.mark.asyncio
async def test_project_locks_are_released_after_use(empty_state, seeded_state, account_store, retry_policy):
    collaborator = ScriptedCollaborator(ai_payload({"index.html": "a"}), ai_payload({"index.html": "b"}),
                                        ai_payload({"index.html": "c"}))
    orchestrator = _orchestrator(collaborator, account_store, retry_policy)

    await asyncio.gather(
        orchestrator.generate(empty_state, _request("one")),
        orchestrator.generate(empty_state, _request("two")),
        orchestrator.generate(seeded_state, _request("three")),
    )

    assert orchestrator._locks == {}
    assert not orchestrator.is_busy(empty_state.project_id)


@pytest.mark.asyncio
async def test_cancelled_waiter_releases_its_lock_entry(seeded_state, account_store, retry_policy):
    collaborator = HangingCollaborator()
    orchestrator = _orchestrator(collaborator, account_store, retry_policy)

    running = asyncio.create_task(orchestrator.generate(seeded_state, _request("first")))
    await collaborator.started.wait()
    waiting = asyncio.create_task(orchestrator.generate(seeded_state, _request("second")))
    await asyncio.sleep(0)

    for task in (waiting, running):
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    assert orchestrator._locks == {}
