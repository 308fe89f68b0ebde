import asyncio
from uuid import uuid4

import pytest

from packages.domain.ai_categorization.batch_planner import BatchPlanner
from packages.domain.ai_categorization.exceptions import (
    AlreadyProcessingError,
    ClassifierServiceError,
    NothingToCategorizeError,
)
from packages.domain.ai_categorization.job_store import InMemoryJobStateStore
from packages.domain.ai_categorization.launcher import AsyncioJobLauncher
from packages.domain.ai_categorization.merchant_keys import extract_merchant_key
from packages.domain.ai_categorization.orchestrator import CategorizationOrchestrator
from packages.domain.ai_categorization.retry_policy import RetryPolicy
from packages.domain.ai_categorization.schemas import (
    CategoryRecord,
    ErrorKind,
    OwnerType,
    ProcessingError,
    ProcessingProgress,
)
from tests.fakes import (
    FakeCategorySource,
    FakeSuggestionSink,
    FakeTransactionSource,
    RecordingLauncher,
    ScriptedClassifier,
    SleepRecorder,
    make_transaction,
    no_result,
)

USER_ID = uuid4()


def rate_limited(message="429 rate limit exceeded"):
    return ClassifierServiceError(message)


def build(
    records,
    classifier=None,
    categories=None,
    suggestions=None,
    store=None,
    launcher=None,
    batch_size=40,
    max_batches=50,
    max_retries=5,
    batch_timeout=5.0,
    batch_delay=0.0,
):
    sleeper = SleepRecorder()
    orchestrator = CategorizationOrchestrator(
        transactions=FakeTransactionSource(records),
        categories=categories or FakeCategorySource(),
        suggestions=suggestions or FakeSuggestionSink(),
        classifier=classifier or ScriptedClassifier(),
        store=store or InMemoryJobStateStore(),
        planner=BatchPlanner(batch_size=batch_size, max_batches=max_batches),
        retry_policy=RetryPolicy(base_delay=1.0, buffer=0.5, max_delay=10.0, max_retries=max_retries),
        launcher=launcher or AsyncioJobLauncher(),
        batch_timeout=batch_timeout,
        batch_delay=batch_delay,
        sleep=sleeper,
    )
    return orchestrator, sleeper


def start_and_wait(orchestrator):
    async def scenario():
        started = await orchestrator.start(USER_ID)
        await orchestrator.launcher.wait_all()
        return started, await orchestrator.get_status(USER_ID)

    return asyncio.run(scenario())


def test_end_to_end_groups_merchants():
    records = [make_transaction("UBER *TRIP") for _ in range(30)]
    records += [make_transaction("NETFLIX.COM") for _ in range(15)]
    classifier = ScriptedClassifier()
    suggestions = FakeSuggestionSink()
    orchestrator, sleeper = build(records, classifier=classifier, suggestions=suggestions, batch_delay=2.0)

    started, status = start_and_wait(orchestrator)

    assert started.uncategorized_count == 45
    assert started.job_id

    assert classifier.call_count == 2
    assert [len(b) for b in classifier.batches] == [40, 5]
    first_keys = [extract_merchant_key(tx.description) for tx in classifier.batches[0]]
    assert first_keys == ["NETFLIX"] * 15 + ["UBER"] * 25

    # Pause only between batches
    assert sleeper.delays == [2.0]

    keywords = sorted(s.match_keyword for s in suggestions.saved)
    assert keywords == ["NETFLIX", "UBER", "UBER"]
    assert all(s.user_id == USER_ID for s in suggestions.saved)

    assert status.is_processing is False
    assert status.job_id is None
    assert status.progress is None
    assert status.has_error is False
    assert status.pending_suggestions_count == 3
    assert status.uncategorized_count == 45


def test_only_uncategorized_transactions_are_sent():
    categorized = make_transaction("SPOTIFY", category_id=uuid4())
    records = [categorized, make_transaction("PADARIA"), make_transaction("FARMACIA")]
    classifier = ScriptedClassifier()
    orchestrator, _ = build(records, classifier=classifier)

    started, _ = start_and_wait(orchestrator)

    assert started.uncategorized_count == 2
    sent = {tx.id for tx in classifier.batches[0]}
    assert categorized.id not in sent
    assert len(sent) == 2


def test_categories_are_loaded_for_the_user():
    category = CategoryRecord(id=uuid4(), name="Transporte", type="expense", icon="car", color="#111111")
    categories = FakeCategorySource([category])
    classifier = ScriptedClassifier()
    orchestrator, _ = build([make_transaction("UBER *TRIP")], classifier=classifier, categories=categories)

    start_and_wait(orchestrator)

    assert categories.calls == [(OwnerType.USER, USER_ID)]
    assert [c.id for c in classifier.categories[0]] == [category.id]


def test_start_rejects_when_already_processing():
    store = InMemoryJobStateStore()
    orchestrator, _ = build([make_transaction("UBER *TRIP")], store=store)

    progress = ProcessingProgress(processed_count=40, total_count=80, current_batch=2, total_batches=2)

    async def scenario():
        await store.try_start(USER_ID, "existing-job")
        await store.set_progress(USER_ID, "existing-job", progress)
        await orchestrator.start(USER_ID)

    with pytest.raises(AlreadyProcessingError) as exc_info:
        asyncio.run(scenario())

    assert exc_info.value.code == "AIC-010002"

    state = asyncio.run(store.get_state(USER_ID))
    assert state.processing is True
    assert state.job_id == "existing-job"
    assert state.progress == progress


def test_concurrent_starts_launch_one_job():
    launcher = RecordingLauncher()
    orchestrator, _ = build([make_transaction("UBER *TRIP")], launcher=launcher)

    async def scenario():
        return await asyncio.gather(
            orchestrator.start(USER_ID),
            orchestrator.start(USER_ID),
            return_exceptions=True,
        )

    results = asyncio.run(scenario())

    rejected = [r for r in results if isinstance(r, AlreadyProcessingError)]
    assert len(rejected) == 1
    assert len(launcher.jobs) == 1


def test_start_rejects_when_nothing_to_categorize():
    store = InMemoryJobStateStore()
    launcher = RecordingLauncher()
    records = [make_transaction("UBER *TRIP", category_id=uuid4())]
    orchestrator, _ = build(records, store=store, launcher=launcher)

    async def scenario():
        await store.set_error(USER_ID, ProcessingError(code=ErrorKind.TIMEOUT, message="x", retryable=True))
        await orchestrator.start(USER_ID)

    with pytest.raises(NothingToCategorizeError) as exc_info:
        asyncio.run(scenario())

    assert exc_info.value.code == "AIC-010003"
    assert launcher.jobs == []
    assert asyncio.run(store.is_processing(USER_ID)) is False
    # The previous error is cleared even though no job started
    assert asyncio.run(store.get_state(USER_ID)).last_error is None


def test_start_returns_before_job_finishes():
    launcher = RecordingLauncher()
    store = InMemoryJobStateStore()
    orchestrator, _ = build([make_transaction("UBER *TRIP")], store=store, launcher=launcher)

    async def scenario():
        started = await orchestrator.start(USER_ID)
        return started, await orchestrator.get_status(USER_ID)

    started, status = asyncio.run(scenario())

    assert status.is_processing is True
    assert status.job_id == started.job_id
    assert launcher.jobs[0].job_id == started.job_id
    assert len(launcher.jobs[0].transactions) == 1


def test_rate_limit_retries_are_bounded():
    classifier = ScriptedClassifier([rate_limited() for _ in range(10)])
    orchestrator, sleeper = build([make_transaction("UBER *TRIP")], classifier=classifier, max_retries=3)

    _, status = start_and_wait(orchestrator)

    assert classifier.call_count == 4
    assert sleeper.delays == [1.0, 2.0, 3.0]
    assert status.is_processing is False
    assert status.has_error is True
    assert status.error.code == ErrorKind.RATE_LIMITED
    assert status.error.retryable is True


def test_exhausted_retries_report_suggestions_from_earlier_batches():
    records = [make_transaction(f"{name} X") for name in ("ACOUGUE", "BAZAR", "CAFE")]
    classifier = ScriptedClassifier([None] + [rate_limited() for _ in range(10)])
    suggestions = FakeSuggestionSink()
    orchestrator, sleeper = build(records, classifier=classifier, suggestions=suggestions,
                                  batch_size=2, max_retries=3)

    _, status = start_and_wait(orchestrator)

    # One call for batch 1, then max_retries + 1 attempts on batch 2
    assert classifier.call_count == 1 + 4
    assert all(len(batch) == 1 for batch in classifier.batches[1:])
    assert sleeper.delays == [0.0, 1.0, 2.0, 3.0]
    assert len(suggestions.saved) == 2
    assert status.is_processing is False
    assert status.error.code == ErrorKind.RATE_LIMITED
    assert status.error.message.endswith("2 suggestions were saved.")


def test_rate_limit_hint_is_honoured_then_job_completes():
    classifier = ScriptedClassifier([rate_limited("quota exceeded, please retry in 2.5s")])
    suggestions = FakeSuggestionSink()
    orchestrator, sleeper = build([make_transaction("UBER *TRIP")], classifier=classifier,
                                  suggestions=suggestions)

    _, status = start_and_wait(orchestrator)

    assert classifier.call_count == 2
    assert sleeper.delays == [3.0]
    assert status.has_error is False
    assert len(suggestions.saved) == 1


def test_failure_keeps_earlier_suggestions():
    merchants = ["ACOUGUE", "BAZAR", "CAFE", "DROGARIA", "EMPORIO", "FEIRA"]
    records = [make_transaction(m) for m in merchants]
    classifier = ScriptedClassifier([None, RuntimeError("401 unauthorized")])
    suggestions = FakeSuggestionSink()
    orchestrator, _ = build(records, classifier=classifier, suggestions=suggestions, batch_size=2)

    _, status = start_and_wait(orchestrator)

    # Third batch never submitted
    assert classifier.call_count == 2
    assert len(suggestions.saved) == 2
    assert status.pending_suggestions_count == 2
    assert status.is_processing is False
    assert status.error.code == ErrorKind.AUTH_ERROR
    assert status.error.retryable is False
    assert status.error.message.endswith("2 suggestions were saved.")


def test_first_batch_failure_has_no_saved_note():
    classifier = ScriptedClassifier([RuntimeError("connection reset by peer")])
    orchestrator, _ = build([make_transaction("UBER *TRIP")], classifier=classifier)

    _, status = start_and_wait(orchestrator)

    assert status.error.code == ErrorKind.SERVICE_UNAVAILABLE
    assert "saved" not in status.error.message


def test_batch_timeout_aborts_job():
    async def slow(_batch):
        await asyncio.sleep(5)
        return []

    classifier = ScriptedClassifier([slow])
    orchestrator, _ = build([make_transaction("UBER *TRIP")], classifier=classifier, batch_timeout=0.01)

    _, status = start_and_wait(orchestrator)

    assert status.error.code == ErrorKind.TIMEOUT
    assert status.is_processing is False


def test_suggestion_save_failure_does_not_abort():
    records = [make_transaction("UBER *TRIP"), make_transaction("NETFLIX.COM")]
    suggestions = FakeSuggestionSink(fail_first=1)
    classifier = ScriptedClassifier()
    orchestrator, _ = build(records, classifier=classifier, suggestions=suggestions, batch_size=1)

    _, status = start_and_wait(orchestrator)

    assert classifier.call_count == 2
    assert suggestions.attempts == 2
    assert len(suggestions.saved) == 1
    assert status.has_error is False


def test_results_without_category_are_not_saved():
    suggestions = FakeSuggestionSink()
    classifier = ScriptedClassifier([no_result])
    orchestrator, _ = build([make_transaction("UBER *TRIP")], classifier=classifier, suggestions=suggestions)

    _, status = start_and_wait(orchestrator)

    assert suggestions.attempts == 0
    assert status.has_error is False


def test_category_load_failure_aborts_before_classifying():
    classifier = ScriptedClassifier()
    categories = FakeCategorySource(error=RuntimeError("network is unreachable"))
    orchestrator, _ = build([make_transaction("UBER *TRIP")], classifier=classifier, categories=categories)

    _, status = start_and_wait(orchestrator)

    assert classifier.call_count == 0
    assert status.error.code == ErrorKind.SERVICE_UNAVAILABLE
    assert status.is_processing is False


def test_progress_is_reported_while_running():
    store = InMemoryJobStateStore()
    snapshots = []

    async def capture(batch):
        snapshots.append(await store.get_state(USER_ID))
        return []

    records = [make_transaction(f"LOJA{i} X") for i in range(5)]
    classifier = ScriptedClassifier([capture, capture, capture])
    orchestrator, _ = build(records, classifier=classifier, store=store, batch_size=2)

    async def scenario():
        await orchestrator.start(USER_ID)
        await orchestrator.launcher.wait_all()

    asyncio.run(scenario())

    progress = [(s.progress.current_batch, s.progress.processed_count) for s in snapshots]
    assert all(s.processing for s in snapshots)
    assert all(s.progress.total_count == 5 and s.progress.total_batches == 3 for s in snapshots)
    assert progress == [(1, 0), (2, 2), (3, 4)]


class StaleProgressStore(InMemoryJobStateStore):
    """Reports leftover progress with no job registered"""

    async def get_state(self, user_id):
        state = await super().get_state(user_id)
        state.progress = ProcessingProgress(processed_count=1, total_count=2,
                                            current_batch=1, total_batches=1)
        return state


def test_status_hides_progress_when_idle():
    store = StaleProgressStore()
    orchestrator, _ = build([], store=store)

    async def scenario():
        return await orchestrator.get_status(USER_ID)

    status = asyncio.run(scenario())

    assert status.is_processing is False
    assert status.progress is None


def test_transactions_over_cap_are_left_for_next_run():
    records = [make_transaction(f"LOJA{i} X") for i in range(5)]
    classifier = ScriptedClassifier()
    orchestrator, _ = build(records, classifier=classifier, batch_size=2, max_batches=2)

    _, status = start_and_wait(orchestrator)

    assert classifier.call_count == 2
    assert sum(len(b) for b in classifier.batches) == 4
    assert status.has_error is False


def test_unexpected_error_is_unknown_and_retryable():
    classifier = ScriptedClassifier([KeyError("boom")])
    orchestrator, _ = build([make_transaction("UBER *TRIP")], classifier=classifier)

    _, status = start_and_wait(orchestrator)

    assert status.error.code == ErrorKind.UNKNOWN_ERROR
    assert status.error.retryable is True


def test_new_job_after_failure_clears_error():
    classifier = ScriptedClassifier([RuntimeError("503")])
    orchestrator, _ = build([make_transaction("UBER *TRIP")], classifier=classifier)

    _, failed = start_and_wait(orchestrator)
    _, succeeded = start_and_wait(orchestrator)

    assert failed.has_error is True
    assert succeeded.has_error is False
    assert classifier.call_count == 2
