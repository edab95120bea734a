import asyncio
import sqlite3
from unittest.mock import AsyncMock, MagicMock

import pytest

from yinyang.config import Settings
from yinyang.db.connection import run_migrations
from yinyang.models.request import COMPLETE, ERROR, PENDING, RequestInput, VisionResult
from yinyang.repositories.config_repository import ConfigRepository
from yinyang.repositories.input_cache_repository import InputCacheRepository
from yinyang.repositories.request_ledger import RequestLedger
from yinyang.services.analysis_service import AnalysisService
from yinyang.services.blob_store import BlobStore
from yinyang.services.dispatch import DispatchQueue
from yinyang.services.errors import ClassifierError, FetchFailed, Unauthorized
from yinyang.services.input_cache import InputDedupCache
from yinyang.services.sentiment import sentiment_from_labels

SOURCE = "https://example.com/cat.png"
CANONICAL = "https://img.yinyang.test/blobs/abc.png"


class FakeVision:
    def __init__(self, outcomes):
        self._outcomes = list(outcomes)
        self.calls = []

    async def describe(self, image_url, prompt, detail):
        self.calls.append((image_url, prompt, detail))
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeScorer:
    """Scores by table lookup: sentence -> (positive, negative)."""

    def __init__(self, table, fail_on=None):
        self._table = table
        self._fail_on = fail_on
        self.thresholds = []

    async def score(self, text, threshold):
        self.thresholds.append(threshold)
        if text == self._fail_on:
            raise ClassifierError("no POSITIVE label")
        positive, negative = self._table[text]
        return sentiment_from_labels(
            [{"label": "POSITIVE", "score": positive}, {"label": "NEGATIVE", "score": negative}],
            threshold,
        )


def _pending_input():
    return RequestInput(resolved_url=None, original_url=SOURCE, threshold=0.1)


def _narrative(text, tokens=123, model="gpt-4o-2024"):
    return VisionResult(content=text, tokens_used=tokens, model_used=model)


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "yinyang.db")
    run_migrations(path)
    ConfigRepository(path).set("goodThreshold", "0.1")
    ConfigRepository(path).set("prompt", "Describe the image")
    ConfigRepository(path).set("detail", "low")
    return path


@pytest.fixture
def input_cache():
    cache = MagicMock()
    cache.resolve = AsyncMock(return_value=CANONICAL)
    return cache


def _service(db_path, input_cache, vision, scorer, **settings_overrides):
    settings = Settings(DB_PATH=db_path, **settings_overrides)
    return AnalysisService(
        ledger=RequestLedger(db_path),
        input_cache=input_cache,
        config_repository=ConfigRepository(db_path),
        dispatch=DispatchQueue(db_path),
        settings=settings,
        vision_factory=lambda api_key, config: vision,
        scorer_factory=lambda config: scorer,
    )


def _jobs(db_path):
    conn = sqlite3.connect(db_path)
    rows = conn.execute("SELECT request_id FROM generation_jobs").fetchall()
    conn.close()
    return [r[0] for r in rows]


def _statuses(db_path):
    conn = sqlite3.connect(db_path)
    rows = conn.execute("SELECT status FROM requests").fetchall()
    conn.close()
    return [r[0] for r in rows]


@pytest.mark.asyncio
async def test_submit_partitions_good_and_bad(db_path, input_cache):
    vision = FakeVision([_narrative("The cat is happy. The room is messy.")])
    scorer = FakeScorer({"The cat is happy": (0.9, 0.05), "The room is messy.": (0.3, 0.6)})
    service = _service(db_path, input_cache, vision, scorer)

    record = await service.submit(SOURCE, "sk-test", requestor_ip="10.0.0.9")

    assert record.status == COMPLETE
    assert record.good_prompt == "The cat is happy"
    assert record.bad_prompt == "The room is messy."
    assert [s.sentence for s in record.sentences] == ["The cat is happy", "The room is messy."]
    assert record.input.resolved_url == CANONICAL
    assert record.input.original_url == SOURCE
    assert record.input.threshold == 0.1
    assert record.meta == {
        "tokensUsed": 123,
        "modelUsed": "gpt-4o-2024",
        "promptUsed": "Describe the image",
        "classifierModelUsed": Settings().DEFAULT_CLASSIFIER_MODEL,
    }
    assert vision.calls == [(CANONICAL, "Describe the image", "low")]

    stored = service._ledger.read(record.request_id)
    assert stored.to_dict() == record.to_dict()
    assert _jobs(db_path) == [record.request_id]


@pytest.mark.asyncio
async def test_threshold_modifier_shifts_cutoff(db_path, input_cache):
    vision = FakeVision([_narrative("Fine. Okay")])
    scorer = FakeScorer({"Fine": (0.7, 0.3), "Okay": (0.55, 0.45)})
    service = _service(db_path, input_cache, vision, scorer)

    record = await service.submit(SOURCE, "sk-test", threshold_modifier=2)

    assert scorer.thresholds == [pytest.approx(0.3), pytest.approx(0.3)]
    assert record.input.threshold_modifier == 2
    assert record.good_prompt == "Fine"
    assert record.bad_prompt == "Okay"
    for s in record.sentences:
        assert s.sentiment.good == (s.sentiment.positive - s.sentiment.negative > 0.1 + 2 / 10)


@pytest.mark.asyncio
async def test_missing_token_is_unauthorized_without_ledger_write(db_path, input_cache):
    service = _service(db_path, input_cache, FakeVision([]), FakeScorer({}))
    with pytest.raises(Unauthorized):
        await service.submit(SOURCE, None)
    with pytest.raises(Unauthorized):
        await service.analyze("rid", CANONICAL, SOURCE, "", "p", "low", 0.1)
    assert _statuses(db_path) == []
    input_cache.resolve.assert_not_awaited()


@pytest.mark.asyncio
async def test_vision_exhausting_retries_is_model_unavailable(db_path, input_cache):
    vision = FakeVision([RuntimeError("503"), RuntimeError("503"), RuntimeError("rate limited")])
    service = _service(db_path, input_cache, vision, FakeScorer({}))

    record = await service.submit(SOURCE, "sk-test")

    assert record.status == ERROR
    assert record.error_kind == "ModelUnavailable"
    assert "rate limited" in record.error_message
    assert len(vision.calls) == 3
    assert _statuses(db_path) == ["error"]
    assert _jobs(db_path) == []


@pytest.mark.asyncio
async def test_vision_recovering_on_third_attempt_completes(db_path, input_cache):
    vision = FakeVision([RuntimeError("x"), RuntimeError("y"), _narrative("Nice")])
    service = _service(db_path, input_cache, vision, FakeScorer({"Nice": (0.9, 0.1)}))
    record = await service.submit(SOURCE, "sk-test")
    assert record.status == COMPLETE
    assert record.good_prompt == "Nice"


@pytest.mark.asyncio
async def test_empty_content_is_distinct_failure(db_path, input_cache):
    vision = FakeVision([_narrative("")])
    service = _service(db_path, input_cache, vision, FakeScorer({}))

    record = await service.submit(SOURCE, "sk-test")

    assert record.status == ERROR
    assert record.error_kind == "EmptyModelOutput"
    assert len(vision.calls) == 1
    assert _statuses(db_path) == ["error"]


@pytest.mark.asyncio
async def test_single_scoring_failure_aborts_request(db_path, input_cache):
    vision = FakeVision([_narrative("Good. Broken. Fine")])
    scorer = FakeScorer({"Good": (0.9, 0.1), "Fine": (0.9, 0.1)}, fail_on="Broken")
    service = _service(db_path, input_cache, vision, scorer)

    record = await service.submit(SOURCE, "sk-test")

    assert record.status == ERROR
    assert record.error_kind == "ScoringFailed"
    stored = service._ledger.read(record.request_id).to_dict()
    assert "sentences" not in stored
    assert "results" not in stored
    assert _jobs(db_path) == []


@pytest.mark.asyncio
async def test_cache_failure_falls_back_to_original_url(db_path, input_cache):
    input_cache.resolve = AsyncMock(side_effect=FetchFailed("404"))
    vision = FakeVision([_narrative("Nice")])
    service = _service(db_path, input_cache, vision, FakeScorer({"Nice": (0.9, 0.1)}))

    record = await service.submit(SOURCE, "sk-test")

    assert record.status == COMPLETE
    assert record.input.resolved_url == SOURCE
    assert vision.calls[0][0] == SOURCE


@pytest.mark.asyncio
async def test_dispatch_failure_keeps_record_complete(db_path, input_cache):
    vision = FakeVision([_narrative("Nice")])
    service = _service(db_path, input_cache, vision, FakeScorer({"Nice": (0.9, 0.1)}))
    service._dispatch._insert_job = MagicMock(side_effect=sqlite3.OperationalError("queue down"))

    record = await service.submit(SOURCE, "sk-test")

    assert record.status == COMPLETE
    assert service._ledger.read(record.request_id).status == COMPLETE


@pytest.mark.asyncio
async def test_slow_pipeline_times_out(db_path, input_cache):
    class SlowVision:
        async def describe(self, image_url, prompt, detail):
            await asyncio.sleep(5)

    service = _service(
        db_path, input_cache, SlowVision(), FakeScorer({}), PIPELINE_TIMEOUT_SECONDS=0.05
    )
    record = await service.submit(SOURCE, "sk-test")
    assert record.status == ERROR
    assert record.error_kind == "PipelineTimeout"


@pytest.mark.asyncio
async def test_poll_states(db_path, input_cache):
    vision = FakeVision([_narrative("Nice")])
    service = _service(db_path, input_cache, vision, FakeScorer({"Nice": (0.9, 0.1)}))

    assert (await service.poll("never-submitted")).state == "not_found"
    assert (await service.poll("")).state == "not_found"

    pending = await service._create_pending(_pending_input(), "1.2.3.4", 12)
    assert (await service.poll(pending.request_id)).state == "pending"

    record = await service.submit(SOURCE, "sk-test")
    first = await service.poll(record.request_id)
    second = await service.poll(record.request_id)
    assert first.state == "terminal"
    assert first.record.to_dict() == second.record.to_dict() == record.to_dict()


@pytest.mark.asyncio
async def test_pending_record_is_visible_before_analysis_finishes(db_path, input_cache):
    seen = {}

    class PeekingVision:
        async def describe(self, image_url, prompt, detail):
            conn = sqlite3.connect(db_path)
            seen["statuses"] = [r[0] for r in conn.execute("SELECT status FROM requests")]
            conn.close()
            return _narrative("Nice")

    service = _service(db_path, input_cache, PeekingVision(), FakeScorer({"Nice": (0.9, 0.1)}))

    record = await service.submit(SOURCE, "sk-test")

    assert seen["statuses"] == [PENDING]
    assert record.status == COMPLETE


def _real_cache(db_path, tmp_path, repository=None):
    return InputDedupCache(
        repository or InputCacheRepository(db_path),
        BlobStore(str(tmp_path / "blobs"), "https://img.yinyang.test/blobs/"),
    )


@pytest.mark.asyncio
async def test_unparsable_url_falls_back_and_completes(db_path, tmp_path):
    bad_url = "http://[::1/x.png"
    vision = FakeVision([_narrative("Nice")])
    service = _service(db_path, _real_cache(db_path, tmp_path), vision, FakeScorer({"Nice": (0.9, 0.1)}))

    record = await service.submit(bad_url, "sk-test")

    assert record.status == COMPLETE
    assert record.input.resolved_url == bad_url
    assert vision.calls[0][0] == bad_url
    assert _statuses(db_path) == ["complete"]


@pytest.mark.asyncio
async def test_cache_database_error_falls_back_and_completes(db_path, tmp_path):
    broken_repo = MagicMock()
    broken_repo.find_by_source_url.side_effect = sqlite3.OperationalError("database is locked")
    vision = FakeVision([_narrative("Nice")])
    service = _service(
        db_path, _real_cache(db_path, tmp_path, broken_repo), vision, FakeScorer({"Nice": (0.9, 0.1)})
    )

    record = await service.submit(SOURCE, "sk-test")

    assert record.status == COMPLETE
    assert record.input.resolved_url == SOURCE
    assert _statuses(db_path) == ["complete"]


@pytest.mark.asyncio
async def test_unexpected_resolver_crash_falls_back(db_path, input_cache):
    input_cache.resolve = AsyncMock(side_effect=KeyError("boom"))
    vision = FakeVision([_narrative("Nice")])
    service = _service(db_path, input_cache, vision, FakeScorer({"Nice": (0.9, 0.1)}))

    record = await service.submit(SOURCE, "sk-test")

    assert record.status == COMPLETE
    assert record.input.resolved_url == SOURCE


@pytest.mark.asyncio
async def test_crash_after_pending_still_finalizes_error(db_path, input_cache):
    service = _service(db_path, input_cache, FakeVision([]), FakeScorer({}))
    service.analyze = AsyncMock(side_effect=RuntimeError("ledger went away"))

    record = await service.submit(SOURCE, "sk-test")

    assert record.status == ERROR
    assert record.error_kind == "InternalError"
    assert "ledger went away" not in record.error_message
    assert _statuses(db_path) == ["error"]
    assert (await service.poll(record.request_id)).state == "terminal"
