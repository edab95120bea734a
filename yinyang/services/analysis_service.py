import asyncio
import logging
import re
import uuid
from typing import Callable

from yinyang.config import Settings
from yinyang.models.request import (
    COMPLETE,
    ERROR,
    PENDING,
    PollResult,
    RequestInput,
    RequestRecord,
    ScoredSentence,
    now_ms,
)
from yinyang.models.runtime_config import RuntimeConfig
from yinyang.repositories.base import AbstractConfigRepository, AbstractRequestLedger
from yinyang.services.dispatch import DispatchQueue
from yinyang.services.errors import (
    AnalysisError,
    EmptyModelOutput,
    FetchFailed,
    InternalError,
    LedgerConflict,
    ModelUnavailable,
    PersistFailed,
    PipelineTimeout,
    ScoringFailed,
    Unauthorized,
)
from yinyang.services.input_cache import InputDedupCache
from yinyang.services.retry import retry
from yinyang.services.runtime_config import load_runtime_config
from yinyang.services.sentiment import SentimentScorer
from yinyang.services.vision import VisionClient

logger = logging.getLogger(__name__)

SENTENCE_SEPARATOR = ". "
_WHITESPACE = re.compile(r"\s")
_DISALLOWED = re.compile(r"[^\w.,\- ]", re.ASCII)
_ID_ATTEMPTS = 3


def segment_narrative(text: str) -> list[str]:
    """
    Lossy sentence split used to build prompts: whitespace becomes a space,
    anything outside ASCII word characters and . , - is dropped, then the
    text is cut on ". ". Fragments are kept exactly as produced.
    """
    cleaned = _DISALLOWED.sub("", _WHITESPACE.sub(" ", text))
    return cleaned.split(SENTENCE_SEPARATOR)


def effective_threshold(threshold: float, modifier: float | None) -> float:
    if modifier:
        return threshold + modifier / 10.0
    return threshold


def build_prompts(sentences: list[ScoredSentence]) -> tuple[str, str]:
    """Join good and bad sentences separately, preserving narrative order."""
    good = SENTENCE_SEPARATOR.join(s.sentence for s in sentences if s.sentiment.good)
    bad = SENTENCE_SEPARATOR.join(s.sentence for s in sentences if not s.sentiment.good)
    return good, bad


def new_request_id(length: int) -> str:
    return uuid.uuid4().hex[:length]


VisionFactory = Callable[[str, RuntimeConfig], VisionClient]
ScorerFactory = Callable[[RuntimeConfig], SentimentScorer]


class AnalysisService:
    def __init__(
        self,
        ledger: AbstractRequestLedger,
        input_cache: InputDedupCache,
        config_repository: AbstractConfigRepository,
        dispatch: DispatchQueue,
        settings: Settings,
        vision_factory: VisionFactory | None = None,
        scorer_factory: ScorerFactory | None = None,
    ) -> None:
        self._ledger = ledger
        self._input_cache = input_cache
        self._config_repository = config_repository
        self._dispatch = dispatch
        self._settings = settings
        self._vision_factory = vision_factory or self._default_vision
        self._scorer_factory = scorer_factory or self._default_scorer

    def _default_vision(self, api_key: str, config: RuntimeConfig) -> VisionClient:
        return VisionClient(
            api_key=api_key,
            model=config.vision_model,
            base_url=self._settings.OPENAI_BASE_URL,
            max_tokens=self._settings.VISION_MAX_TOKENS,
        )

    def _default_scorer(self, config: RuntimeConfig) -> SentimentScorer:
        return SentimentScorer(
            base_url=self._settings.CLASSIFIER_BASE_URL,
            api_token=self._settings.CLASSIFIER_API_TOKEN,
            model=config.classifier_model,
            timeout=self._settings.HTTP_TIMEOUT_SECONDS,
        )

    async def load_config(self) -> RuntimeConfig:
        return await asyncio.to_thread(load_runtime_config, self._config_repository, self._settings)

    async def _resolve_input(self, source_url: str, request_id: str, requestor_ip: str | None) -> str:
        try:
            return await self._input_cache.resolve(source_url)
        except (FetchFailed, PersistFailed) as exc:
            logger.warning(
                "[analyze] input not cached, using original url | request_id=%s | ip=%s | kind=%s | error=%s",
                request_id,
                requestor_ip,
                exc.kind,
                exc.message,
            )
            return source_url
        except Exception:
            logger.exception(
                "[analyze] input resolution crashed, using original url | request_id=%s | ip=%s",
                request_id,
                requestor_ip,
            )
            return source_url

    async def _create_pending(self, record_input: RequestInput, requestor_ip: str | None, id_length: int) -> RequestRecord:
        for _ in range(_ID_ATTEMPTS):
            record = RequestRecord(
                request_id=new_request_id(id_length),
                status=PENDING,
                input=record_input,
                requestor_ip=requestor_ip,
            )
            try:
                await asyncio.to_thread(self._ledger.create, record)
                return record
            except LedgerConflict:
                logger.warning("[analyze] request id collision | request_id=%s", record.request_id)
        raise LedgerConflict(f"no free request id after {_ID_ATTEMPTS} attempts")

    async def submit(
        self,
        source_url: str,
        auth_token: str | None,
        threshold_modifier: float | None = None,
        requestor_ip: str | None = None,
    ) -> RequestRecord:
        """
        Full submission path: register a pending record, resolve the input
        through the dedup cache, then run the analysis to a terminal record.
        """
        if not auth_token:
            raise Unauthorized("An OpenAI key is required")

        config = await self.load_config()
        pending = await self._create_pending(
            RequestInput(
                resolved_url=None,
                original_url=source_url,
                threshold=config.good_threshold,
                threshold_modifier=threshold_modifier,
            ),
            requestor_ip,
            config.request_id_length,
        )
        logger.info(
            "[analyze] accepted | request_id=%s | ip=%s | url=%s", pending.request_id, requestor_ip, source_url
        )

        try:
            resolved_url = await self._resolve_input(source_url, pending.request_id, requestor_ip)
            return await self.analyze(
                pending.request_id,
                resolved_url,
                source_url,
                auth_token,
                config.prompt,
                config.detail,
                config.good_threshold,
                threshold_modifier,
                requestor_ip=requestor_ip,
                created_at=pending.created_at,
                config=config,
            )
        except Exception:
            logger.exception(
                "[analyze] submission crashed | request_id=%s | ip=%s", pending.request_id, requestor_ip
            )
            return await self._finalize_abandoned(pending)

    async def _finalize_abandoned(self, pending: RequestRecord) -> RequestRecord:
        """Close out a record left pending by an unexpected failure, unless it already ended."""
        current = await asyncio.to_thread(self._ledger.read, pending.request_id)
        if current is not None and current.is_terminal:
            return current
        failed = InternalError("Analysis failed unexpectedly")
        pending.status = ERROR
        pending.error_kind = failed.kind
        pending.error_message = failed.message
        await asyncio.to_thread(self._ledger.finalize, pending)
        return pending

    async def analyze(
        self,
        request_id: str,
        resolved_url: str,
        original_url: str | None,
        auth_token: str | None,
        prompt: str,
        detail: str,
        threshold: float,
        threshold_modifier: float | None = None,
        *,
        requestor_ip: str | None = None,
        created_at: int | None = None,
        config: RuntimeConfig | None = None,
    ) -> RequestRecord:
        """
        Describe the image, score each sentence and write one terminal record.
        Every failure past the credential check ends as an error record.
        """
        if not auth_token:
            raise Unauthorized("An OpenAI key is required")
        if config is None:
            config = await self.load_config()

        base = RequestRecord(
            request_id=request_id,
            status=PENDING,
            input=RequestInput(
                resolved_url=resolved_url,
                original_url=original_url,
                threshold=threshold,
                threshold_modifier=threshold_modifier,
            ),
            requestor_ip=requestor_ip,
            created_at=created_at if created_at is not None else now_ms(),
            meta={
                "tokensUsed": None,
                "modelUsed": None,
                "promptUsed": prompt,
                "classifierModelUsed": config.classifier_model,
            },
        )

        try:
            record = await asyncio.wait_for(
                self._run(base, auth_token, prompt, detail, config),
                timeout=self._settings.PIPELINE_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            failure = PipelineTimeout(
                f"Analysis did not finish within {self._settings.PIPELINE_TIMEOUT_SECONDS:g}s"
            )
        except AnalysisError as exc:
            failure = exc
        except Exception as exc:
            logger.exception("[analyze] unexpected failure | request_id=%s | ip=%s", request_id, requestor_ip)
            failure = InternalError(f"Analysis failed: {type(exc).__name__}")
        else:
            await asyncio.to_thread(self._ledger.finalize, record)
            logger.info(
                "[analyze] complete | request_id=%s | ip=%s | sentences=%d",
                request_id,
                requestor_ip,
                len(record.sentences),
            )
            await self._dispatch.enqueue(request_id)
            return record

        base.status = ERROR
        base.error_kind = failure.kind
        base.error_message = failure.message
        logger.warning(
            "[analyze] failed | request_id=%s | ip=%s | kind=%s | error=%s",
            request_id,
            requestor_ip,
            failure.kind,
            failure.message,
        )
        await asyncio.to_thread(self._ledger.finalize, base)
        return base

    async def _run(
        self,
        base: RequestRecord,
        auth_token: str,
        prompt: str,
        detail: str,
        config: RuntimeConfig,
    ) -> RequestRecord:
        vision = self._vision_factory(auth_token, config)

        def _log_attempt(attempt: int, exc: Exception) -> None:
            logger.warning(
                "[analyze] vision call failed | request_id=%s | ip=%s | attempt=%d | error=%s",
                base.request_id,
                base.requestor_ip,
                attempt,
                exc,
            )

        outcome = await retry(
            lambda: vision.describe(base.input.resolved_url, prompt, detail),
            self._settings.VISION_MAX_ATTEMPTS,
            on_error=_log_attempt,
        )
        if not outcome.ok:
            raise ModelUnavailable(f"Vision model failed after {outcome.attempts} attempts: {outcome.last_error}")

        result = outcome.value
        base.meta["tokensUsed"] = result.tokens_used
        base.meta["modelUsed"] = result.model_used
        if not result.content:
            raise EmptyModelOutput("Vision model returned no description")

        cutoff = effective_threshold(base.input.threshold, base.input.threshold_modifier)
        fragments = segment_narrative(result.content)
        scorer = self._scorer_factory(config)
        try:
            sentiments = await asyncio.gather(*(scorer.score(fragment, cutoff) for fragment in fragments))
        except Exception as exc:
            raise ScoringFailed(f"Sentiment scoring failed: {exc}") from exc

        sentences = [
            ScoredSentence(sentence=fragment, sentiment=sentiment)
            for fragment, sentiment in zip(fragments, sentiments)
        ]
        good_prompt, bad_prompt = build_prompts(sentences)
        return RequestRecord(
            request_id=base.request_id,
            status=COMPLETE,
            input=base.input,
            requestor_ip=base.requestor_ip,
            created_at=base.created_at,
            response=result.content,
            sentences=sentences,
            good_prompt=good_prompt,
            bad_prompt=bad_prompt,
            meta=dict(base.meta),
        )

    async def poll(self, request_id: str) -> PollResult:
        record = await asyncio.to_thread(self._ledger.read, request_id) if request_id else None
        if record is None:
            return PollResult(state="not_found")
        if not record.is_terminal:
            return PollResult(state="pending")
        return PollResult(state="terminal", record=record)
