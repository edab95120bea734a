import time
from dataclasses import dataclass, field


PENDING = "pending"
COMPLETE = "complete"
ERROR = "error"

TERMINAL_STATUSES = {COMPLETE, ERROR}


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class SentenceSentiment:
    negative: float
    positive: float
    good: bool

    def to_dict(self) -> dict:
        return {"negative": self.negative, "positive": self.positive, "good": self.good}


@dataclass(frozen=True)
class ScoredSentence:
    sentence: str
    sentiment: SentenceSentiment

    def to_dict(self) -> dict:
        return {"sentence": self.sentence, "sentiment": self.sentiment.to_dict()}


@dataclass(frozen=True)
class RequestInput:
    resolved_url: str | None
    original_url: str | None = None
    threshold: float | None = None
    threshold_modifier: float | None = None

    def to_dict(self) -> dict:
        return {
            "resolvedUrl": self.resolved_url,
            "originalUrl": self.original_url,
            "threshold": self.threshold,
            "thresholdModifier": self.threshold_modifier,
        }


@dataclass(frozen=True)
class VisionResult:
    content: str | None
    tokens_used: int | None
    model_used: str | None


@dataclass
class RequestRecord:
    """One submission's ledger entry. Serialized in the camelCase wire shape."""

    request_id: str
    status: str
    input: RequestInput
    requestor_ip: str | None = None
    created_at: int = field(default_factory=now_ms)
    response: str | None = None
    sentences: list[ScoredSentence] = field(default_factory=list)
    good_prompt: str | None = None
    bad_prompt: str | None = None
    meta: dict = field(default_factory=dict)
    error_kind: str | None = None
    error_message: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        data = {
            "requestId": self.request_id,
            "status": self.status,
            "input": self.input.to_dict(),
            "createdAt": self.created_at,
            "requestorIp": self.requestor_ip,
        }
        if self.status == COMPLETE:
            data["response"] = self.response
            data["sentences"] = [s.to_dict() for s in self.sentences]
            data["results"] = {
                "good": {"prompt": self.good_prompt, "imageBucketId": None},
                "bad": {"prompt": self.bad_prompt, "imageBucketId": None},
            }
        if self.meta:
            data["meta"] = dict(self.meta)
        if self.status == ERROR:
            data["error"] = {"kind": self.error_kind, "message": self.error_message}
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "RequestRecord":
        raw_input = data.get("input") or {}
        results = data.get("results") or {}
        error = data.get("error") or {}
        return cls(
            request_id=data["requestId"],
            status=data["status"],
            input=RequestInput(
                resolved_url=raw_input.get("resolvedUrl"),
                original_url=raw_input.get("originalUrl"),
                threshold=raw_input.get("threshold"),
                threshold_modifier=raw_input.get("thresholdModifier"),
            ),
            requestor_ip=data.get("requestorIp"),
            created_at=data.get("createdAt", 0),
            response=data.get("response"),
            sentences=[
                ScoredSentence(
                    sentence=s["sentence"],
                    sentiment=SentenceSentiment(**s["sentiment"]),
                )
                for s in data.get("sentences", [])
            ],
            good_prompt=(results.get("good") or {}).get("prompt"),
            bad_prompt=(results.get("bad") or {}).get("prompt"),
            meta=data.get("meta") or {},
            error_kind=error.get("kind"),
            error_message=error.get("message"),
        )


@dataclass(frozen=True)
class PollResult:
    state: str  # "not_found" | "pending" | "terminal"
    record: RequestRecord | None = None
