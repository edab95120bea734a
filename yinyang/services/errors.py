class AnalysisError(Exception):
    """Base for failures that map onto a client-visible error kind."""

    kind = "AnalysisError"
    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message or self.kind


class Unauthorized(AnalysisError):
    kind = "Unauthorized"
    status_code = 401


class FetchFailed(AnalysisError):
    kind = "FetchFailed"
    status_code = 502


class PersistFailed(AnalysisError):
    kind = "PersistFailed"
    status_code = 500


class ModelUnavailable(AnalysisError):
    kind = "ModelUnavailable"
    status_code = 500


class EmptyModelOutput(AnalysisError):
    kind = "EmptyModelOutput"
    status_code = 418


class ScoringFailed(AnalysisError):
    kind = "ScoringFailed"
    status_code = 500


class PipelineTimeout(AnalysisError):
    kind = "PipelineTimeout"
    status_code = 504


class NotFound(AnalysisError):
    kind = "NotFound"
    status_code = 404


class InternalError(AnalysisError):
    kind = "InternalError"
    status_code = 500


class LedgerConflict(Exception):
    """Raised when a ledger write would violate create-once / finalize-once."""


class ClassifierError(Exception):
    """The sentiment classifier answered without the expected labels."""


_KINDS = {
    cls.kind: cls
    for cls in (
        Unauthorized,
        FetchFailed,
        PersistFailed,
        ModelUnavailable,
        EmptyModelOutput,
        ScoringFailed,
        PipelineTimeout,
        NotFound,
        InternalError,
    )
}


def status_for_kind(kind: str | None) -> int:
    """HTTP status an error record of the given kind is reported with."""
    error_cls = _KINDS.get(kind or "")
    return error_cls.status_code if error_cls else 500
