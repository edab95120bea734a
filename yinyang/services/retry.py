from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    value: T | None
    last_error: Exception | None
    attempts: int

    @property
    def ok(self) -> bool:
        return self.last_error is None


async def retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int,
    on_error: Callable[[int, Exception], Any] | None = None,
) -> RetryOutcome[T]:
    """
    Await operation up to max_attempts times, back to back.
    Returns the first success, or the error from the final attempt.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    last_error: Exception | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            return RetryOutcome(value=await operation(), last_error=None, attempts=attempt)
        except Exception as exc:
            last_error = exc
            if on_error is not None:
                on_error(attempt, exc)
    return RetryOutcome(value=None, last_error=last_error, attempts=max_attempts)
