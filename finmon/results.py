from dataclasses import dataclass
from typing import Generic, Iterable, List, Optional, TypeVar

T = TypeVar("T")

CONFIG_ERROR = "config"
FETCH_ERROR = "fetch"


@dataclass(frozen=True)
class FetchResult(Generic[T]):
    """Outcome of a remote read.

    ``data`` always holds something renderable (the rows, or the empty/zero
    default when the read failed), so callers that only want to draw a table
    can ignore ``error``. Callers that care can tell "no rows" apart from
    "the read failed" through ``ok`` and ``error_kind``.
    """

    data: T
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def is_config_error(self) -> bool:
        return self.error_kind == CONFIG_ERROR

    @classmethod
    def success(cls, data: T) -> "FetchResult[T]":
        return cls(data=data)

    @classmethod
    def failure(cls, default: T, error: str, kind: str = FETCH_ERROR) -> "FetchResult[T]":
        return cls(data=default, error=error, error_kind=kind)

    def with_data(self, data):
        # keeps the error of the read the new data was derived from
        return FetchResult(data=data, error=self.error, error_kind=self.error_kind)


def first_failure(results: Iterable[FetchResult]) -> Optional[FetchResult]:
    for result in results:
        if not result.ok:
            return result
    return None


def derive(data, *sources: FetchResult) -> FetchResult:
    """Wrap data computed from several reads, carrying the first error."""
    failed = first_failure(sources)
    if failed is None:
        return FetchResult.success(data)
    return failed.with_data(data)


def error_messages(results: Iterable[FetchResult]) -> List[str]:
    messages: List[str] = []
    for result in results:
        if result.error and result.error not in messages:
            messages.append(result.error)
    return messages
