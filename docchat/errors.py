import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DocChatError(Exception):
    """Base class for errors raised by the document chat core."""


class NotFoundError(DocChatError):
    """Conversation or document is absent, or not owned by the caller."""


class InputValidationError(DocChatError):
    """Malformed input. Never retried, never has side effects."""


class TransientError(DocChatError):
    """Network, timeout or quota failure of an external capability."""


class DimensionMismatchError(DocChatError):
    """Embedding width differs from the configured dimension.

    Indicates a configuration error, so it is fatal for the affected
    document and never retried.
    """

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Embedding dimension mismatch. Got {actual}, expected {expected}")
        self.expected = expected
        self.actual = actual


class ExtractionError(DocChatError):
    """Document bytes produced no usable text."""


@dataclass
class AdvisoryResult:
    """Outcome of a best-effort side operation.

    Advisory operations (conversation titling, vector cleanup on delete)
    report through this object and the log. Callers never raise it.
    """

    operation: str
    ok: bool
    detail: Optional[str] = None

    def log(self, log: logging.Logger = logger) -> "AdvisoryResult":
        if self.ok:
            log.info(f"Advisory {self.operation} succeeded{': ' + self.detail if self.detail else ''}")
        else:
            log.warning(f"Advisory {self.operation} failed: {self.detail}")
        return self


async def bounded(awaitable: Awaitable[T], timeout: float, operation: str) -> T:
    """Await *awaitable* for at most *timeout* seconds.

    A timeout surfaces as :class:`TransientError` naming *operation*.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise TransientError(f"{operation} timed out after {timeout}s") from e


def describe(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"
