from __future__ import annotations


class DuocastError(Exception):
    """Base exception for domain-safe errors."""


class ConfigurationError(DuocastError):
    pass


class PipelineError(DuocastError):
    """A pipeline phase failed. The message keeps the causing error text."""

    def __init__(self, stage: str, cause: BaseException | str) -> None:
        self.stage = stage
        self.cause = cause
        super().__init__(f"[{stage}] {cause}")


class ProviderError(DuocastError):
    """Raised by script-generation and TTS adapters."""

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        self.provider = provider
        super().__init__(message)


class TransientProviderError(ProviderError):
    """429, 5xx, or a transport failure. Safe to retry."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 0,
        body: str = "",
        retry_after: float | None = None,
        provider: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.body = body
        self.retry_after = retry_after
        super().__init__(message, provider=provider)


class ProviderTimeoutError(TransientProviderError):
    """A single provider call ran past its own deadline."""


class FatalRequestError(ProviderError):
    """Non-429 4xx: bad credential, unknown voice id, malformed request."""

    def __init__(self, message: str, *, status_code: int = 0, body: str = "", provider: str | None = None) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message, provider=provider)


class InvalidOutputError(ProviderError):
    """Generated script was empty, unparsable, or broke the script rules."""


class RetryExhaustedError(ProviderError):
    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"giving up after {attempts} attempts: {last_error}")


class CapacityError(DuocastError):
    def __init__(self, ceiling: int) -> None:
        self.ceiling = ceiling
        super().__init__(f"server at capacity ({ceiling} concurrent jobs); try again later")


class ShutdownError(DuocastError):
    """A running job was force-failed because the server terminated."""


class ClosedError(DuocastError):
    """Submission refused: the task manager is shutting down and accepts no new jobs."""


class JobNotFoundError(DuocastError):
    pass


class JobStateError(DuocastError):
    """A write tried to move a job backwards or out of a terminal state."""


class IngestError(DuocastError):
    pass


class UnreachableError(IngestError):
    pass


class UnsupportedError(IngestError):
    pass


class TooShortError(IngestError):
    pass
