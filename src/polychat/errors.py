"""
Error taxonomy for the completion pipeline.

Every failure raised by the toolkit is a 'PolychatError' carrying a stable 'kind'
string, a human-readable message, a 'status' classification (client, upstream or
server) and a 'retryable' flag. The transport layer maps 'status' and 'kind' to
protocol codes via 'to_payload()'; nothing in the core knows about HTTP.

Provider adapters raise the 'Provider*' errors. The controller retries only the
retryable ones and surfaces exhaustion as 'UpstreamUnavailableError'.
"""

from enum import StrEnum

from pydantic import BaseModel


class ErrorStatus(StrEnum):
    """Who is responsible for a failure, for mapping to transport-level codes."""

    CLIENT = "client"
    UPSTREAM = "upstream"
    SERVER = "server"


class ErrorPayload(BaseModel):
    kind: str
    message: str
    status: ErrorStatus
    retryable: bool
    failed_state: str | None = None


class PolychatError(Exception):
    """Base class for all structured failures."""

    kind: str = "PolychatError"
    status: ErrorStatus = ErrorStatus.SERVER
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        self.failed_state: str | None = None

    def to_payload(self) -> ErrorPayload:
        return ErrorPayload(
            kind=self.kind,
            message=self.message,
            status=self.status,
            retryable=self.retryable,
            failed_state=self.failed_state,
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


class InputError(PolychatError):
    kind = "InputError"
    status = ErrorStatus.CLIENT


class AuthorizationError(PolychatError):
    kind = "AuthorizationError"
    status = ErrorStatus.CLIENT


class NotFoundError(PolychatError):
    kind = "NotFoundError"
    status = ErrorStatus.CLIENT


class UnknownModelError(NotFoundError):
    """Settings or an override reference a model id missing from the catalog."""


class ContextOverflowError(PolychatError):
    """The system prompt and the new message alone do not fit the model's input budget."""

    kind = "ContextOverflowError"
    status = ErrorStatus.CLIENT

    def __init__(self, message: str, required_tokens: int, budget_tokens: int) -> None:
        super().__init__(message)
        self.required_tokens = required_tokens
        self.budget_tokens = budget_tokens


class ConversationBusyError(PolychatError):
    kind = "ConversationBusyError"
    status = ErrorStatus.CLIENT
    retryable = True


class ProviderUnavailableError(PolychatError):
    """Network, authentication or server-side failure of a provider."""

    kind = "ProviderUnavailableError"
    status = ErrorStatus.UPSTREAM


class ProviderTimeoutError(ProviderUnavailableError):
    """A provider call exceeded the configured ceiling and was cancelled."""

    retryable = True


class ProviderRateLimitError(PolychatError):
    kind = "ProviderRateLimitError"
    status = ErrorStatus.UPSTREAM
    retryable = True


class ProviderContentError(PolychatError):
    """The provider refused the request or the reply on content-policy grounds."""

    kind = "ProviderContentError"
    status = ErrorStatus.UPSTREAM


class UpstreamUnavailableError(PolychatError):
    """Retry budget exhausted against a provider."""

    kind = "UpstreamUnavailableError"
    status = ErrorStatus.UPSTREAM
    retryable = True

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class ProviderNotImplementedError(PolychatError, NotImplementedError):
    kind = "NotImplementedError"
    status = ErrorStatus.SERVER


class StoreError(PolychatError):
    kind = "StoreError"
    status = ErrorStatus.SERVER


class DeadlineExceededError(PolychatError):
    """The caller's deadline expired, possibly while still queued on the conversation lock."""

    kind = "DeadlineExceededError"
    status = ErrorStatus.SERVER
    retryable = True


class InternalError(PolychatError):
    """An unexpected exception escaped the pipeline; the original is chained as '__cause__'."""

    kind = "InternalError"
    status = ErrorStatus.SERVER
