from enum import Enum
from typing import Optional


class FailureCause(str, Enum):
    RATE_LIMITED = "RateLimited"
    UNAUTHORIZED = "Unauthorized"
    BAD_REQUEST = "BadRequest"
    SERVICE_OVERLOADED = "ServiceOverloaded"
    UNKNOWN = "Unknown"


# User-facing wording per cause, reused by the HTTP layer.
CAUSE_MESSAGES = {
    FailureCause.RATE_LIMITED: "Rate limit exceeded. Please wait a moment before trying again.",
    FailureCause.UNAUTHORIZED: "Invalid or missing API key. Please check the provider configuration.",
    FailureCause.BAD_REQUEST: "The model provider rejected the request. Please check your input data.",
    FailureCause.SERVICE_OVERLOADED: "The model provider is temporarily overloaded. Please try again in a few minutes.",
    FailureCause.UNKNOWN: "The model provider request failed.",
}

CAUSE_STATUS_CODES = {
    FailureCause.RATE_LIMITED: 429,
    FailureCause.UNAUTHORIZED: 401,
    FailureCause.BAD_REQUEST: 400,
    FailureCause.SERVICE_OVERLOADED: 503,
    FailureCause.UNKNOWN: 502,
}


def cause_from_status(status_code: Optional[int]) -> FailureCause:
    if status_code == 429:
        return FailureCause.RATE_LIMITED
    if status_code in (401, 403):
        return FailureCause.UNAUTHORIZED
    if status_code == 400:
        return FailureCause.BAD_REQUEST
    if status_code == 503:
        return FailureCause.SERVICE_OVERLOADED
    return FailureCause.UNKNOWN


class ProviderFailure(Exception):
    """
    A text-completion provider did not return a usable answer.

    Never retried automatically; the caller shows the message and the user
    decides whether to try again.
    """

    def __init__(self, cause: FailureCause, provider: str, detail: str = "") -> None:
        super().__init__(f"{provider}: {cause.value}: {detail}".rstrip(": "))
        self.cause = cause
        self.provider = provider
        self.detail = detail

    @property
    def status_code(self) -> int:
        return CAUSE_STATUS_CODES[self.cause]

    @property
    def user_message(self) -> str:
        return CAUSE_MESSAGES[self.cause]


class PromptBuildFailure(Exception):
    pass


class ResponseParseFailure(Exception):
    def __init__(self, detail: str, status_code: int = 502) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


class DocumentServiceError(Exception):
    def __init__(self, detail: str, status_code: int = 502) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


class UploadRejected(Exception):
    def __init__(self, detail: str, status_code: int = 400) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


class ReviewError(Exception):
    def __init__(self, detail: str, status_code: int = 400) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code
