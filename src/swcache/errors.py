from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    STORE_OPEN_FAILED = "STORE_OPEN_FAILED"
    STORE_WRITE_FAILED = "STORE_WRITE_FAILED"
    NETWORK_ERROR = "NETWORK_ERROR"
    OFFLINE = "OFFLINE"


class SwCacheError(Exception):
    """Raised for all expected failure conditions of the cache engine.

    Network errors surface to the strategy layer, which decides whether a
    fallback exists. Store errors surface to the lifecycle and fetcher, which
    decide whether they are fatal (install) or merely logged (steady state).
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str = "",
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "suggestion": self.suggestion,
                "recoverable": self.recoverable,
            }
        }
