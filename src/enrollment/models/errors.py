"""Standard error codes for the checkout gateway.

Admin authorization and configuration failures share this error body. Payment
and webhook routes answer with their own bodies.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ErrorCode(str, Enum):
    """Standard error codes."""

    CONFIGURATION_MISSING = "ERR_CONFIG_001"
    UNAUTHORIZED = "ERR_AUTH_001"


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.CONFIGURATION_MISSING: "A required setting is not configured",
    ErrorCode.UNAUTHORIZED: "Not authorized",
}

ERROR_RECOVERY: dict[ErrorCode, str] = {
    ErrorCode.CONFIGURATION_MISSING: "Set the missing environment variable or SSM parameter",
    ErrorCode.UNAUTHORIZED: "Provide a valid admin API key",
}


class ErrorResponse(BaseModel):
    """Standard error response body."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: ErrorCode
    message: str
    recovery: str
    details: Optional[dict[str, str]] = None

    @classmethod
    def from_code(
        cls,
        code: ErrorCode,
        details: Optional[dict[str, str]] = None,
    ) -> "ErrorResponse":
        """Create an ErrorResponse from an error code."""
        return cls(
            error_code=code,
            message=ERROR_MESSAGES[code],
            recovery=ERROR_RECOVERY[code],
            details=details,
        )


class GatewayError(Exception):
    """Exception raised at the HTTP boundary.

    Converted to an ErrorResponse by the registered exception handler.
    """

    def __init__(
        self,
        code: ErrorCode,
        details: Optional[dict[str, str]] = None,
    ):
        self.code = code
        self.message = ERROR_MESSAGES[code]
        self.recovery = ERROR_RECOVERY[code]
        self.details = details
        super().__init__(self.message)

    def to_error_response(self) -> ErrorResponse:
        return ErrorResponse.from_code(self.code, self.details)
