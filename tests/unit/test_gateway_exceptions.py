"""Unit tests for GatewayError to HTTP status mapping."""

import pytest

from enrollment.models.errors import ERROR_MESSAGES, ERROR_RECOVERY, ErrorCode, GatewayError
from gateway.exceptions import ERROR_CODE_TO_HTTP_STATUS, get_http_status_for_error


class TestErrorMapping:
    @pytest.mark.parametrize(
        ("code", "status"),
        [
            (ErrorCode.UNAUTHORIZED, 401),
            (ErrorCode.CONFIGURATION_MISSING, 500),
        ],
    )
    def test_status(self, code, status):
        assert get_http_status_for_error(code) == status

    def test_every_code_is_mapped_and_described(self):
        for code in ErrorCode:
            assert code in ERROR_CODE_TO_HTTP_STATUS
            assert code in ERROR_MESSAGES
            assert code in ERROR_RECOVERY

    def test_error_response_body(self):
        error = GatewayError(ErrorCode.UNAUTHORIZED, {"header": "Authorization"})

        body = error.to_error_response().model_dump(mode="json")

        assert body == {
            "success": False,
            "error_code": "ERR_AUTH_001",
            "message": "Not authorized",
            "recovery": "Provide a valid admin API key",
            "details": {"header": "Authorization"},
        }
