"""Test suite for error handling."""

import asyncio

from mcphub.errors import ErrorCategory, classify_error, format_user_friendly_error
from mcphub.exceptions import (
    AmbiguousToolError,
    ConfigError,
    ConnectionClosedError,
    HandshakeFailure,
    HttpStatusError,
    NotReadyError,
    RemoteError,
    RequestTimeoutError,
    ServerUnavailableError,
    ToolNotFoundError,
)


class TestErrorClassification:
    """Test error classification."""

    def test_classify_not_found(self):
        """Test classification of unresolved tool references."""
        error_info = classify_error(ToolNotFoundError("Unknown tool", reference="fs/nope"))
        assert error_info.category == ErrorCategory.NOT_FOUND
        assert error_info.retryable is False
        assert "fs/nope" in error_info.user_message

    def test_classify_ambiguous(self):
        """Test ambiguous references suggest the candidates."""
        error_info = classify_error(AmbiguousToolError("@fs", ["fs/read", "fs/write"]))
        assert error_info.category == ErrorCategory.INVALID_REQUEST
        assert "fs/read, fs/write" in error_info.suggestions[0]

    def test_classify_timeout(self):
        """Test classification of request timeouts."""
        error_info = classify_error(RequestTimeoutError("timed out", server="fs"))
        assert error_info.category == ErrorCategory.RETRYABLE
        assert error_info.retryable is True
        assert error_info.server == "fs"

    def test_classify_server_gone(self):
        """Test errors meaning the server is not usable."""
        for error in (
            ConnectionClosedError("closed", server="fs"),
            HandshakeFailure("initialize timed out", server="fs"),
            ServerUnavailableError("not ready", server="fs"),
            HttpStatusError(502, "bad gateway", server="fs"),
        ):
            error_info = classify_error(error)
            assert error_info.category == ErrorCategory.SERVER_GONE, error
            assert error_info.retryable is False

    def test_classify_http_client_errors(self):
        """Test non-fatal HTTP statuses."""
        assert classify_error(HttpStatusError(429)).category == ErrorCategory.RETRYABLE
        error_info = classify_error(HttpStatusError(403, "forbidden"))
        assert error_info.category == ErrorCategory.INVALID_REQUEST
        assert "HTTP 403" in error_info.user_message

    def test_classify_not_ready(self):
        """Test requests before Ready are retryable."""
        assert classify_error(NotReadyError("handshaking")).retryable is True

    def test_classify_remote_errors(self):
        """Test JSON-RPC errors split on their code."""
        assert classify_error(RemoteError(-32602, "Invalid params")).category == (
            ErrorCategory.INVALID_REQUEST
        )
        assert classify_error(RemoteError(-32000, "disk full")).category == ErrorCategory.REMOTE

    def test_classify_config(self):
        """Test configuration errors."""
        assert classify_error(ConfigError("no command")).category == ErrorCategory.CONFIG

    def test_classify_network(self):
        """Test bare network errors are retryable."""
        assert classify_error(ConnectionResetError("reset")).retryable is True
        assert classify_error(asyncio.TimeoutError()).category == ErrorCategory.RETRYABLE

    def test_classify_unknown(self):
        """Test anything else is unknown."""
        error_info = classify_error(ValueError("weird"))
        assert error_info.category == ErrorCategory.UNKNOWN
        assert "ValueError: weird" == error_info.technical_details


class TestErrorFormatting:
    """Test error message formatting."""

    def test_format_with_server(self):
        """Test the server name prefixes the message."""
        error_info = classify_error(RequestTimeoutError("timed out", server="fs"))
        message = format_user_friendly_error(error_info)
        assert "Error: [fs] The tool call timed out." in message
        assert "Details: RequestTimeoutError: timed out" in message
        assert "Suggestions:" in message
        assert "  1. " in message

    def test_format_without_server(self):
        """Test messages without a server have no prefix."""
        message = format_user_friendly_error(classify_error(ValueError("weird")))
        assert "Error: An unexpected error occurred." in message
