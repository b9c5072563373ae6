"""Tests for the mcphub exception hierarchy."""

import pytest

from mcphub.exceptions import (
    AmbiguousToolError,
    ConnectionClosedError,
    FramingError,
    HttpStatusError,
    McpHubError,
    ProtocolViolation,
    RemoteError,
    RequestTimeoutError,
    SessionExpiredError,
    ToolNotFoundError,
    ToolResolutionError,
    TransportError,
)


class TestMcpHubError:
    """Test the base exception."""

    def test_message_and_context(self):
        """Test message, server and context are kept."""
        error = McpHubError("Server not running", server="fs", state="closed")
        assert str(error) == "Server not running"
        assert error.server == "fs"
        assert error.context == {"state": "closed"}

    def test_repr_includes_context(self):
        """Test repr shows server and context."""
        error = McpHubError("boom", server="fs", code=7)
        text = repr(error)
        assert text.startswith("McpHubError(")
        assert "server='fs'" in text
        assert "code=7" in text

    def test_repr_minimal(self):
        """Test repr without server or context."""
        assert repr(McpHubError("boom")) == "McpHubError(message='boom')"


class TestHierarchy:
    """Test which errors are caught together."""

    @pytest.mark.parametrize(
        "error",
        [
            TransportError("x"),
            HttpStatusError(500),
            SessionExpiredError("x"),
            ConnectionClosedError("x"),
            FramingError("x"),
            RemoteError(-1, "x"),
            ToolNotFoundError("x", reference="a/b"),
        ],
    )
    def test_all_are_mcphub_errors(self, error):
        """Test every specific error derives from McpHubError."""
        assert isinstance(error, McpHubError)

    def test_framing_is_protocol_violation(self):
        """Test framing errors count as protocol violations."""
        assert issubclass(FramingError, ProtocolViolation)

    def test_timeout_is_builtin_timeout(self):
        """Test request timeouts can be caught as TimeoutError."""
        with pytest.raises(TimeoutError):
            raise RequestTimeoutError("too slow", server="fs")

    def test_transport_error_fatal_by_default(self):
        """Test transport errors are fatal unless marked otherwise."""
        assert TransportError("reset").fatal is True
        assert TransportError("retry", fatal=False).fatal is False


class TestSpecificErrors:
    """Test the errors carrying structured data."""

    def test_http_status_error(self):
        """Test status code, preview and retryability."""
        error = HttpStatusError(503, "unavailable", server="remote")
        assert error.status_code == 503
        assert error.body_preview == "unavailable"
        assert error.fatal is True
        assert error.is_retryable is True
        assert str(error) == "http 503: unavailable"

    def test_http_client_errors_not_fatal(self):
        """Test 4xx responses do not kill the connection."""
        error = HttpStatusError(400, "bad request")
        assert error.fatal is False
        assert error.is_retryable is False
        assert HttpStatusError(429).is_retryable is True

    def test_remote_error(self):
        """Test JSON-RPC error fields are exposed."""
        error = RemoteError(-32602, "Invalid params", data={"field": "path"}, server="fs")
        assert error.code == -32602
        assert error.data == {"field": "path"}
        assert error.server == "fs"
        assert "-32602" in str(error)
        assert "Invalid params" in str(error)

    def test_ambiguous_tool_error(self):
        """Test candidates are listed."""
        error = AmbiguousToolError("@fs", ["fs/read", "fs/write"])
        assert isinstance(error, ToolResolutionError)
        assert not isinstance(error, ToolNotFoundError)
        assert error.reference == "@fs"
        assert error.candidates == ["fs/read", "fs/write"]
        assert "fs/read, fs/write" in str(error)
