"""Tests for protocol version negotiation."""

import pytest

from mcphub.mcp.protocol import (
    DEFAULT_PROTOCOL_VERSION,
    LATEST_PROTOCOL_VERSION,
    SUPPORTED_PROTOCOL_VERSIONS,
    negotiate_protocol_version,
)


class TestNegotiateProtocolVersion:
    """Test choosing the session protocol version."""

    @pytest.mark.parametrize("version", SUPPORTED_PROTOCOL_VERSIONS)
    def test_supported_version_kept(self, version):
        """Test a server speaking a supported version gets exactly that."""
        assert negotiate_protocol_version(version) == version

    def test_newer_server_uses_client_latest(self):
        """Test a server ahead of the client is held to the client's version."""
        assert negotiate_protocol_version("2099-01-01") == LATEST_PROTOCOL_VERSION

    def test_client_request_is_a_ceiling(self):
        """Test the client's requested version caps the result."""
        assert negotiate_protocol_version("2025-11-25", "2025-03-26") == "2025-03-26"

    def test_unknown_date_rounds_down(self):
        """Test an unlisted date maps to the newest supported version before it."""
        assert negotiate_protocol_version("2025-05-01") == "2025-03-26"

    def test_older_than_supported(self):
        """Test a server older than every supported version gets the oldest one."""
        assert negotiate_protocol_version("2023-01-01") == SUPPORTED_PROTOCOL_VERSIONS[0]

    @pytest.mark.parametrize("version", [None, "", 20250618, "1.0", "draft", "2025-06-18-beta"])
    def test_malformed_falls_back_to_default(self, version):
        """Test versions that are not release dates never reach the wire."""
        assert negotiate_protocol_version(version) == DEFAULT_PROTOCOL_VERSION
