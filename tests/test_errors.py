"""Tests for error descriptions."""

import errno

from idebridge.core.errors import (
    BridgeNotRunningError,
    BridgeStartError,
    DescribedError,
    IDEBridgeError,
    describe_error,
)


class TestDescribedError:
    """Test DescribedError formatting."""

    def test_with_suggestion(self):
        err = DescribedError(message="claude not found", suggestion="Install it")
        assert str(err) == "claude not found | Suggestion: Install it"

    def test_without_suggestion(self):
        assert str(DescribedError(message="boom")) == "boom"


class TestDescribeError:
    """Test describing spawn and serve failures."""

    def test_missing_executable(self):
        err = describe_error(FileNotFoundError(errno.ENOENT, "No such file"), executable="claude")

        assert err.message == "claude not found"
        assert "claude_executable" in err.suggestion

    def test_missing_file_uses_filename(self):
        err = describe_error(FileNotFoundError(errno.ENOENT, "No such file", "/opt/claude"))
        assert err.message == "/opt/claude not found"

    def test_permission_denied(self):
        err = describe_error(PermissionError(errno.EACCES, "Permission denied"))
        assert "permissions" in err.suggestion

    def test_address_in_use(self):
        err = describe_error(OSError(errno.EADDRINUSE, "Address already in use"))
        assert "port" in err.suggestion

    def test_suggestion_from_message(self):
        err = describe_error(RuntimeError("No space left on device"))
        assert err.suggestion == "Free up disk space on the device"

    def test_unknown_error(self):
        err = describe_error(ValueError())

        assert err.message == "ValueError"
        assert err.suggestion is None


class TestHierarchy:
    """Error classes share one base."""

    def test_base_class(self):
        assert issubclass(BridgeStartError, IDEBridgeError)
        assert issubclass(BridgeNotRunningError, IDEBridgeError)
