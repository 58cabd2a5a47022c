"""Error taxonomy shared by the core, the HTTP facade and the CLI.

Every error carries the status code the facade renders it with, so callers
never need a second mapping table.
"""

from collections.abc import Sequence


class ControlPlaneError(Exception):
    """Base class for all control-plane failures."""

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(ControlPlaneError):
    """Bad caller input: id, type, JSON body or URL scheme."""

    status_code = 400


class InvalidIdError(ValidationError):
    """Project id does not match [a-z0-9][a-z0-9_-]*."""

    pass


class UpstreamError(ControlPlaneError):
    """Remote source fetch failed, timed out or returned garbage."""

    status_code = 502


class PayloadTooLargeError(UpstreamError):
    """Source payload exceeds the size ceiling."""

    status_code = 413


class NotFoundError(ControlPlaneError):
    """Unknown project id."""

    status_code = 404


class ConfigurationError(ControlPlaneError):
    """Host-side state is not what provisioning expects. Never retried."""

    status_code = 500


class CommandError(ConfigurationError):
    """External process exited non-zero or timed out."""

    def __init__(
        self,
        argv: Sequence[str],
        exit_code: int | None,
        stdout: str = "",
        stderr: str = "",
        message: str | None = None,
    ):
        self.argv = list(argv)
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        if message is None:
            detail = stderr.strip() or stdout.strip() or "no output"
            message = f"command failed ({exit_code}): {' '.join(self.argv)}: {detail}"
        super().__init__(message)


class AuthError(ControlPlaneError):
    """Missing or wrong deployment credential."""

    status_code = 401


class AgentUnconfiguredError(AuthError):
    """No deployment credential configured on this host."""

    status_code = 503
