"""Custom exceptions for the pfSense ZTP reconciler."""

from pfztp.constants import EX_CONFIG, EX_SOFTWARE, EX_TEMPFAIL, EX_UNAVAILABLE, EX_USAGE


class ManagerError(RuntimeError):
    """Raised on unrecoverable configuration or runtime errors."""

    exit_code = EX_SOFTWARE


class UsageError(ManagerError):
    """Bad invocation arguments."""

    exit_code = EX_USAGE


class MissingDependency(ManagerError):
    """A required external tool is not installed."""

    exit_code = EX_UNAVAILABLE


class ConfigurationError(ManagerError):
    """A required input or artifact is missing or invalid."""

    exit_code = EX_CONFIG


class RuntimeFailure(ManagerError):
    """An external call failed despite valid inputs."""

    exit_code = EX_SOFTWARE


class NotReady(ManagerError):
    """The domain's current state conflicts with the requested operation."""

    exit_code = EX_TEMPFAIL
