"""Custom exception hierarchy for fleetkeeper.

All fleetkeeper-specific exceptions inherit from FleetError, enabling
callers to catch every lifecycle failure with a single except clause.
"""

from __future__ import annotations


class FleetError(Exception):
    """Base exception for all fleetkeeper errors."""


class InvalidCredentials(FleetError):
    """Raised when endpoint, identity or secret is missing. Never retried."""


class AuthenticationFailure(FleetError):
    """Raised when the identity service rejects the credentials."""


class ConfigurationError(FleetError):
    """Raised for invalid configuration or missing required settings."""


class ActionFailed(FleetError):
    """Raised when a provider action did not succeed.

    The message embeds the provider response so the failure can be
    diagnosed without querying the provider again.
    """


class ProvisioningFailed(ActionFailed):
    """Raised when a node did not reach the active state.

    Carries the observed status and fault, and the outcome of the cleanup
    attempt as ``cleanup_error`` when that cleanup failed as well.
    """

    def __init__(
        self,
        message: str,
        *,
        status: str | None = None,
        fault: str | None = None,
        cleanup_error: BaseException | None = None,
    ) -> None:
        self.status = status
        self.fault = fault
        self.cleanup_error = None
        super().__init__(message)
        if cleanup_error is not None:
            self.attach_cleanup_error(cleanup_error)

    def attach_cleanup_error(self, error: BaseException) -> None:
        """Record a failure of the compensating cleanup next to this error."""
        self.cleanup_error = error
        self.add_note(f"Cleanup failed: {type(error).__name__}: {error}")


class NoFloatingIpCapability(FleetError):
    """Raised when the account is not permitted to manage floating IPs.

    An expected condition: callers skip floating IP assignment.
    """
