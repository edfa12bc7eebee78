"""Exception hierarchy for the auto-scaling controller."""


class AutoscalerError(Exception):
    """Base class for controller errors."""


class HostingError(AutoscalerError):
    """Error returned by the hosting control-plane."""

    transient = False

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientHostingError(HostingError):
    """Timeout, connection failure, 429 or 5xx. Safe to retry."""

    transient = True


class PermanentHostingError(HostingError):
    """Request the control-plane will never accept as sent. Not retried."""


class ServerNotFoundError(PermanentHostingError):
    """The external server handle is unknown to the control-plane (404)."""


class HostingAuthError(PermanentHostingError):
    """The API key was rejected (401/403)."""


class DeploymentNotFoundError(AutoscalerError):
    """No deployment row with the given id."""


class OperationInProgressError(AutoscalerError):
    """Another mutating operation holds the deployment lock."""

    def __init__(self, deployment_id: str, operation: str | None = None):
        held_by = f" ({operation})" if operation else ""
        super().__init__(f"operation in progress for deployment {deployment_id}{held_by}")
        self.deployment_id = deployment_id
        self.operation = operation


class InvalidTransitionError(AutoscalerError):
    """Lifecycle transition not allowed from the current status."""

    def __init__(self, deployment_id: str, current: str, target: str):
        super().__init__(f"deployment {deployment_id} cannot move from {current} to {target}")
        self.deployment_id = deployment_id
        self.current = current
        self.target = target


class InvalidTierError(AutoscalerError):
    """Tier name not present in the tier table."""
