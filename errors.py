"""
Error taxonomy for the appeal automation.

Exceptions are raised inside the run body and end up as plain text in
RunStatus.error. The ERROR_* constants tag engine step results.
"""

# -----------------------------------------------------------------------------
# Step error types (engine side)
# -----------------------------------------------------------------------------
ERROR_TIMEOUT = "timeout"
ERROR_NOT_FOUND = "not_found"
ERROR_NAVIGATION = "navigation_error"
ERROR_CLICK = "click_error"
ERROR_FILL = "fill_error"
ERROR_UPLOAD = "upload_error"
ERROR_VERIFICATION_TIMEOUT = "verification_timeout"
ERROR_UNKNOWN = "unknown_error"

RETRYABLE_ERRORS = {ERROR_TIMEOUT, ERROR_CLICK, ERROR_FILL, ERROR_NAVIGATION, ERROR_UNKNOWN}


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------
class AutomationError(Exception):
    """Base class for every failure the orchestrator knows how to report."""


class AlreadyRunningError(AutomationError):
    def __init__(self, message: str = "An appeal automation run is already in progress"):
        super().__init__(message)


class PreconditionMissingError(AutomationError):
    """No profile, no identity documents, or an unresolvable IP asset / file reference."""


class LaunchError(AutomationError):
    """Browser binary missing or the debug endpoint never came up."""


class ExecutionError(AutomationError):
    """Automation engine could not be spawned or exited non-zero on every strategy."""


class BrowserTimeoutError(LaunchError, TimeoutError):
    pass


class VerificationTimeoutError(AutomationError, TimeoutError):
    pass
