class NotFoundError(Exception):
    """Raised when an expected record, credential or staged file does not exist."""


class ConflictError(Exception):
    """Raised when the portal (or a record) is not in the state the workflow expects."""


class InvalidArgumentError(Exception):
    """Raised on missing/malformed input or an incomplete provisioning result."""


class ChallengeEncounteredError(ConflictError):
    """Raised when the portal shows a CAPTCHA. Never retried."""


class LoginError(Exception):
    """Raised when the credentials were submitted but no logged-in state was reached."""


class RunCancelledError(Exception):
    """Raised inside a run once its deadline elapsed or its job was cancelled."""


class InvalidTransitionError(RuntimeError):
    """Raised when the stage machine is driven out of its transition table."""
