class PolicyValidationError(ValueError):
    """Raised when an SLA definition or escalation rule is malformed.

    ``field`` names the offending column so the API can surface it verbatim.
    """

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class NotFoundError(LookupError):
    """A tenant-scoped lookup found nothing."""
