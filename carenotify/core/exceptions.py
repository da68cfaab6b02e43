"""Domain exceptions raised by the engine services."""


class InvalidDefinitionError(ValueError):
    """A trigger, template, condition tree or recipient rule failed validation."""


class NotFoundError(LookupError):
    """Requested row does not exist (or is not visible to the caller)."""


class RegistryUnavailableError(RuntimeError):
    """Trigger lookup failed; fatal for the whole event."""


class ConsentDeniedError(PermissionError):
    """An AI-assisted or data-sharing action was refused by the consent gate.

    Not retryable without a consent state change.
    """

    def __init__(self, subject_id: int, category: str, reason: str):
        self.subject_id = subject_id
        self.category = category
        self.reason = reason
        super().__init__(
            f"Consent for '{category}' is not granted for this client ({reason})"
        )
