"""Error taxonomy shared by every bounded context.

Errors carry a ``messages`` dict mapping a field (or ``"base"``) to a list of
human-readable messages, so callers can surface them field by field.
"""


class StorefrontError(Exception):
    def __init__(self, messages: dict[str, list[str]] | None = None):
        self.messages = messages or {}
        super().__init__(self.messages)

    def __str__(self) -> str:
        return "; ".join(f"{field}: {', '.join(msgs)}" for field, msgs in self.messages.items())


class ValidationError(StorefrontError):
    """A value is out of range, malformed, or not one of the allowed choices."""


class StockIntegrityError(ValidationError):
    """A stock change would leave a non-backorderable item negative, or rewrite history."""


class StateError(StorefrontError):
    """The operation is not allowed in the object's current state."""


class GatewayError(StorefrontError):
    """The payment gateway rejected a request."""


class ObjectNotFoundError(StorefrontError):
    pass
