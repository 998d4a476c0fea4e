class HuddleError(ValueError):
    """Base class for user-visible service errors."""


class ValidationError(HuddleError):
    pass


class NotFoundError(HuddleError):
    pass


class ConflictError(HuddleError):
    pass


class PermissionDeniedError(HuddleError):
    pass


class EventPassedError(ValidationError):
    def __init__(self, message: str = "This event has already passed") -> None:
        super().__init__(message)


class CapacityReachedError(ConflictError):
    def __init__(self, message: str = "This event is at full capacity") -> None:
        super().__init__(message)


class ConversionError(HuddleError):
    """The event insert of an intent conversion failed; nothing was written."""
