"""
Error taxonomy shared by the ride session, the zone tracker and the API wrappers.

Every error carries a ``user_message`` that the UI can show as-is.
"""

INSUFFICIENT_BALANCE_START_MESSAGE = "Insufficient balance to unlock; top up your account and try again."
INSUFFICIENT_BALANCE_END_MESSAGE = "Insufficient balance to end the ride; top up your account and try again."
START_FAILED_MESSAGE = "Could not start the ride. Please try again."
END_FAILED_MESSAGE = "Could not end the ride. Please try again."
ZONE_CHECK_FAILED_MESSAGE = "Could not check zone rules right now."
LOCATION_FAILED_MESSAGE = "Could not read your position. Check location permissions."
LOCATION_UNSUPPORTED_MESSAGE = "Location sharing is not supported on this device."
HISTORY_FAILED_MESSAGE = "Could not load previous rides. Please try again."
ZONES_FAILED_MESSAGE = "Could not load zones. Please try again."


class RideError(Exception):
    """Base class. ``retryable`` tells the caller whether repeating the call may help."""

    retryable = False

    def __init__(self, message: str, user_message: str | None = None):
        super().__init__(message)
        self.user_message = user_message or message


class InvalidInput(RideError):
    pass


class AlreadyActive(RideError):
    pass


class InsufficientBalance(RideError):
    pass


class NetworkFailure(RideError):
    retryable = True

    def __init__(self, message: str, user_message: str | None = None, status_code: int | None = None):
        super().__init__(message, user_message)
        self.status_code = status_code


class MalformedRecord(RideError):
    pass
