class SchedulingError(Exception):
    """Base class for every error the scheduling layer raises on purpose."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SchedulingError):
    """Request rejected before any visit store call was made."""

    status_code = 400


class NotFoundError(SchedulingError):
    status_code = 404


class StoreError(SchedulingError):
    """Persistence failure. The session was rolled back."""

    status_code = 503


class DataLossError(StoreError):
    """A reinsert move deleted the visit but could not write it back.

    ``lost_visit`` holds the fields of the deleted row so the caller can
    recreate it by hand.
    """

    status_code = 500

    def __init__(self, message: str, lost_visit: dict):
        super().__init__(message)
        self.lost_visit = lost_visit


class PlanningInvariantError(SchedulingError):
    """A month transfer found a weekday with no dates in the target month."""
