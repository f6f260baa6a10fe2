# ================================================================
# File     : core/errors.py
# Purpose  : Exception types shared by the Graph handlers and the
#            role membership resolver
# Notes    : Only ValidationError ends a run; everything else is
#            caught at the smallest unit (one role, one group)
# ================================================================


class PoodleError(Exception):
    """Base class for PrivPoodle errors."""


class ValidationError(PoodleError):
    """A precondition failed (no session, bad options). Fatal for the run."""


class UpstreamFetchError(PoodleError):
    """A directory call failed. Recovered per role/group and counted."""

    def __init__(self, message: str, status: int = None):
        super().__init__(message)
        self.status = status


class NotFoundError(UpstreamFetchError):
    """The directory has no such object. Skipped, never counted."""

    def __init__(self, message: str):
        super().__init__(message, status=404)


class AggregationError(PoodleError):
    """Filtering or summarising hit a record that breaks the record contract."""
