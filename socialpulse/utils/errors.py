class AnalyticsError(Exception):
    """Base class for errors raised by the analytics services."""

    status_code = 500


class InvalidQueryError(AnalyticsError):
    """Bad date range, unknown granularity, out-of-range parameter."""

    status_code = 400


class EntityNotFoundError(AnalyticsError):
    """A single requested entity (post, workspace) does not exist."""

    status_code = 404
