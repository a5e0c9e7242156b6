"""Failures that abandon a poll cycle.

A missing data item or a sentinel value is not an error: both simply read
as ``None``.
"""


class MonitorError(Exception):
    pass


class TransportFailure(MonitorError):
    """Non-success HTTP status or network error while fetching a snapshot."""


class ParseFailure(MonitorError):
    """Payload is not a well-formed XML document."""


class CycleCancelled(MonitorError):
    """The cycle was superseded by a newer one; its result must be dropped."""
