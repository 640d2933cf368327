"""Typed failures raised by the dispatch engine."""


class DispatchError(Exception):
    """Base class for every guard violation surfaced to callers."""


class NotFound(DispatchError):
    """A ride, puller, rider or block id does not exist."""


class InvalidState(DispatchError):
    """The operation is not permitted from the ride's current status."""


class MissingAssignment(DispatchError):
    """A ride that needs a puller has none attached."""
