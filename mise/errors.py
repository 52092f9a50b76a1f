"""
Error kinds raised by the router core.
"""


class RouterError(Exception):
    """Base class for every error the router reports to its callers."""


class ValidationError(RouterError):
    """A request is missing its query or session id."""


class NotFoundError(RouterError):
    """An explicit session lookup found nothing."""


class BackendError(RouterError):
    """The generation endpoint was unreachable or answered with a failure."""


class PersistenceError(RouterError):
    """The durable store could not be read or written."""


class StreamIntegrityError(RouterError):
    """A single stream fragment could not be decoded.

    Never surfaced to callers: the fragment is logged and dropped.
    """
