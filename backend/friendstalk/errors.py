"""Error taxonomy for the relay core.

These exceptions mark the boundary with external collaborators (the message
store and the token verifier). Components catch them and turn them into
explicit outcomes; none of them is raised across component boundaries.
"""


class RelayError(Exception):
    """Base class for relay errors."""


class InvalidArgument(RelayError):
    """Malformed identity, empty content, or an otherwise unusable payload."""


class PersistenceError(RelayError):
    """The message store could not complete a read or write."""


class AuthenticationError(RelayError):
    """An identity token was missing, expired, or failed verification."""
