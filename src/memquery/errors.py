class InvalidArgumentError(ValueError):
    """Raised when a query or mutation call is malformed.

    Raised before any change is made to the table, so the call can be
    retried safely once the arguments are corrected.
    """


__all__ = ["InvalidArgumentError"]
