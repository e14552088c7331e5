class MaterialTrackerError(ValueError):
    """Base class for errors a caller can act on. Subclasses ValueError so
    callers that only know about ValueError still catch them."""


class LedgerValidationError(MaterialTrackerError):
    pass


class RecordNotFoundError(MaterialTrackerError):
    pass


class InvalidTransitionError(LedgerValidationError):
    pass
