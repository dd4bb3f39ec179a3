# portfolio/app/images/exceptions.py


class RelationshipError(Exception):
    """Base class for errors raised by the relationship engine."""
    status_code = 500


class NotFound(RelationshipError):
    """A referenced image, series or category does not exist."""
    status_code = 404

    def __init__(self, kind, pk):
        self.kind = kind
        self.pk = pk
        super().__init__(f"{kind} {pk} not found.")


class InvalidReference(RelationshipError):
    """A reference points at something it is not allowed to, e.g. a cover image outside the series."""
    status_code = 400


class PartialCascadeFailure(RelationshipError):
    """
    A cascade step failed part way through a delete. The whole operation
    must be retried by the caller; the engine never retries on its own.
    """
    status_code = 500

    def __init__(self, operation, step, cause=None):
        self.operation = operation
        self.step = step
        self.cause = cause
        super().__init__(f"{operation} failed during '{step}': {cause}")
