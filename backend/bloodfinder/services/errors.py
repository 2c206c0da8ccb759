"""
Domain error taxonomy.

Services raise these; ``main.py`` renders them as JSON with the status code
carried by each class. Raising inside a ``get_db`` unit of work rolls the
whole operation back.
"""


class DomainError(Exception):
    status_code = 400
    code = "domain_error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(DomainError):
    status_code = 422
    code = "validation_error"


class NotFoundError(DomainError):
    status_code = 404
    code = "not_found"


class ConflictError(DomainError):
    status_code = 409
    code = "conflict"


class IneligibleError(ConflictError):
    """The actor or resource is not in a state that permits the operation."""

    code = "ineligible"


class ConcurrencyError(DomainError):
    """A compare-and-set lost to a concurrent writer."""

    status_code = 409
    code = "concurrency_conflict"
