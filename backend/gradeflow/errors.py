"""Domain exceptions raised by services and mapped to HTTP responses.

Each exception carries the status code the API should answer with, so
services never import FastAPI and route handlers never need their own
try/except blocks for expected failures.
"""


class GradeflowError(Exception):
    """Base class for expected, user-facing failures."""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequestError(GradeflowError):
    """The request is well-formed but violates a business rule."""
    status_code = 400


class AuthenticationError(GradeflowError):
    status_code = 401


class NotFoundError(GradeflowError):
    """The addressed entity does not exist or belongs to another user."""
    status_code = 404


class ConflictError(GradeflowError):
    """A uniqueness rule would be broken."""
    status_code = 409
