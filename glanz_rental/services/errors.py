from __future__ import annotations


class RentalEngineError(RuntimeError):
    pass


class ValidationError(RentalEngineError, ValueError):
    pass


class PersistenceRejected(RentalEngineError):
    def __init__(self, message: str, status: str | None = None):
        super().__init__(message)
        self.status = status
