"""
Domain errors raised by the service layer.

Routes never catch these; the handler registered in main.py turns them
into JSON responses with the status code carried by each class.
"""

from fastapi import Request
from fastapi.responses import JSONResponse


class LedgerError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LedgerError):
    status_code = 400


class InsufficientFundsError(LedgerError):
    status_code = 402


class PermissionDeniedError(LedgerError):
    status_code = 403


class NotFoundError(LedgerError):
    status_code = 404


class InvalidStateError(LedgerError):
    status_code = 409


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})
