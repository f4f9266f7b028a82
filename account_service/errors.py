from contextlib import contextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = structlog.get_logger(__name__)


class ApiError(Exception):
    status_code = 500

    def __init__(self, message: str, error: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.error = error
        if status_code is not None:
            self.status_code = status_code

    def payload(self) -> dict:
        body = {"message": self.message}
        if self.error is not None:
            body["error"] = self.error
        return body


class NotFound(ApiError):
    status_code = 404


class AccountNotFound(NotFound):
    def __init__(self, account_id=None):
        super().__init__("Account not found")
        self.account_id = account_id


class TransactionNotFound(NotFound):
    def __init__(self, transaction_id=None):
        super().__init__("Transaction not found")
        self.transaction_id = transaction_id


class BalanceConflict(ApiError):
    """The account balance moved between read and write."""

    status_code = 409

    def __init__(self, account_id: int):
        super().__init__("Account was modified concurrently, retry the request")
        self.account_id = account_id


@contextmanager
def failure_message(message: str):
    """Turn any non-API exception raised in the block into a 500 ApiError."""
    try:
        yield
    except ApiError:
        raise
    except Exception as e:
        logger.exception("request_failed", message=message)
        raise ApiError(message, error=str(e)) from e


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        return JSONResponse(status_code=exc.status_code, content=exc.payload())

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled_error", path=request.url.path)
        return JSONResponse(status_code=500, content={"message": "Internal server error", "error": str(exc)})
