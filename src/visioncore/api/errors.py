"""API error responses.

Error bodies are flat JSON objects, ``{"error": CODE, "message": text}``, so
web clients can branch on the code (e.g. KEY_MISSING opens the key dialog).
"""

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    """Error rendered as ``{"error": code, "message": message}`` with a status code."""

    def __init__(self, status_code: int, code: str, message: str | None = None):
        super().__init__(message or code)
        self.status_code = status_code
        self.code = code
        self.message = message

    def to_body(self) -> dict[str, str]:
        body = {"error": self.code}
        if self.message:
            body["message"] = self.message
        return body


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())
