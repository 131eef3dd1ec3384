from __future__ import annotations

from fastapi import HTTPException, status


def error(status_code: int, code: str, message: str, details: dict | None = None) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"error": {"code": code, "message": message, "details": details or {}}},
    )


def unauthorized() -> HTTPException:
    return error(status.HTTP_401_UNAUTHORIZED, "unauthorized", "Authentication required")


def forbidden(message: str = "You do not have permission for this action") -> HTTPException:
    return error(status.HTTP_403_FORBIDDEN, "forbidden", message)


def not_found(message: str = "Resource not found") -> HTTPException:
    return error(status.HTTP_404_NOT_FOUND, "not_found", message)


def bad_request(code: str, message: str, details: dict | None = None) -> HTTPException:
    return error(status.HTTP_400_BAD_REQUEST, code, message, details)


def conflict(code: str, message: str, details: dict | None = None) -> HTTPException:
    return error(status.HTTP_409_CONFLICT, code, message, details)


def payload_too_large(message: str) -> HTTPException:
    return error(status.HTTP_413_CONTENT_TOO_LARGE, "payload_too_large", message)


def service_unavailable(code: str, message: str) -> HTTPException:
    return error(status.HTTP_503_SERVICE_UNAVAILABLE, code, message)


def server_error(message: str = "Server error") -> HTTPException:
    return error(status.HTTP_500_INTERNAL_SERVER_ERROR, "server_error", message)
