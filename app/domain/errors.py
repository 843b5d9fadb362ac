from __future__ import annotations

from typing import ClassVar


class PortalError(Exception):
    status_code: ClassVar[int] = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UnauthorizedError(PortalError):
    status_code: ClassVar[int] = 401


class ForbiddenError(PortalError):
    status_code: ClassVar[int] = 403


class ValidationError(PortalError):
    status_code: ClassVar[int] = 400


class NotFoundError(PortalError):
    status_code: ClassVar[int] = 404


class ConflictError(PortalError):
    status_code: ClassVar[int] = 409
