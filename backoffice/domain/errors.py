from __future__ import annotations


class AuthzError(Exception):
    pass


class RoleValidationError(AuthzError):
    pass


class ProtectedRoleError(RoleValidationError):
    pass


class RemoteError(AuthzError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class LoadCancelledError(AuthzError):
    pass
