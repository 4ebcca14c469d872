"""Admin authorization checks."""

from __future__ import annotations

from typing import Iterable

from .config import ForceTasksSettings


class AdminAuthorizationError(PermissionError):
    """Raised when a non-admin attempts an admin-only operation."""


class AdminPolicy:
    """Decides whether an email address belongs to an administrator."""

    def __init__(self, emails: Iterable[str] = (), domain: str | None = None) -> None:
        self._emails = {email.strip().lower() for email in emails if email.strip()}
        self._domain = domain.strip().lower().lstrip("@") if domain else None

    @classmethod
    def from_settings(cls, settings: ForceTasksSettings) -> "AdminPolicy":
        return cls(settings.admin_emails, settings.admin_email_domain)

    def is_admin(self, email: str | None) -> bool:
        if not email:
            return False
        normalized = email.strip().lower()
        if normalized in self._emails:
            return True
        return bool(self._domain) and normalized.endswith(f"@{self._domain}")

    def require(self, email: str | None) -> str:
        if not self.is_admin(email):
            raise AdminAuthorizationError(f"Unauthorized: admin access required (got {email or 'anonymous'})")
        return email.strip().lower()  # type: ignore[union-attr]


def is_admin(email: str | None, settings: ForceTasksSettings) -> bool:
    return AdminPolicy.from_settings(settings).is_admin(email)


def require_admin(email: str | None, settings: ForceTasksSettings) -> str:
    return AdminPolicy.from_settings(settings).require(email)


__all__ = ["AdminAuthorizationError", "AdminPolicy", "is_admin", "require_admin"]
