"""
Typed registry failures.

Every guard check in the registry maps to exactly one error class. Errors
carry a stable ``code`` (used in CLI output and API bodies) and the HTTP
status the API layer answers with.
"""

from __future__ import annotations

from typing import Optional


class RegistryError(Exception):
    """Base class for every deterministic rejection raised by the registry."""

    code = "REGISTRY_ERROR"
    http_status = 400

    def __init__(self, message: str, manuscript_id: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.manuscript_id = manuscript_id

    def to_dict(self) -> dict:
        out = {"error": self.code, "message": self.message}
        if self.manuscript_id is not None:
            out["manuscript_id"] = self.manuscript_id
        return out


class RecordNotFound(RegistryError):
    code = "RECORD_NOT_FOUND"
    http_status = 404


class NotOwner(RegistryError):
    """Caller is not the record's custodian."""
    code = "NOT_OWNER"
    http_status = 403


class AdminPrivilegeRequired(RegistryError):
    code = "ADMIN_PRIVILEGE_REQUIRED"
    http_status = 403


class ViewingAccessDenied(RegistryError):
    code = "VIEWING_ACCESS_DENIED"
    http_status = 403


class SelfGrantRejected(RegistryError):
    code = "SELF_GRANT_REJECTED"
    http_status = 400


class GovernanceRestriction(RegistryError):
    """Revocation targeted the custodian itself or the administrator."""
    code = "GOVERNANCE_RESTRICTION"
    http_status = 403


class NoOpTransferRejected(RegistryError):
    code = "NO_OP_TRANSFER_REJECTED"
    http_status = 400


class TagCapacityExceeded(RegistryError):
    code = "TAG_CAPACITY_EXCEEDED"
    http_status = 409


class SystemIntegrityCompromised(RegistryError):
    """Raised for state that guarded paths should never produce."""
    code = "SYSTEM_INTEGRITY_COMPROMISED"
    http_status = 500


# Registration path validation

class InvalidTitle(RegistryError):
    code = "INVALID_TITLE"


class InvalidSynopsis(RegistryError):
    code = "INVALID_SYNOPSIS"


class InvalidTag(RegistryError):
    code = "INVALID_TAG"


class InvalidStorageSize(RegistryError):
    code = "INVALID_STORAGE_SIZE"
