"""
Access-control errors.

Administration errors are explicit and distinguishable for the acting admin.
PermissionDeniedError keeps its reason for logging only; handlers must render
every denial the same way.
"""
from typing import Optional


class AccessControlError(Exception):
    """Base class for access-control errors; `code` is stable across releases."""
    code = "ACCESS_CONTROL_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class DuplicateRoleError(AccessControlError):
    code = "DUPLICATE_ROLE"

    def __init__(self, organization_id: str, key: str):
        super().__init__(f"Role '{key}' already exists in organization {organization_id}")
        self.organization_id = organization_id
        self.key = key


class CrossTenantViolationError(AccessControlError):
    code = "CROSS_TENANT_VIOLATION"

    def __init__(self, message: str, expected_organization_id: str, actual_organization_id: str):
        super().__init__(message)
        self.expected_organization_id = expected_organization_id
        self.actual_organization_id = actual_organization_id


class EntityNotFoundError(AccessControlError):
    code = "NOT_FOUND"

    def __init__(self, entity: str, identifier: str):
        super().__init__(f"{entity} not found: {identifier}")
        self.entity = entity
        self.identifier = identifier


class PermissionDeniedError(AccessControlError):
    code = "FORBIDDEN"

    def __init__(self, reason, permission_keys: Optional[tuple[str, ...]] = None):
        super().__init__("Forbidden")
        self.reason = reason
        self.permission_keys = permission_keys or ()
