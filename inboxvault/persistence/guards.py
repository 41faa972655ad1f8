from __future__ import annotations

from typing import Any

from inboxvault.core.errors import IsolationViolation, TenantPredicateError
from inboxvault.persistence.tenancy import TenantScope


def require_scope(scope: TenantScope | None) -> TenantScope:
    # Refuse to build tenant queries without an explicit scope; there is no ambient fallback.
    if not isinstance(scope, TenantScope):
        raise TenantPredicateError("Tenant scope required but missing")
    return scope


def tenant_predicate(model: Any, scope: TenantScope | None) -> Any:
    # Build tenant predicates through a single helper to guarantee guard coverage.
    resolved = require_scope(scope)
    return model.tenant_id == resolved.tenant_id


def ensure_in_scope(row: Any, scope: TenantScope | None) -> None:
    # Reject writes tagged with another tenant; reported as not-found so nothing leaks.
    resolved = require_scope(scope)
    if row.tenant_id is None:
        row.tenant_id = resolved.tenant_id
        return
    if row.tenant_id != resolved.tenant_id:
        raise IsolationViolation("Resource not found")
