"""Tenant context guard.

Every tenant-scoped read or write in the system takes a ``TenantContext``
as its first argument.  A context can only be obtained through
:func:`bind`, which checks the identifier against the canonical UUID
syntax before the value is allowed anywhere near a query.

The context is an immutable value passed explicitly down the call chain.
PostgreSQL row-level security is layered underneath as a second fence:
:func:`apply_tenant_setting` sets ``app.current_tenant_id`` with
``is_local = true`` so the setting is discarded when the transaction ends
and a pooled connection can never carry one tenant's id into another
tenant's request.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

# 8-4-4-4-12 hex digits, nothing else (no braces, no urn: prefix, no
# surrounding whitespace).
_CANONICAL_UUID = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)

TENANT_SETTING = "app.current_tenant_id"


class InvalidTenantIdError(ValueError):
    """The supplied tenant identifier is not a canonical UUID string."""

    code = "invalid_tenant_id"


@dataclass(frozen=True)
class TenantContext:
    """A validated tenant identifier bound to one unit of work.

    Do not construct directly; use :func:`bind`.
    """

    tenant_id: uuid.UUID

    def __str__(self) -> str:
        return str(self.tenant_id)


def bind(tenant_id: object) -> TenantContext:
    """Validate *tenant_id* and return an immutable :class:`TenantContext`.

    Accepts a canonical UUID string or a ``uuid.UUID``.  Anything else,
    including strings that ``uuid.UUID()`` would leniently accept
    (braced, urn-prefixed, unhyphenated), raises ``InvalidTenantIdError``.
    """
    if isinstance(tenant_id, uuid.UUID):
        return TenantContext(tenant_id=tenant_id)
    if not isinstance(tenant_id, str) or not _CANONICAL_UUID.fullmatch(tenant_id):
        raise InvalidTenantIdError("Tenant id must be a canonical UUID")
    return TenantContext(tenant_id=uuid.UUID(tenant_id))


def require_context(ctx: object) -> TenantContext:
    """Raise ``TypeError`` unless *ctx* is a bound :class:`TenantContext`."""
    if not isinstance(ctx, TenantContext):
        raise TypeError(
            f"Tenant-scoped operation requires a TenantContext, got {type(ctx).__name__}"
        )
    return ctx


async def apply_tenant_setting(db: AsyncSession, ctx: TenantContext) -> None:
    """Set the transaction-local RLS tenant variable for *ctx*.

    The value is bound as a parameter; it has already passed :func:`bind`.
    """
    require_context(ctx)
    await db.execute(
        text("SELECT set_config(:name, :value, true)"),
        {"name": TENANT_SETTING, "value": str(ctx.tenant_id)},
    )
