"""Expiry sweep CLI: ``aegis-sweep``.

Marks every unused verification code whose ``expires_at`` has passed as
``expired``.  Redemption already refuses overdue codes on its own; the
sweep only keeps the stored status (and the stats endpoint) honest.
Intended for cron jobs.

Each tenant is swept in its own transaction so the RLS setting never
spans two tenants.

Examples::

    uv run aegis-sweep --tenant-id 3f2c0a8e-6b1d-4f7a-9c55-0e8d2b7a41c9

    uv run aegis-sweep --tenant-id <a> --tenant-id <b> --log-level DEBUG
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

logger = logging.getLogger(__name__)


def _default_tenants() -> list[str]:
    raw = os.getenv("AEGIS_SWEEP_TENANTS", "")
    return [t.strip() for t in raw.split(",") if t.strip()]


async def run_sweep(tenant_ids: list[str]) -> dict[str, int | None]:
    """Sweep each tenant and return ``{tenant_id: affected_rows}``.

    Tenant ids are validated up front, so a typo aborts the run before any
    tenant is touched.  A tenant whose sweep fails maps to ``None``; the
    remaining tenants are still swept.
    """
    # Lazy imports keep --help free of DB machinery
    from aegis_db.engine import dispose_engine, get_session_factory
    from aegis_db.tenancy import apply_tenant_setting, bind
    from aegis_screening.verification import VerificationCodeManager

    contexts = [bind(tid) for tid in tenant_ids]
    manager = VerificationCodeManager()
    factory = get_session_factory()
    results: dict[str, int | None] = {}

    try:
        for ctx in contexts:
            try:
                async with factory() as db:
                    await apply_tenant_setting(db, ctx)
                    affected = await manager.mark_expired(ctx, db)
                    await db.commit()
            except Exception:
                logger.exception("Sweep failed: tenant=%s", ctx)
                results[str(ctx)] = None
                continue
            results[str(ctx)] = affected
            logger.info(
                "Sweep complete: tenant=%s, affected_rows=%d", ctx, affected,
            )
        return results
    finally:
        await dispose_engine()


def cli() -> None:
    """Console-script entry point: ``aegis-sweep``."""
    parser = argparse.ArgumentParser(
        prog="aegis-sweep",
        description="Mark overdue unused verification codes as expired.",
    )
    parser.add_argument(
        "--tenant-id",
        action="append",
        default=None,
        help=(
            "Tenant to sweep (repeatable). "
            "Default: comma-separated $AEGIS_SWEEP_TENANTS"
        ),
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    tenants = args.tenant_id or _default_tenants()
    if not tenants:
        parser.error("no tenants given (use --tenant-id or $AEGIS_SWEEP_TENANTS)")

    results = asyncio.run(run_sweep(tenants))

    failed = [tenant for tenant, affected in results.items() if affected is None]
    for tenant, affected in results.items():
        if affected is None:
            print(f"{tenant}: FAILED", file=sys.stderr)
        else:
            print(f"{tenant}: {affected} expired")
    sys.exit(1 if failed else 0)
