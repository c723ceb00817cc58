"""Definition publishing CLI: ``aegis-publish``.

Loads a questionnaire definition from a YAML or JSON file, validates it
and stores it as the next version of a program.  With ``--legacy`` the
file is first converted from the ordered-rule format.

Examples::

    uv run aegis-publish definitions/oncology.yaml \\
        --tenant-id 3f2c0a8e-6b1d-4f7a-9c55-0e8d2b7a41c9 \\
        --program-id 9b1e5c44-2f0d-4d8e-a1c7-5e6f7a8b9c0d

    # Convert an old screener and store it without switching programs over
    uv run aegis-publish old.json --legacy --no-activate --tenant-id ... --program-id ...
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)


async def run_publish(
    path: Path,
    *,
    tenant_id: str,
    program_id: uuid.UUID,
    legacy: bool = False,
    activate: bool = True,
    created_by: str | None = None,
):
    """Publish the definition in *path* and return its ``VersionInfo``."""
    from aegis_db.engine import dispose_engine, get_session_factory
    from aegis_db.tenancy import apply_tenant_setting, bind
    from aegis_screening.legacy import migrate_legacy_ruleset
    from aegis_screening.questionnaire import QuestionnaireService, load_definition_file

    ctx = bind(tenant_id)
    raw = load_definition_file(path)
    definition = migrate_legacy_ruleset(raw) if legacy else raw

    service = QuestionnaireService()
    factory = get_session_factory()
    try:
        async with factory() as db:
            await apply_tenant_setting(db, ctx)
            info = await service.publish(
                ctx, db, program_id, definition,
                created_by=created_by,
                activate=activate,
            )
            await db.commit()
        logger.info(
            "Published %s as version %d of program %s (active=%s)",
            path, info.version_number, program_id, info.is_active,
        )
        return info
    finally:
        await dispose_engine()


def cli() -> None:
    """Console-script entry point: ``aegis-publish``."""
    parser = argparse.ArgumentParser(
        prog="aegis-publish",
        description="Validate and publish a questionnaire definition file.",
    )
    parser.add_argument("file", type=Path, help="YAML or JSON definition file")
    parser.add_argument("--tenant-id", required=True, help="Owning tenant UUID")
    parser.add_argument("--program-id", required=True, type=uuid.UUID, help="Target program UUID")
    parser.add_argument(
        "--legacy",
        action="store_true",
        default=False,
        help="Convert from the ordered-rule format before publishing",
    )
    parser.add_argument(
        "--no-activate",
        dest="activate",
        action="store_false",
        default=True,
        help="Store the version without making it active",
    )
    parser.add_argument("--created-by", default=None, help="Recorded author of the version")
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

    from aegis_screening.errors import AegisError

    try:
        info = asyncio.run(
            run_publish(
                args.file,
                tenant_id=args.tenant_id,
                program_id=args.program_id,
                legacy=args.legacy,
                activate=args.activate,
                created_by=args.created_by,
            )
        )
    except (AegisError, ValueError, FileNotFoundError) as exc:
        print(f"Publish failed: {exc}", file=sys.stderr)
        for problem in getattr(exc, "problems", []):
            print(f"  - {problem}", file=sys.stderr)
        sys.exit(1)

    print(f"Published version {info.version_number} ({info.id})")
    sys.exit(0)
