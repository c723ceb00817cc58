"""Questionnaire store: definition parsing, publish-time checks, versioning.

A definition is validated in two passes before anything is written:

  1. Pydantic structure validation (question shapes, operator names,
     duplicate ids).
  2. Ruleset compilation checks: every condition must reference a question
     that exists, use an operator that makes sense for that question's
     type, and compare against a value of the right type.

Both passes collect every problem and raise a single
``RulesetConfigurationError`` so an editor sees the full list at once.
Broken rules are therefore caught at publish time, never during a live
evaluation.

Usage::

    service = QuestionnaireService()
    version = await service.publish(ctx, db, program_id, raw_definition)
    await db.commit()
"""

from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from aegis_db.models.program import DrugProgram, QuestionnaireVersion
from aegis_db.repository import QuestionnaireRepository
from aegis_db.tenancy import TenantContext

from aegis_screening.constants import BUCKET_ORDER, EQUALITY_OPERATORS, ORDERING_OPERATORS
from aegis_screening.errors import (
    NoActiveQuestionnaireError,
    ProgramNotFoundError,
    QuestionnaireNotFoundError,
    RulesetConfigurationError,
)
from aegis_screening.models.questionnaire import (
    Condition,
    DiagnosticTestQuestion,
    NumericQuestion,
    ProgramInfo,
    Question,
    QuestionnaireDefinition,
    SingleChoiceQuestion,
    VersionInfo,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Definition parsing
# ---------------------------------------------------------------------------

def load_definition_file(path: Path | str) -> Any:
    """Load a questionnaire definition from a YAML or JSON file.

    Returns the raw parsed data; pass it to :func:`parse_definition` (or
    to the legacy migration first if it still uses ordered rules).
    """
    if isinstance(path, str):
        path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Missing definition file: {path}")
    with path.open("r", encoding="utf-8") as f:
        if path.suffix.lower() == ".json":
            return json.load(f)
        return yaml.safe_load(f)


def parse_definition(raw: Any) -> QuestionnaireDefinition:
    """Validate *raw* into a :class:`QuestionnaireDefinition`.

    Raises ``RulesetConfigurationError`` listing every structural and
    ruleset problem found.
    """
    if isinstance(raw, QuestionnaireDefinition):
        definition = raw
    else:
        if not isinstance(raw, dict):
            raise RulesetConfigurationError("definition must be a mapping")
        ruleset = raw.get("ruleset")
        if isinstance(ruleset, dict) and "rules" in ruleset:
            raise RulesetConfigurationError(
                "ruleset uses the legacy ordered-rule form; "
                "convert it with migrate_legacy_ruleset first"
            )
        try:
            definition = QuestionnaireDefinition.model_validate(raw)
        except ValidationError as exc:
            raise RulesetConfigurationError(_format_validation_errors(exc)) from exc

    problems = ruleset_problems(definition)
    if problems:
        raise RulesetConfigurationError(problems)
    return definition


def ruleset_problems(definition: QuestionnaireDefinition) -> list[str]:
    """Return every problem with the definition's ruleset (empty if none)."""
    index = definition.question_index()
    problems: list[str] = []
    for bucket in BUCKET_ORDER:
        for i, cond in enumerate(getattr(definition.ruleset, bucket)):
            loc = f"ruleset.{bucket}[{i}]"
            question = index.get(cond.question_id)
            if question is None:
                problems.append(f"{loc}: unknown question '{cond.question_id}'")
                continue
            problem = _condition_problem(question, cond)
            if problem:
                problems.append(f"{loc}: {problem}")
    return problems


def _format_validation_errors(exc: ValidationError) -> list[str]:
    out = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        out.append(f"{loc}: {err.get('msg', 'invalid')}" if loc else err.get("msg", "invalid"))
    return out


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _condition_problem(question: Question, cond: Condition) -> str | None:
    """Check one condition against the question it references."""
    op = cond.operator
    value = cond.value

    if cond.field is not None and not isinstance(question, DiagnosticTestQuestion):
        return f"field '{cond.field}' is only valid on diagnostic_test questions"

    if isinstance(question, DiagnosticTestQuestion):
        if cond.field is None:
            return "diagnostic_test conditions must set field (has_test or result)"
        if cond.field == "has_test":
            if op not in EQUALITY_OPERATORS:
                return f"operator '{op}' is not valid for has_test"
            if not isinstance(value, bool):
                return "has_test must be compared with true or false"
            return None
        # field == "result"
        if op in ORDERING_OPERATORS:
            if not _is_number(value):
                return f"operator '{op}' on result requires a numeric value"
        elif not (isinstance(value, str) or _is_number(value)):
            return "result must be compared with a string or number"
        return None

    if isinstance(question, NumericQuestion):
        if not _is_number(value):
            return f"question '{question.id}' is numeric; value must be a number"
        return None

    if op in ORDERING_OPERATORS:
        return f"operator '{op}' requires a numeric question"

    if isinstance(question, SingleChoiceQuestion):
        if value not in question.options:
            return f"value {value!r} is not an option of '{question.id}'"
        return None

    # boolean
    if not isinstance(value, bool):
        return f"question '{question.id}' is boolean; value must be true or false"
    return None


def definition_payload(definition: QuestionnaireDefinition) -> dict[str, Any]:
    """JSON-ready columns for a version row (snake_case, nulls dropped)."""
    return {
        "questions": [
            q.model_dump(mode="json", exclude_none=True) for q in definition.questions
        ],
        "ruleset": definition.ruleset.model_dump(mode="json", exclude_none=True),
    }


def program_info(program: DrugProgram) -> ProgramInfo:
    return ProgramInfo(
        id=program.id,
        name=program.name,
        slug=program.slug,
        active_version_id=program.active_version_id,
        created_at=program.created_at,
    )


def version_info(version: QuestionnaireVersion, active_version_id: uuid.UUID | None = None) -> VersionInfo:
    return VersionInfo(
        id=version.id,
        program_id=version.program_id,
        version_number=version.version_number,
        title=version.title,
        description=version.description,
        notes=version.notes,
        created_by=version.created_by,
        created_at=version.created_at,
        is_active=active_version_id is not None and version.id == active_version_id,
    )


# ---------------------------------------------------------------------------
# QuestionnaireService
# ---------------------------------------------------------------------------

class QuestionnaireService:
    """Publishes and resolves immutable questionnaire versions.

    Versions are append-only.  Publishing inserts a new row with the next
    version number; activation only swaps the program's pointer.

    Args:
        repo: repository override (tests pass an in-memory implementation)
    """

    def __init__(self, repo: QuestionnaireRepository | None = None) -> None:
        self._repo = repo or QuestionnaireRepository()

    # ------------------------------------------------------------------
    # Programs
    # ------------------------------------------------------------------

    async def create_program(
        self,
        ctx: TenantContext,
        db: AsyncSession,
        *,
        name: str,
        slug: str | None = None,
    ) -> ProgramInfo:
        program = await self._repo.create_program(ctx, db, name=name, slug=slug)
        logger.info("Created program: tenant=%s, program=%s", ctx, program.id)
        return program_info(program)

    async def _load_program(
        self, ctx: TenantContext, db: AsyncSession, program_id: uuid.UUID
    ) -> DrugProgram:
        program = await self._repo.get_program(ctx, db, program_id)
        if program is None:
            raise ProgramNotFoundError(f"Program not found: program_id={program_id}")
        return program

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    async def publish(
        self,
        ctx: TenantContext,
        db: AsyncSession,
        program_id: uuid.UUID,
        raw: Any,
        *,
        created_by: str | None = None,
        activate: bool = True,
    ) -> VersionInfo:
        """Validate *raw* and append it as the program's next version.

        Parsing happens before any write, so a rejected definition leaves
        the store untouched.  The caller must ``await db.commit()``.
        """
        definition = parse_definition(raw)
        program = await self._load_program(ctx, db, program_id)

        number = await self._repo.next_version_number(ctx, db, program_id)
        payload = definition_payload(definition)
        version = await self._repo.create_version(
            ctx,
            db,
            program_id=program_id,
            version_number=number,
            title=definition.title,
            description=definition.description,
            questions=payload["questions"],
            ruleset=payload["ruleset"],
            disclaimers=list(definition.disclaimers) or None,
            notes=definition.notes,
            created_by=created_by,
        )
        if activate:
            await self._repo.set_active_version(ctx, db, program, version.id)

        logger.info(
            "Published questionnaire: tenant=%s, program=%s, version=%d, active=%s",
            ctx, program_id, number, activate,
        )
        return version_info(version, program.active_version_id)

    async def activate(
        self,
        ctx: TenantContext,
        db: AsyncSession,
        program_id: uuid.UUID,
        version_id: uuid.UUID,
    ) -> ProgramInfo:
        """Point the program at *version_id*, which must belong to it."""
        program = await self._load_program(ctx, db, program_id)
        version = await self._repo.get_version(ctx, db, version_id)
        if version is None or version.program_id != program.id:
            raise QuestionnaireNotFoundError(
                f"Version {version_id} not found for program {program_id}"
            )
        await self._repo.set_active_version(ctx, db, program, version.id)
        logger.info(
            "Activated questionnaire: tenant=%s, program=%s, version=%d",
            ctx, program_id, version.version_number,
        )
        return program_info(program)

    async def get_version(
        self, ctx: TenantContext, db: AsyncSession, version_id: uuid.UUID
    ) -> QuestionnaireVersion:
        version = await self._repo.get_version(ctx, db, version_id)
        if version is None:
            raise QuestionnaireNotFoundError(f"Version not found: version_id={version_id}")
        return version

    async def list_versions(
        self, ctx: TenantContext, db: AsyncSession, program_id: uuid.UUID
    ) -> list[VersionInfo]:
        """All versions of a program, newest first."""
        program = await self._load_program(ctx, db, program_id)
        rows = await self._repo.list_versions(ctx, db, program_id)
        return [version_info(v, program.active_version_id) for v in rows]

    async def get_active_version(
        self, ctx: TenantContext, db: AsyncSession, program_id: uuid.UUID
    ) -> QuestionnaireVersion:
        program = await self._load_program(ctx, db, program_id)
        if program.active_version_id is None:
            raise NoActiveQuestionnaireError(
                f"Program {program_id} has no active questionnaire"
            )
        return await self.get_version(ctx, db, program.active_version_id)
