"""Questionnaire definition models: questions, conditions, ruleset.

Each question type maps to a specific consumer UI component and answer
shape:

    - boolean:         yes/no toggle; answer is ``true`` / ``false``
    - single_choice:   pick one of ``options`` (case-sensitive)
    - numeric:         number input with optional ``min_value`` / ``max_value``
    - diagnostic_test: structured lab-test report; answer is an object with
                       ``has_test`` plus optional ``test_name``, ``test_date``,
                       ``result`` and ``upload_url``

The discriminated ``Question`` union uses ``type`` as its discriminator.

Definition files are written in snake_case; API responses use camelCase
aliases.  Both spellings are accepted on input.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

OUTCOME_KEYS = ("eligible", "consult_professional", "ineligible")


class _DefinitionModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Question types ---

class ExternalMapping(_DefinitionModel):
    """EHR fast-path hint: where the answer can be found in a FHIR record.

    Carried with the question so clients can pre-fill; the pipeline itself
    never acts on it.
    """

    rule: Literal["optional", "mandatory"] = "optional"
    fhir_path: Optional[str] = None
    display_name: Optional[str] = None


class BaseQuestion(_DefinitionModel):
    """Fields shared by all question types."""

    id: str = Field(pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    text: str
    help_text: Optional[str] = None
    required: bool = True
    external_mapping: Optional[ExternalMapping] = None


class BooleanQuestion(BaseQuestion):
    type: Literal["boolean"] = "boolean"


class SingleChoiceQuestion(BaseQuestion):
    type: Literal["single_choice"] = "single_choice"
    options: List[str]

    @field_validator("options")
    @classmethod
    def _chk_options(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("options must not be empty")
        if len(set(v)) != len(v):
            raise ValueError("options must be unique")
        return v


class NumericQuestion(BaseQuestion):
    type: Literal["numeric"] = "numeric"
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    unit: Optional[str] = None

    @model_validator(mode="after")
    def _chk(self):
        if (
            self.min_value is not None
            and self.max_value is not None
            and self.min_value > self.max_value
        ):
            raise ValueError("min_value must be <= max_value")
        return self


class DiagnosticTestQuestion(BaseQuestion):
    """Asks whether the patient has a recent test of ``test_type``."""

    type: Literal["diagnostic_test"] = "diagnostic_test"
    test_type: Optional[str] = None


Question = Annotated[
    Union[
        BooleanQuestion,
        SingleChoiceQuestion,
        NumericQuestion,
        DiagnosticTestQuestion,
    ],
    Field(discriminator="type"),
]

# Maps type string -> Pydantic class.
question_mapper = {
    "boolean": BooleanQuestion,
    "single_choice": SingleChoiceQuestion,
    "numeric": NumericQuestion,
    "diagnostic_test": DiagnosticTestQuestion,
}


# --- Ruleset ---

class Condition(_DefinitionModel):
    """One comparison against a prior answer.

    ``field`` selects a sub-value of a diagnostic_test answer.
    """

    question_id: str
    operator: Literal[
        "equals", "not_equals",
        "greater_than", "less_than",
        "greater_than_or_equal", "less_than_or_equal",
    ]
    value: Any
    field: Optional[Literal["has_test", "result"]] = None


class Ruleset(_DefinitionModel):
    """Canonical condition-bucket ruleset.

    Each bucket is a conjunction.  An empty bucket never matches.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    ineligible: List[Condition] = Field(default_factory=list)
    eligible: List[Condition] = Field(default_factory=list)
    # Optional patient-facing message per outcome
    messages: dict[str, str] = Field(default_factory=dict)

    @field_validator("messages")
    @classmethod
    def _chk_messages(cls, v: dict[str, str]) -> dict[str, str]:
        unknown = sorted(set(v) - set(OUTCOME_KEYS))
        if unknown:
            raise ValueError(f"messages has unknown outcome keys: {unknown}")
        return v


class QuestionnaireDefinition(_DefinitionModel):
    """Everything an editor publishes as one questionnaire version."""

    title: str = Field(min_length=1)
    description: Optional[str] = None
    questions: List[Question] = Field(min_length=1)
    ruleset: Ruleset
    disclaimers: List[str] = Field(default_factory=list)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _chk_unique_ids(self):
        seen: set[str] = set()
        dupes: list[str] = []
        for q in self.questions:
            if q.id in seen:
                dupes.append(q.id)
            seen.add(q.id)
        if dupes:
            raise ValueError(f"duplicate question ids: {sorted(set(dupes))}")
        return self

    def question_index(self) -> dict[str, Question]:
        """Questions keyed by id."""
        return {q.id: q for q in self.questions}


# --- Stored views ---

class ProgramInfo(_DefinitionModel):
    """Public view of a drug program row."""

    id: uuid.UUID
    name: str
    slug: Optional[str] = None
    active_version_id: Optional[uuid.UUID] = None
    created_at: datetime


class VersionInfo(_DefinitionModel):
    """Summary of one published questionnaire version."""

    id: uuid.UUID
    program_id: uuid.UUID
    version_number: int
    title: str
    description: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    is_active: bool = False
