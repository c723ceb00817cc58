"""Questionnaire store tests: definition checks, publishing, activation."""

import copy
import json
import uuid

import pytest

from aegis_screening.errors import (
    NoActiveQuestionnaireError,
    ProgramNotFoundError,
    QuestionnaireNotFoundError,
    RulesetConfigurationError,
)
from aegis_screening.models.questionnaire import (
    DiagnosticTestQuestion,
    NumericQuestion,
    SingleChoiceQuestion,
)
from aegis_screening.questionnaire import load_definition_file, parse_definition

from helpers.factories import FIXTURES_DIR


def _problems(raw) -> list[str]:
    with pytest.raises(RulesetConfigurationError) as exc_info:
        parse_definition(raw)
    return exc_info.value.problems


# =====================================================================
# parse_definition
# =====================================================================

class TestParseDefinition:

    def test_fixture_parses(self, lipid_program):
        definition = parse_definition(lipid_program)
        index = definition.question_index()
        assert isinstance(index["age"], NumericQuestion)
        assert index["age"].max_value == 120
        assert isinstance(index["smoker"], SingleChoiceQuestion)
        assert isinstance(index["ldl_test"], DiagnosticTestQuestion)
        assert index["ldl_test"].external_mapping.display_name == "LDL cholesterol"
        assert index["referral_source"].required is False

    def test_camel_case_keys_accepted(self):
        definition = parse_definition({
            "title": "Camel",
            "questions": [
                {"id": "age", "type": "numeric", "text": "Age", "minValue": 18, "helpText": "Years"},
            ],
            "ruleset": {
                "eligible": [{"questionId": "age", "operator": "greater_than", "value": 20}],
            },
        })
        assert definition.questions[0].min_value == 18
        assert definition.ruleset.eligible[0].question_id == "age"

    def test_every_problem_is_reported(self, age_pregnancy):
        raw = copy.deepcopy(age_pregnancy)
        raw["ruleset"]["eligible"] = [
            {"question_id": "weight", "operator": "equals", "value": 1},
            {"question_id": "age_check", "operator": "greater_than", "value": 1},
            {"question_id": "pregnancy_check", "operator": "equals", "value": "No"},
        ]
        problems = _problems(raw)
        assert len(problems) == 3, f"Expected three problems, got {problems}"
        assert "unknown question 'weight'" in problems[0]
        assert "requires a numeric question" in problems[1]
        assert "boolean" in problems[2]

    def test_unknown_operator_rejected(self, age_pregnancy):
        raw = copy.deepcopy(age_pregnancy)
        raw["ruleset"]["ineligible"][0]["operator"] = "contains"
        problems = _problems(raw)
        assert any("operator" in p for p in problems)

    def test_duplicate_question_ids_rejected(self, age_pregnancy):
        raw = copy.deepcopy(age_pregnancy)
        raw["questions"].append(dict(raw["questions"][0]))
        problems = _problems(raw)
        assert any("duplicate question ids" in p for p in problems)

    def test_choice_value_must_be_an_option(self, lipid_program):
        raw = copy.deepcopy(lipid_program)
        raw["ruleset"]["eligible"][1]["value"] = "current"
        problems = _problems(raw)
        assert problems == ["ruleset.eligible[1]: value 'current' is not an option of 'smoker'"]

    def test_numeric_value_must_be_a_number(self, lipid_program):
        raw = copy.deepcopy(lipid_program)
        raw["ruleset"]["eligible"][0]["value"] = "40"
        problems = _problems(raw)
        assert "numeric" in problems[0]

    def test_diagnostic_conditions_need_field(self, lipid_program):
        raw = copy.deepcopy(lipid_program)
        del raw["ruleset"]["eligible"][2]["field"]
        problems = _problems(raw)
        assert "must set field" in problems[0]

    def test_field_only_on_diagnostic_questions(self, age_pregnancy):
        raw = copy.deepcopy(age_pregnancy)
        raw["ruleset"]["ineligible"][0]["field"] = "result"
        problems = _problems(raw)
        assert "only valid on diagnostic_test" in problems[0]

    def test_has_test_rules(self, lipid_program):
        raw = copy.deepcopy(lipid_program)
        raw["ruleset"]["eligible"][2]["operator"] = "greater_than"
        assert "not valid for has_test" in _problems(raw)[0]

        raw = copy.deepcopy(lipid_program)
        raw["ruleset"]["eligible"][2]["value"] = "yes"
        assert "true or false" in _problems(raw)[0]

    def test_result_ordering_needs_number(self, lipid_program):
        raw = copy.deepcopy(lipid_program)
        raw["ruleset"]["eligible"][3]["value"] = "high"
        assert "requires a numeric value" in _problems(raw)[0]

    def test_unknown_message_outcome_rejected(self, age_pregnancy):
        raw = copy.deepcopy(age_pregnancy)
        raw["ruleset"]["messages"] = {"maybe": "?"}
        assert any("unknown outcome keys" in p for p in _problems(raw))

    def test_unknown_ruleset_key_rejected(self, age_pregnancy):
        raw = copy.deepcopy(age_pregnancy)
        raw["ruleset"]["default_outcome"] = "eligible"
        assert _problems(raw)

    def test_legacy_form_points_to_migration(self, legacy_screener):
        raw = {**legacy_screener, "ruleset": legacy_screener["logic"]}
        problems = _problems(raw)
        assert "migrate_legacy_ruleset" in problems[0]

    @pytest.mark.parametrize("raw", [None, [], "title: x"])
    def test_non_mapping_rejected(self, raw):
        assert _problems(raw) == ["definition must be a mapping"]

    def test_invalid_numeric_bounds_rejected(self):
        raw = {
            "title": "Bounds",
            "questions": [{"id": "n", "type": "numeric", "text": "n", "min_value": 5, "max_value": 1}],
            "ruleset": {},
        }
        assert any("min_value" in p for p in _problems(raw))


class TestLoadDefinitionFile:

    def test_yaml(self):
        raw = load_definition_file(FIXTURES_DIR / "age_pregnancy.yaml")
        assert raw["title"] == "Adult OTC screener"

    def test_json(self, tmp_path, age_pregnancy):
        path = tmp_path / "def.json"
        path.write_text(json.dumps(age_pregnancy), encoding="utf-8")
        assert load_definition_file(str(path)) == age_pregnancy

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_definition_file(tmp_path / "nope.yaml")


# =====================================================================
# QuestionnaireService
# =====================================================================

class TestPublishing:

    @pytest.mark.asyncio
    async def test_first_publish_is_version_one_and_active(self, stack, ctx, mock_db, age_pregnancy):
        program = await stack.questionnaires.create_program(ctx, mock_db, name="OTC switch", slug="otc")
        assert program.active_version_id is None

        version = await stack.questionnaires.publish(
            ctx, mock_db, program.id, age_pregnancy, created_by="editor@example.com",
        )
        assert version.version_number == 1
        assert version.is_active is True
        assert version.created_by == "editor@example.com"

        active = await stack.questionnaires.get_active_version(ctx, mock_db, program.id)
        assert active.id == version.id

    @pytest.mark.asyncio
    async def test_stored_payload_is_snake_case(self, stack, ctx, mock_db, age_pregnancy):
        program = await stack.questionnaires.create_program(ctx, mock_db, name="OTC")
        version = await stack.questionnaires.publish(ctx, mock_db, program.id, age_pregnancy)
        row = await stack.questionnaires.get_version(ctx, mock_db, version.id)
        assert row.questions[1]["help_text"] == "Answer yes if you are unsure."
        assert row.ruleset["ineligible"][0]["question_id"] == "pregnancy_check"
        assert "field" not in row.ruleset["ineligible"][0]
        assert row.disclaimers == [
            "This screener does not replace advice from a healthcare provider."
        ]

    @pytest.mark.asyncio
    async def test_versions_are_appended(self, stack, ctx, mock_db, age_pregnancy):
        program = await stack.questionnaires.create_program(ctx, mock_db, name="OTC")
        v1 = await stack.questionnaires.publish(ctx, mock_db, program.id, age_pregnancy)
        v2 = await stack.questionnaires.publish(ctx, mock_db, program.id, age_pregnancy)

        versions = await stack.questionnaires.list_versions(ctx, mock_db, program.id)
        assert [v.version_number for v in versions] == [2, 1]
        assert [v.is_active for v in versions] == [True, False]
        assert {v.id for v in versions} == {v1.id, v2.id}

    @pytest.mark.asyncio
    async def test_publish_without_activation(self, stack, ctx, mock_db, age_pregnancy):
        program = await stack.questionnaires.create_program(ctx, mock_db, name="OTC")
        v1 = await stack.questionnaires.publish(ctx, mock_db, program.id, age_pregnancy)
        v2 = await stack.questionnaires.publish(
            ctx, mock_db, program.id, age_pregnancy, activate=False,
        )
        assert v2.is_active is False
        active = await stack.questionnaires.get_active_version(ctx, mock_db, program.id)
        assert active.id == v1.id

    @pytest.mark.asyncio
    async def test_activate_swaps_pointer_only(self, stack, ctx, mock_db, age_pregnancy):
        program = await stack.questionnaires.create_program(ctx, mock_db, name="OTC")
        v1 = await stack.questionnaires.publish(ctx, mock_db, program.id, age_pregnancy)
        await stack.questionnaires.publish(ctx, mock_db, program.id, age_pregnancy)

        info = await stack.questionnaires.activate(ctx, mock_db, program.id, v1.id)
        assert info.active_version_id == v1.id
        versions = await stack.questionnaires.list_versions(ctx, mock_db, program.id)
        assert len(versions) == 2, "Activation must not create or remove versions"

    @pytest.mark.asyncio
    async def test_activate_rejects_other_programs_version(self, stack, ctx, mock_db, age_pregnancy):
        first = await stack.questionnaires.create_program(ctx, mock_db, name="A")
        second = await stack.questionnaires.create_program(ctx, mock_db, name="B")
        foreign = await stack.questionnaires.publish(ctx, mock_db, second.id, age_pregnancy)

        with pytest.raises(QuestionnaireNotFoundError):
            await stack.questionnaires.activate(ctx, mock_db, first.id, foreign.id)

    @pytest.mark.asyncio
    async def test_rejected_definition_writes_nothing(self, stack, ctx, mock_db, age_pregnancy):
        program = await stack.questionnaires.create_program(ctx, mock_db, name="OTC")
        raw = copy.deepcopy(age_pregnancy)
        raw["ruleset"]["eligible"][0]["question_id"] = "missing"

        with pytest.raises(RulesetConfigurationError):
            await stack.questionnaires.publish(ctx, mock_db, program.id, raw)
        assert stack.questionnaire_repo._versions == {}

    @pytest.mark.asyncio
    async def test_unknown_program(self, stack, ctx, mock_db, age_pregnancy):
        with pytest.raises(ProgramNotFoundError):
            await stack.questionnaires.publish(ctx, mock_db, uuid.uuid4(), age_pregnancy)

    @pytest.mark.asyncio
    async def test_no_active_version(self, stack, ctx, mock_db):
        program = await stack.questionnaires.create_program(ctx, mock_db, name="Empty")
        with pytest.raises(NoActiveQuestionnaireError):
            await stack.questionnaires.get_active_version(ctx, mock_db, program.id)

    @pytest.mark.asyncio
    async def test_programs_are_tenant_scoped(self, stack, ctx, other_ctx, mock_db, age_pregnancy):
        program = await stack.questionnaires.create_program(ctx, mock_db, name="OTC")
        version = await stack.questionnaires.publish(ctx, mock_db, program.id, age_pregnancy)

        with pytest.raises(ProgramNotFoundError):
            await stack.questionnaires.list_versions(other_ctx, mock_db, program.id)
        with pytest.raises(QuestionnaireNotFoundError):
            await stack.questionnaires.get_version(other_ctx, mock_db, version.id)
