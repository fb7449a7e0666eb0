"""Tests for saved and manual mapping resolutions."""

import pytest

from analysis_app.utils.errors import ErrorKind, SpecValidationError
from analysis_app.utils.mapping_overrides import apply_saved_mappings, resolve_mappings
from analysis_app.utils.prereg_extractor import AnalysisModel, PreregistrationSpec
from analysis_app.utils.qsf_parser import SurveyCatalogue, SurveyColumn
from analysis_app.utils.spec_builder import build_analysis_spec
from analysis_app.utils.variable_mapper import WARN_UNRESOLVED


@pytest.fixture
def unresolved_spec():
    catalogue = SurveyCatalogue(
        survey_name="Survey",
        questions=[
            SurveyColumn(qualtrics_qid="QID1", export_tag="known_x", question_text="Known"),
            SurveyColumn(qualtrics_qid="QID2", export_tag="outcome_score", question_text="Outcome"),
        ],
        expected_columns=["known_x", "outcome_score"],
    )
    prereg = PreregistrationSpec()
    prereg.variables.dv = ["missing_y"]
    prereg.variables.iv = ["known_x"]
    prereg.main_analyses.append(AnalysisModel(id="m1", dv="missing_y", iv=["known_x"]))
    return build_analysis_spec(catalogue, prereg, project_id="p", study_id="s", analysis_id="a")


def test_manual_resolution_updates_models_and_warnings(unresolved_spec):
    assert any(w.code == WARN_UNRESOLVED for w in unresolved_spec.warnings)

    resolved = resolve_mappings(unresolved_spec, [{"preregVar": "missing_y", "resolvedTo": "outcome_score"}])

    mapping = next(m for m in resolved.variable_mappings if m.prereg_var == "missing_y")
    assert mapping.resolved_to == "outcome_score"
    assert not any(w.code == WARN_UNRESOLVED for w in resolved.warnings)
    model = resolved.models.main[0]
    assert model.dv == "outcome_score"
    assert model.formula == "outcome_score ~ known_x"
    assert model.unresolved_variables == []


def test_resolution_does_not_mutate_input(unresolved_spec):
    resolve_mappings(unresolved_spec, [{"preregVar": "missing_y", "resolvedTo": "outcome_score"}])
    assert unresolved_spec.models.main[0].dv == "TODO_missing_y"


def test_unknown_variable_is_appended(unresolved_spec):
    resolved = resolve_mappings(unresolved_spec, [{"preregVar": "extra_var", "resolvedTo": "known_x"}])
    added = resolved.variable_mappings[-1]
    assert added.prereg_var == "extra_var"
    assert added.resolved_to == "known_x"
    assert added.candidates == []


def test_saved_resolutions_survive_regeneration(unresolved_spec):
    saved = resolve_mappings(unresolved_spec, [{"preregVar": "MISSING_Y", "resolvedTo": "outcome_score"}])

    regenerated = apply_saved_mappings(unresolved_spec, saved)

    mapping = next(m for m in regenerated.variable_mappings if m.prereg_var == "missing_y")
    assert mapping.resolved_to == "outcome_score"
    assert regenerated.models.main[0].dv == "outcome_score"
    assert not any(w.code == WARN_UNRESOLVED for w in regenerated.warnings)


def test_saved_spec_without_resolution_changes_nothing(unresolved_spec):
    regenerated = apply_saved_mappings(unresolved_spec, unresolved_spec)
    assert regenerated.to_dict() == unresolved_spec.to_dict()


def test_saved_override_of_automatic_resolution_rewrites_models():
    catalogue = SurveyCatalogue(
        survey_name="Survey",
        questions=[
            SurveyColumn(qualtrics_qid="QID1", export_tag="advice_choice", question_text="Advice"),
            SurveyColumn(qualtrics_qid="QID2", export_tag="treat_x", question_text="Treatment"),
            SurveyColumn(qualtrics_qid="QID3", export_tag="treat_x_alt", question_text="Treatment (alt)"),
        ],
        expected_columns=["advice_choice", "treat_x", "treat_x_alt"],
    )
    prereg = PreregistrationSpec()
    prereg.variables.dv = ["advice_choice"]
    prereg.variables.iv = ["treat_x"]
    prereg.main_analyses.append(AnalysisModel(id="m1", dv="advice_choice", iv=["treat_x"]))
    prereg.robustness_checks.append("with_without_controls")
    spec = build_analysis_spec(catalogue, prereg, project_id="p", study_id="s", analysis_id="a")
    assert spec.models.main[0].iv == ["treat_x"]

    saved = resolve_mappings(spec, [{"preregVar": "treat_x", "resolvedTo": "treat_x_alt"}])
    regenerated = apply_saved_mappings(spec, saved)

    mapping = next(m for m in regenerated.variable_mappings if m.prereg_var == "treat_x")
    assert mapping.resolved_to == "treat_x_alt"
    for model in regenerated.models.main + regenerated.models.robustness:
        assert model.iv == ["treat_x_alt"]
        assert "treat_x_alt" in model.formula
    assert regenerated.models.main[0].formula == "advice_choice ~ treat_x_alt"


@pytest.mark.parametrize("update", [{"resolvedTo": "known_x"}, {"preregVar": "missing_y", "resolvedTo": ""}])
def test_incomplete_update_is_rejected(unresolved_spec, update):
    with pytest.raises(SpecValidationError) as exc_info:
        resolve_mappings(unresolved_spec, [update])
    assert exc_info.value.kind == ErrorKind.SCHEMA_VIOLATION
