"""End-to-end tests for generate_analysis_spec."""

import json

import pytest

from conftest import make_qsf, make_question

from analysis_app.utils.errors import ErrorKind, PreregParseError, QSFParseError
from analysis_app.utils.mapping_overrides import resolve_mappings
from analysis_app.utils.pipeline import generate_analysis_spec
from analysis_app.utils.spec_schema import validate_analysis_spec
from analysis_app.utils.variable_mapper import WARN_UNRESOLVED

IDS = {"project_id": "proj", "study_id": "study", "analysis_id": "main"}


def test_advice_study_end_to_end(advice_qsf, advice_prereg_text):
    spec = generate_analysis_spec(advice_qsf, advice_prereg_text.encode("utf-8"), **IDS)

    validate_analysis_spec(spec.to_dict())
    resolved = {m.prereg_var: m.resolved_to for m in spec.variable_mappings}
    assert resolved == {
        "advice_choice": "advice_choice",
        "income_condition": "income_condition",
        "information_condition": "information_condition",
    }
    assert spec.warnings == []
    # targeted parse drops the unrelated age question
    assert "age" not in spec.data_contract.expected_columns
    assert "participant_id" in spec.data_contract.expected_columns


def test_parallel_matches_sequential(advice_qsf, advice_prereg_text):
    tokens = ["advice_choice", "income_condition", "information_condition"]
    prereg_bytes = advice_prereg_text.encode("utf-8")
    sequential = generate_analysis_spec(advice_qsf, prereg_bytes, candidate_tokens=tokens, **IDS)
    parallel = generate_analysis_spec(advice_qsf, prereg_bytes, candidate_tokens=tokens, parallel=True, **IDS)
    assert parallel.to_dict() == sequential.to_dict()


def test_enrichment_is_applied(advice_qsf, advice_prereg_text):
    enrichment = {"parsed": {"ambiguities": ["Is age a control?"]}}
    spec = generate_analysis_spec(
        advice_qsf, advice_prereg_text.encode("utf-8"), enrichment=enrichment, **IDS
    )
    assert any(w.code == "LLM_AMBIGUITY: Is age a control?" for w in spec.warnings)


def test_previous_spec_resolutions_are_kept(advice_prereg_text):
    qsf = make_qsf(
        make_question("QID1", "choice_advice_final", "Final choice"),
        make_question("QID2", "income_condition", "Income"),
        make_question("QID3", "information_condition", "Information"),
    )
    prereg = advice_prereg_text.encode("utf-8")
    first = generate_analysis_spec(qsf, prereg, **IDS)
    assert any(w.code == WARN_UNRESOLVED for w in first.warnings)

    saved = resolve_mappings(first, [{"preregVar": "advice_choice", "resolvedTo": "choice_advice_final"}])
    second = generate_analysis_spec(qsf, prereg, previous_spec=saved, **IDS)

    assert second.models.main[0].dv == "choice_advice_final"
    assert not any(w.code == WARN_UNRESOLVED for w in second.warnings)


def test_structured_json_prereg(advice_qsf):
    prereg = {
        "metadata": {"title": "Structured", "date": None},
        "variables": {
            "dv": ["advice_choice"], "iv": ["information_condition"],
            "controls": [], "moderators": [], "mediators": [],
        },
        "mainAnalyses": [{
            "id": "m1", "dv": "advice_choice", "iv": ["information_condition"],
            "controls": [], "interactionTerms": [], "formula": None,
        }],
        "exploratoryAnalyses": [],
        "robustnessChecks": [],
        "exclusionRules": [],
        "derivedScales": [],
        "missingDataPlan": None,
        "sections": {},
        "warnings": [],
    }
    spec = generate_analysis_spec(
        advice_qsf, json.dumps(prereg).encode("utf-8"), prereg_format="json", **IDS
    )
    assert spec.models.main[0].formula == "advice_choice ~ information_condition"


def test_bad_inputs_raise_typed_errors(advice_qsf, advice_prereg_text):
    with pytest.raises(QSFParseError) as exc_info:
        generate_analysis_spec(b"{", advice_prereg_text.encode("utf-8"), **IDS)
    assert exc_info.value.kind == ErrorKind.MALFORMED_INPUT

    with pytest.raises(PreregParseError) as exc_info:
        generate_analysis_spec(advice_qsf, b"x", prereg_format="rtf", **IDS)
    assert exc_info.value.kind == ErrorKind.UNSUPPORTED_FORMAT
