import copy

import pytest

from analysis_app.utils.errors import ErrorKind, SpecValidationError
from analysis_app.utils.prereg_extractor import PreregistrationSpec, extract_prereg
from analysis_app.utils.qsf_parser import parse_qsf
from analysis_app.utils.spec_builder import build_analysis_spec
from analysis_app.utils.spec_schema import is_structured_prereg, validate_analysis_spec


@pytest.fixture
def spec_dict(advice_qsf, advice_prereg_text):
    spec = build_analysis_spec(
        parse_qsf(advice_qsf),
        extract_prereg(advice_prereg_text),
        project_id="p",
        study_id="s",
        analysis_id="a",
        qsf_bytes=advice_qsf,
        prereg_bytes=advice_prereg_text.encode("utf-8"),
    )
    return spec.to_dict()


def test_built_spec_is_valid(spec_dict):
    validate_analysis_spec(spec_dict)


def test_missing_top_level_key_is_rejected(spec_dict):
    broken = copy.deepcopy(spec_dict)
    del broken["dataContract"]
    with pytest.raises(SpecValidationError) as exc_info:
        validate_analysis_spec(broken)
    assert exc_info.value.kind == ErrorKind.SCHEMA_VIOLATION
    assert "AnalysisSpec schema violation" in exc_info.value.message


def test_bad_hash_is_rejected(spec_dict):
    broken = copy.deepcopy(spec_dict)
    broken["inputs"]["qsf"]["sha256"] = "not-a-hash"
    with pytest.raises(SpecValidationError) as exc_info:
        validate_analysis_spec(broken)
    assert exc_info.value.context["path"] == "inputs/qsf/sha256"


def test_duplicate_expected_columns_are_rejected(spec_dict):
    broken = copy.deepcopy(spec_dict)
    broken["dataContract"]["expectedColumns"].append("advice_choice")
    with pytest.raises(SpecValidationError):
        validate_analysis_spec(broken)


def test_candidate_score_out_of_range_is_rejected(spec_dict):
    broken = copy.deepcopy(spec_dict)
    broken["variableMappings"][0]["candidates"][0]["score"] = 1.5
    with pytest.raises(SpecValidationError):
        validate_analysis_spec(broken)


def test_is_structured_prereg():
    assert is_structured_prereg(PreregistrationSpec().to_dict())
    assert not is_structured_prereg({"summary": "DV: y"})
    assert not is_structured_prereg(["not", "an", "object"])
