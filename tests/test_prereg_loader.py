"""Tests for preregistration loading across formats and enrichment merging."""

import io
import json
import zipfile

import pytest

from analysis_app.utils.errors import ErrorKind, PreregParseError
from analysis_app.utils.prereg_extractor import AnalysisModel, PreregistrationSpec, extract_prereg
from analysis_app.utils.prereg_loader import (
    LLM_AMBIGUITY_PREFIX,
    LLM_MECHANISM_ID,
    WARN_DOCX_SECTIONS,
    apply_llm_enrichment,
    build_structured_spec,
    collect_candidate_tokens,
    detect_format,
    extract_docx_text,
    load_prereg_file,
    parse_prereg,
)

TEMPLATE_TEXT = (
    "1) Variables\nDV: outcome_y\nIV: treat_x\n"
    "2) Analysis\noutcome_y ~ treat_x + age\n"
    "3) Exclusions\nexclude duration < 60"
)


def _docx_bytes(paragraphs, include_document=True):
    body = "".join(
        f"<w:p><w:r><w:t>{p}</w:t></w:r></w:p>" for p in paragraphs
    )
    xml = (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<w:document xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main">'
        f"<w:body>{body}</w:body></w:document>"
    )
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("[Content_Types].xml", "<Types/>")
        if include_document:
            archive.writestr("word/document.xml", xml)
    return buffer.getvalue()


def test_detect_format():
    assert detect_format("plan.md") == "markdown"
    assert detect_format("plan.JSON") == "json"
    assert detect_format("plan.docx") == "docx"
    assert detect_format("plan.txt") == "text"


def test_markdown_bytes_are_extracted(advice_prereg_text):
    spec = parse_prereg(advice_prereg_text.encode("utf-8"), "markdown")
    assert spec.variables.dv == ["advice_choice"]


def test_unsupported_format():
    with pytest.raises(PreregParseError) as exc_info:
        parse_prereg("DV: y", "pdf")
    assert exc_info.value.kind == ErrorKind.UNSUPPORTED_FORMAT


def test_structured_json_loads_directly():
    original = PreregistrationSpec()
    original.variables.dv = ["y_score"]
    original.variables.iv = ["x_arm"]
    original.main_analyses.append(AnalysisModel(id="m1", dv="y_score", iv=["x_arm"]))
    spec = parse_prereg(json.dumps(original.to_dict()), "json")

    assert spec.variables.dv == ["y_score"]
    assert spec.main_analyses[0].id == "m1"
    assert spec.warnings == []


def test_unstructured_json_goes_through_extractor():
    raw = json.dumps({"summary": "DV: outcome_y. IV: treat_x"})
    spec = parse_prereg(raw, "json")
    assert spec.variables.dv == ["outcome_y"]
    assert spec.variables.iv == ["treat_x"]


def test_invalid_json():
    with pytest.raises(PreregParseError) as exc_info:
        parse_prereg("{broken", "json")
    assert exc_info.value.kind == ErrorKind.MALFORMED_INPUT
    assert exc_info.value.message.startswith("Invalid prereg JSON")


def test_structured_text_splits_sections():
    spec = build_structured_spec(TEMPLATE_TEXT)
    assert list(spec.sections) == ["1) Variables", "2) Analysis", "3) Exclusions"]
    assert spec.main_analyses[0].iv == ["treat_x", "age"]
    assert spec.exclusion_rules[0].criterion == "duration < 60"
    assert WARN_DOCX_SECTIONS not in spec.warnings


def test_structured_text_without_sections_warns():
    spec = build_structured_spec("DV: outcome_y\nIV: treat_x")
    assert spec.sections == {}
    assert WARN_DOCX_SECTIONS in spec.warnings
    assert spec.variables.dv == ["outcome_y"]


def test_docx_round_trip():
    data = _docx_bytes(TEMPLATE_TEXT.replace("<", "&lt;").split("\n"))
    assert "duration < 60" in extract_docx_text(data)

    spec = parse_prereg(data, "docx")
    assert len(spec.sections) == 3
    assert spec.variables.dv == ["outcome_y"]
    assert spec.exclusion_rules[0].criterion == "duration < 60"


def test_docx_without_document_part():
    with pytest.raises(PreregParseError) as exc_info:
        parse_prereg(_docx_bytes([], include_document=False), "docx")
    assert exc_info.value.kind == ErrorKind.MISSING_SECTION


def test_docx_not_a_zip():
    with pytest.raises(PreregParseError) as exc_info:
        parse_prereg(b"plain bytes", "docx")
    assert exc_info.value.kind == ErrorKind.MALFORMED_INPUT


def test_docx_requires_bytes():
    with pytest.raises(PreregParseError):
        parse_prereg("text", "docx")


def test_load_prereg_file(tmp_path, advice_prereg_text):
    path = tmp_path / "prereg.md"
    path.write_text(advice_prereg_text, encoding="utf-8")
    spec = load_prereg_file(path)
    assert spec.metadata.title == "Advice sharing study"


def test_enrichment_merges_models_and_ambiguities(advice_prereg_text):
    prereg = extract_prereg(advice_prereg_text)
    payload = json.dumps({
        "parsed": {
            "mainModels": [{"id": "llm_main", "dv": "advice_choice", "iv": ["income_condition"]}],
            "mechanismModels": [{"id": "", "dv": "trust_score", "iv": ["income_condition"]}],
            "variables": {"mediators": ["trust_score"]},
            "ambiguities": ["Unclear whether age is a control"],
        }
    })
    enriched = apply_llm_enrichment(prereg, payload)

    assert [m.id for m in enriched.main_analyses] == ["llm_main"]
    assert enriched.exploratory_analyses[-1].id == LLM_MECHANISM_ID
    assert enriched.variables.mediators == ["trust_score"]
    assert f"{LLM_AMBIGUITY_PREFIX}Unclear whether age is a control" in enriched.warnings
    # input untouched
    assert prereg.main_analyses[0].id == "main_1"
    assert prereg.warnings == []


def test_enrichment_ignores_unreadable_payload(advice_prereg_text):
    prereg = extract_prereg(advice_prereg_text)
    assert apply_llm_enrichment(prereg, "not json").to_dict() == prereg.to_dict()
    assert apply_llm_enrichment(prereg, {"other": 1}).to_dict() == prereg.to_dict()


def test_collect_candidate_tokens(advice_prereg_text):
    tokens = collect_candidate_tokens(extract_prereg(advice_prereg_text))
    assert tokens == ["advice_choice", "income_condition", "information_condition"]
