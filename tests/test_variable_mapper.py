"""Tests for prereg-variable to export-column mapping."""

from conftest import make_flow, make_qsf, make_question

from analysis_app.utils.config import ReconcileConfig
from analysis_app.utils.qsf_parser import (
    EmbeddedDataField,
    SurveyCatalogue,
    SurveyChoice,
    SurveyColumn,
    build_catalogue,
    parse_qsf,
)
from analysis_app.utils.variable_mapper import (
    WARN_COUNTERBALANCE_AMBIGUOUS,
    WARN_UNRESOLVED,
    MappingResult,
    counterbalance_warning,
    find_counterbalance_pair,
    map_variable,
    unresolved_warning,
)


def _catalogue(*questions, embedded=()):
    columns = [
        SurveyColumn(qualtrics_qid=f"QID{i}", export_tag=tag, question_text=text, question_type="MC")
        for i, (tag, text) in enumerate(questions, 1)
    ]
    fields = [EmbeddedDataField(name=name) for name in embedded]
    return build_catalogue("S", columns, fields)


def test_condition_maps_to_label_candidate():
    column = SurveyColumn(
        qualtrics_qid="QID1",
        export_tag="income_label",
        question_text="Income condition",
        question_type="MC",
        choices=(SurveyChoice(value="1", label="Low"),),
    )
    catalogue = SurveyCatalogue(
        survey_name="S",
        questions=[column],
        embedded_data_fields=[EmbeddedDataField(name="participant_id")],
        expected_columns=["income_label", "participant_id"],
    )
    result = map_variable("income_condition", catalogue)
    assert any(c.key == "income_label" for c in result.candidates)


def test_exact_match_resolves():
    catalogue = _catalogue(("advice_choice", "Which option?"), ("age", "Age"))
    result = map_variable("ADVICE_CHOICE", catalogue)
    assert result.resolved_to == "advice_choice"
    assert result.candidates[0].key == "advice_choice"
    assert result.candidates[0].score == 1.0


def test_embedded_data_can_be_matched():
    catalogue = _catalogue(("q1", "Question"), embedded=["participant_id"])
    assert map_variable("participant_id", catalogue).resolved_to == "participant_id"


def test_high_similarity_resolves_above_threshold():
    catalogue = _catalogue(("income_lbl", "Income shown"))
    assert map_variable("income_condition", catalogue).resolved_to == "income_lbl"


def test_resolve_threshold_is_configurable():
    catalogue = _catalogue(("income_lbl", "Income shown"))
    strict = ReconcileConfig(resolve_threshold=0.995)
    result = map_variable("income_condition", catalogue, strict)
    assert result.resolved_to is None
    assert result.candidates[0].key == "income_lbl"


def test_counterbalance_pair_resolves_to_prereg_name(advice_qsf):
    catalogue = parse_qsf(advice_qsf)
    result = map_variable("income_condition", catalogue)

    assert result.resolved_to == "income_condition"
    assert result.is_synthesized
    keys = [c.key for c in result.candidates]
    assert keys[:2] == ["income_label_A1", "income_label_B2"]


def test_exact_match_beats_counterbalance_pair(advice_qsf):
    catalogue = parse_qsf(advice_qsf)
    result = map_variable("income_label_A1", catalogue)
    assert result.resolved_to == "income_label_A1"
    assert not result.is_synthesized


def test_three_variants_are_left_ambiguous():
    catalogue = _catalogue(
        ("income_label_A1", "Income order A"),
        ("income_label_B2", "Income order B"),
        ("income_label_C3", "Income order C"),
    )
    result = map_variable("income_condition", catalogue)

    assert result.resolved_to is None
    assert result.ambiguous_variants == ["income_label_A1", "income_label_B2", "income_label_C3"]
    warning = counterbalance_warning(result)
    assert warning.code == WARN_COUNTERBALANCE_AMBIGUOUS
    assert warning.details["columns"] == result.ambiguous_variants
    assert unresolved_warning(result).code == WARN_UNRESOLVED


def test_wave_suffix_column_does_not_block_pair():
    catalogue = _catalogue(
        ("income_label_A1", "Income order A"),
        ("income_label_B2", "Income order B"),
        ("income_label_t1", "Income order T"),
    )
    result = map_variable("income_condition", catalogue)

    assert result.resolved_to == "income_condition"
    assert result.ambiguous_variants == []
    assert counterbalance_warning(result) is None


def test_unresolved_variable_keeps_best_candidate():
    catalogue = _catalogue(("known_x", "Known"))
    result = map_variable("missing_y", catalogue)

    assert result.resolved_to is None
    assert [c.key for c in result.candidates] == ["known_x"]
    warning = unresolved_warning(result)
    assert warning.code == WARN_UNRESOLVED
    assert warning.message == "Unable to map prereg variable 'missing_y' to QSF column."
    assert warning.details["preregVar"] == "missing_y"
    assert warning.details["candidates"][0]["key"] == "known_x"


def test_resolved_mapping_has_no_warning():
    catalogue = _catalogue(("known_x", "Known"))
    result = map_variable("known_x", catalogue)
    assert unresolved_warning(result) is None
    assert counterbalance_warning(result) is None


def test_candidates_are_sorted_and_capped():
    catalogue = _catalogue(*[(f"trust_item_{i}", f"Trust item {i}") for i in range(8)])
    result = map_variable("trust_item", catalogue)
    scores = [c.score for c in result.candidates]
    assert scores == sorted(scores, reverse=True)
    assert len(result.candidates) <= 5
    assert all(0.0 <= s <= 1.0 for s in scores)


def test_blank_question_text_is_not_scored():
    raw = make_qsf(make_question("QID1", "wtp", ""), make_flow(("ResponseId", None)))
    result = map_variable("wtp", parse_qsf(raw))
    assert result.resolved_to == "wtp"


def test_find_counterbalance_pair_requires_related_base():
    assert find_counterbalance_pair("income_condition", ["income_label_A1", "income_label_B2"]) == (
        "income_label_A1",
        "income_label_B2",
    )
    assert find_counterbalance_pair("trust_score", ["income_label_A1", "income_label_B2"]) is None
    assert find_counterbalance_pair(
        "income_condition", ["income_label_A1", "income_label_B2"], [1.0, 0.5], 0.08
    ) is None


def test_mapping_result_serialization():
    result = MappingResult(prereg_var="x_var", resolved_to=None)
    assert result.to_dict() == {"preregVar": "x_var", "resolvedTo": None, "candidates": []}
    restored = MappingResult.from_dict({"preregVar": "x_var", "resolvedTo": "", "candidates": [{"key": "a", "score": 0.8}]})
    assert restored.resolved_to is None
    assert restored.candidates[0].key == "a"
