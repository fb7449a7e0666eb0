from analysis_app.utils.token_normalizer import (
    canonicalize,
    normalize_token,
    similarity,
    strip_order_suffix,
    token_match_score,
    tokenize_identifiers,
)


def test_normalize_token_collapses_separators():
    assert normalize_token("Income Condition (order A)") == "income_condition_order_a"
    assert normalize_token("__Advice--Choice__") == "advice_choice"
    assert normalize_token("") == ""


def test_normalize_token_is_idempotent():
    for raw in ["Income Label A1", "what is  your age?", "QID12", "x"]:
        once = normalize_token(raw)
        assert normalize_token(once) == once


def test_canonicalize_maps_synonym_buckets():
    assert canonicalize("income_label") == "income_condition"
    assert canonicalize("info_cond") == "information_condition"
    assert canonicalize("ctrl_demo") == "control_demographic"


def test_similarity_exact_match_scores_one():
    assert similarity("advice_choice", "ADVICE_CHOICE") == 1.0


def test_similarity_canonical_match_is_just_below_exact():
    assert similarity("income_condition", "income_label") == 0.99


def test_similarity_stays_in_unit_interval():
    pairs = [
        ("income_condition", "income_label_A1"),
        ("advice_choice", "age"),
        ("x", "a_very_long_unrelated_column_name"),
        ("information_condition", "info"),
    ]
    for a, b in pairs:
        assert 0.0 <= similarity(a, b) <= 1.0


def test_token_match_score_prefers_related_names():
    related = token_match_score("advice", "advice_choice")
    unrelated = token_match_score("advice", "age")
    assert related > 0.55 > unrelated


def test_strip_order_suffix():
    assert strip_order_suffix("income_label_a1") == "income_label"
    assert strip_order_suffix("income_labelb2") == "income_label"
    assert strip_order_suffix("income_label_c3") == "income_label_c3"


def test_tokenize_identifiers_finds_code_like_names():
    text = "We model `wtp` using treat_x, baselineScore and QID7 from the survey."
    tokens = tokenize_identifiers(text)
    assert "wtp" in tokens
    assert "treat_x" in tokens
    assert "baselineScore" in tokens
    assert "QID7" in tokens
    assert "survey" not in tokens
