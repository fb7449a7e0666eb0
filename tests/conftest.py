"""
Shared test configuration, path setup and fixtures.

All test files in this directory import from analysis_app/utils/.
This conftest.py adds the project root to sys.path once, so individual
test files don't need their own path manipulation.
"""

import json
import os
import sys

import pytest

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from analysis_app.utils.config import set_config  # noqa: E402


def make_question(qid, tag, text, qtype="MC", choices=None):
    payload = {
        "QuestionID": qid,
        "DataExportTag": tag,
        "QuestionText": text,
        "QuestionType": qtype,
    }
    if choices is not None:
        payload["Choices"] = {str(i): {"Display": label} for i, label in enumerate(choices, 1)}
    return {"Element": "SQ", "PrimaryAttribute": qid, "Payload": payload}


def make_flow(*embedded_fields, nested=False):
    block = {
        "Type": "EmbeddedData",
        "FlowID": "FL_2",
        "EmbeddedData": [
            {"Field": name, "Value": value} if value is not None else {"Field": name}
            for name, value in embedded_fields
        ],
    }
    flow = [block]
    if nested:
        flow = [{"Type": "Branch", "FlowID": "FL_3", "Flow": [{"Type": "Group", "Flow": [block]}]}]
    return {
        "Element": "FL",
        "PrimaryAttribute": "Survey Flow",
        "Payload": {"Type": "Root", "FlowID": "FL_1", "Flow": flow},
    }


def make_qsf(*elements, name="Test Survey"):
    return json.dumps({
        "SurveyEntry": {"SurveyID": "SV_test", "SurveyName": name},
        "SurveyElements": list(elements),
    }).encode("utf-8")


@pytest.fixture(autouse=True)
def _default_config():
    """Every test starts from the built-in thresholds, not the environment."""
    from analysis_app.utils.config import ReconcileConfig

    set_config(ReconcileConfig())
    yield
    set_config(None)


@pytest.fixture
def advice_qsf():
    """Counterbalanced advice study: two orderings of the income manipulation."""
    return make_qsf(
        make_question("QID1", "advice_choice", "Which option do you <b>recommend</b>?", choices=["A", "B"]),
        make_question("QID2", "income_label_A1", "Income condition (order A)"),
        make_question("QID3", "income_label_B2", "Income condition (order B)"),
        make_question("QID4", "information_condition", "Information condition"),
        make_question("QID5", "age", "What is your age?", qtype="TE"),
        {"Element": "BL", "PrimaryAttribute": "Survey Blocks", "Payload": []},
        make_flow(("participant_id", None), ("condition", "treat")),
        name="Advice Study",
    )


ADVICE_PREREG = """# Advice sharing study

1) Hypothesis
Income and information framing change which option participants recommend.

2) Dependent variable
DV: advice_choice

3) Conditions
IV: income_condition, information_condition

4) Analyses
advice_choice ~ B0 + B1 x income condition + B2 x information condition + B3 x income condition x information condition
We will run the model with and without controls.

5) Exclusions
We will exclude participants who fail the attention check.

Missing data: listwise deletion
"""


@pytest.fixture
def advice_prereg_text():
    return ADVICE_PREREG
