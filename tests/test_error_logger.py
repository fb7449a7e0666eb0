import json
from pathlib import Path

from analysis_app.utils.error_logger import (
    INDEX_FILENAME,
    default_log_dir,
    get_error_detail,
    get_error_summary,
    get_pending_errors,
    log_generation_error,
    mark_error_resolved,
)
from analysis_app.utils.errors import ErrorKind, QSFParseError


def _qsf_error():
    return QSFParseError(ErrorKind.MALFORMED_INPUT, "Invalid QSF JSON: bad", {"line": 1})


def test_log_writes_record_and_index(tmp_path: Path):
    fingerprint = log_generation_error(_qsf_error(), context={"qsf_path": "a.qsf"}, log_dir=tmp_path)

    assert fingerprint
    index = json.loads((tmp_path / INDEX_FILENAME).read_text(encoding="utf-8"))
    assert index["total_logged"] == 1
    assert index["errors"][0]["error_kind"] == "malformed_input"

    detail = get_error_detail(fingerprint, tmp_path)
    assert detail["error_type"] == "QSFParseError"
    assert detail["error_context"] == {"line": 1}
    assert detail["context"] == {"qsf_path": "a.qsf"}


def test_repeated_error_is_counted_once(tmp_path: Path):
    first = log_generation_error(_qsf_error(), log_dir=tmp_path)
    second = log_generation_error(_qsf_error(), log_dir=tmp_path)
    assert first == second

    summary = get_error_summary(tmp_path)
    assert summary["unique_errors"] == 1
    assert summary["total_logged"] == 2
    assert summary["errors_by_kind"] == {"malformed_input": 2}
    assert len(get_pending_errors(tmp_path)) == 1


def test_mark_resolved(tmp_path: Path):
    fingerprint = log_generation_error(_qsf_error(), log_dir=tmp_path)
    assert mark_error_resolved(fingerprint, tmp_path)
    assert get_pending_errors(tmp_path) == []
    assert get_error_summary(tmp_path)["resolved_count"] == 1
    assert not mark_error_resolved("unknown", tmp_path)


def test_plain_exceptions_are_logged(tmp_path: Path):
    fingerprint = log_generation_error(ValueError("boom"), phase="render", log_dir=tmp_path)
    detail = get_error_detail(fingerprint, tmp_path)
    assert detail["error_kind"] is None
    assert detail["phase"] == "render"


def test_unwritable_directory_returns_none(tmp_path: Path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x", encoding="utf-8")
    assert log_generation_error(_qsf_error(), log_dir=blocker) is None


def test_log_dir_from_environment(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("ANALYSIS_APP_ERROR_LOG_DIR", str(tmp_path / "logs"))
    assert default_log_dir() == tmp_path / "logs"
    log_generation_error(_qsf_error())
    assert (tmp_path / "logs" / INDEX_FILENAME).exists()
