from __future__ import annotations
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from analysis_app.utils import __version__
from analysis_app.utils.contract_validator import (
    apply_derived_variables,
    generate_contract_report,
    load_response_export,
    validate_response_data,
)
from analysis_app.utils.error_logger import log_generation_error
from analysis_app.utils.errors import AnalysisSpecError, ErrorKind, SpecValidationError
from analysis_app.utils.mapping_overrides import resolve_mappings
from analysis_app.utils.pipeline import generate_analysis_spec
from analysis_app.utils.prereg_loader import SUPPORTED_FORMATS, detect_format, parse_prereg
from analysis_app.utils.qsf_parser import parse_qsf, summarize_catalogue
from analysis_app.utils.spec_builder import DEFAULT_STYLE_PROFILE, DEFAULT_TEMPLATE_SET, AnalysisSpec
from analysis_app.utils.spec_schema import validate_analysis_spec

logger = logging.getLogger("analysis_app")


def _split_tokens(raw: Optional[str]) -> List[str]:
    return [t.strip() for t in (raw or "").split(",") if t.strip()]


def _emit(data: Dict[str, Any], out: Optional[str]) -> None:
    text = json.dumps(data, indent=2, ensure_ascii=False)
    if out:
        path = Path(out)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text + "\n", encoding="utf-8")
        print(f"Wrote {path}")
    else:
        print(text)


def _report_error(exc: AnalysisSpecError) -> int:
    print(f"error [{exc.kind.value}]: {exc.message}", file=sys.stderr)
    return 1


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise SpecValidationError(
            ErrorKind.MALFORMED_INPUT,
            f"Invalid JSON in {path}: {exc}",
            {'path': str(path), 'line': exc.lineno, 'column': exc.colno},
        ) from exc


def load_spec_file(path: Path) -> AnalysisSpec:
    data = _read_json(path)
    validate_analysis_spec(data)
    return AnalysisSpec.from_dict(data)


def cmd_parse_qsf(args: argparse.Namespace) -> int:
    try:
        catalogue = parse_qsf(Path(args.qsf).read_bytes(), _split_tokens(args.tokens))
    except AnalysisSpecError as exc:
        return _report_error(exc)
    if args.summary:
        print(summarize_catalogue(catalogue))
    else:
        _emit(catalogue.to_dict(), args.out)
    return 0


def cmd_parse_prereg(args: argparse.Namespace) -> int:
    path = Path(args.prereg)
    try:
        prereg = parse_prereg(path.read_bytes(), args.format or detect_format(path))
    except AnalysisSpecError as exc:
        return _report_error(exc)
    _emit(prereg.to_dict(), args.out)
    return 0


def cmd_generate(args: argparse.Namespace) -> int:
    qsf_path = Path(args.qsf)
    prereg_path = Path(args.prereg)
    try:
        previous = load_spec_file(Path(args.previous)) if args.previous else None
        enrichment = Path(args.enrichment).read_text(encoding="utf-8") if args.enrichment else None
        spec = generate_analysis_spec(
            qsf_path.read_bytes(),
            prereg_path.read_bytes(),
            project_id=args.project,
            study_id=args.study,
            analysis_id=args.analysis,
            qsf_path=str(qsf_path),
            prereg_path=str(prereg_path),
            prereg_format=args.format or detect_format(prereg_path),
            candidate_tokens=_split_tokens(args.tokens),
            enrichment=enrichment,
            previous_spec=previous,
            template_set=args.template_set,
            style_profile=args.style_profile,
            parallel=args.parallel,
        )
    except AnalysisSpecError as exc:
        log_generation_error(
            exc,
            context={'qsf_path': str(qsf_path), 'prereg_path': str(prereg_path), 'analysis_id': args.analysis},
            log_dir=args.error_log_dir,
        )
        return _report_error(exc)

    _emit(spec.to_dict(), args.out)
    for warning in spec.warnings:
        logger.warning("%s: %s", warning.code, warning.message)
    return 0


def cmd_resolve(args: argparse.Namespace) -> int:
    spec_path = Path(args.spec)
    updates: List[Dict[str, Any]] = []
    for item in args.set or []:
        var, sep, column = item.partition("=")
        if not sep or not var.strip() or not column.strip():
            print(f"error: --set expects VAR=COLUMN, got {item!r}", file=sys.stderr)
            return 2
        updates.append({'preregVar': var.strip(), 'resolvedTo': column.strip()})
    try:
        spec = load_spec_file(spec_path)
        if args.updates:
            listed = _read_json(Path(args.updates))
            if not isinstance(listed, list):
                raise SpecValidationError(
                    ErrorKind.SCHEMA_VIOLATION,
                    "--updates must hold a JSON list of {preregVar, resolvedTo}",
                    {'path': args.updates},
                )
            updates = listed + updates
        resolved = resolve_mappings(spec, updates)
    except AnalysisSpecError as exc:
        return _report_error(exc)
    _emit(resolved.to_dict(), args.out or str(spec_path))
    return 0


def cmd_check_data(args: argparse.Namespace) -> int:
    try:
        spec = load_spec_file(Path(args.spec))
    except AnalysisSpecError as exc:
        return _report_error(exc)
    df = load_response_export(args.data)
    results = validate_response_data(df, spec)
    print(generate_contract_report(results, spec))
    if args.derived_out:
        out = Path(args.derived_out)
        out.parent.mkdir(parents=True, exist_ok=True)
        apply_derived_variables(df, spec).to_csv(out, index=False)
        print(f"Wrote {out}")
    return 0 if results['valid'] else 1


def cmd_version(args: argparse.Namespace) -> int:
    print(f"analysis_app {__version__}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="analysis-app", description="Reconcile a QSF survey with a preregistration.")
    p.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = p.add_subparsers(dest="cmd", required=True)

    pq = sub.add_parser("parse-qsf", help="Parse a .qsf file into its column catalogue")
    pq.add_argument("qsf")
    pq.add_argument("--tokens", default=None, help="Comma-separated variable names for a targeted parse")
    pq.add_argument("--summary", action="store_true", help="Print a readable summary instead of JSON")
    pq.add_argument("--out", default=None)
    pq.set_defaults(func=cmd_parse_qsf)

    pp = sub.add_parser("parse-prereg", help="Extract the structured plan from a preregistration")
    pp.add_argument("prereg")
    pp.add_argument("--format", choices=SUPPORTED_FORMATS, default=None)
    pp.add_argument("--out", default=None)
    pp.set_defaults(func=cmd_parse_prereg)

    pg = sub.add_parser("generate", help="Build an AnalysisSpec from a QSF and a preregistration")
    pg.add_argument("--qsf", required=True)
    pg.add_argument("--prereg", required=True)
    pg.add_argument("--format", choices=SUPPORTED_FORMATS, default=None)
    pg.add_argument("--project", required=True)
    pg.add_argument("--study", required=True)
    pg.add_argument("--analysis", required=True)
    pg.add_argument("--tokens", default=None)
    pg.add_argument("--previous", default=None, help="Saved spec whose manual mappings are kept")
    pg.add_argument("--enrichment", default=None, help="JSON answer of an external model extraction")
    pg.add_argument("--template-set", dest="template_set", default=DEFAULT_TEMPLATE_SET)
    pg.add_argument("--style-profile", dest="style_profile", default=DEFAULT_STYLE_PROFILE)
    pg.add_argument("--parallel", action="store_true")
    pg.add_argument("--error-log-dir", dest="error_log_dir", default=None)
    pg.add_argument("--out", default=None)
    pg.set_defaults(func=cmd_generate)

    pr = sub.add_parser("resolve", help="Apply manual mapping resolutions to a saved spec")
    pr.add_argument("--spec", required=True)
    pr.add_argument("--set", action="append", metavar="VAR=COLUMN")
    pr.add_argument("--updates", default=None, help="JSON list of {preregVar, resolvedTo}")
    pr.add_argument("--out", default=None, help="Defaults to overwriting --spec")
    pr.set_defaults(func=cmd_resolve)

    pc = sub.add_parser("check-data", help="Check a response export against a spec's data contract")
    pc.add_argument("--spec", required=True)
    pc.add_argument("--data", required=True)
    pc.add_argument("--derived-out", dest="derived_out", default=None)
    pc.set_defaults(func=cmd_check_data)

    pv = sub.add_parser("version", help="Print the package version")
    pv.set_defaults(func=cmd_version)
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s %(name)s: %(message)s")
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
