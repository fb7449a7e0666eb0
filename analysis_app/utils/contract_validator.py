"""
Contract Validator for Qualtrics Response Exports
=================================================
Checks a downloaded response export against the data contract of an
AnalysisSpec and materializes the derived counterbalance merges.

Validation Checks Performed:
1. Expected Columns - every catalogue column present (missing = warning,
   Qualtrics drops empty metadata columns on some export settings)
2. Model Columns - every column a resolved model reads (missing = error)
3. Merge Sources - both source columns of each counterbalance merge
   (missing = error)
4. Placeholders - models still referencing TODO_ columns (warning)
5. Extra Columns - columns the contract does not know about (info)
6. Missing Rates - share of missing values per model column

Error Levels:
- errors: the export cannot feed the planned models (valid=False)
- warnings: review before running the analysis
- info: informational messages about the export
"""

from datetime import datetime
from typing import Any, Dict, List, Set, Union

import numpy as np
import pandas as pd

from .spec_builder import COUNTERBALANCE_MERGE, TODO_PREFIX, AnalysisSpec

HIGH_MISSING_RATE = 0.20

# Second and third header rows of a Qualtrics CSV export
_QUALTRICS_IMPORT_MARKER = '{"ImportId"'


def load_response_export(path_or_buffer: Any) -> pd.DataFrame:
    """Read a Qualtrics CSV export, dropping its label and ImportId header rows."""
    df = pd.read_csv(path_or_buffer, dtype=str, keep_default_na=True)
    if 'ResponseId' in df.columns and len(df) > 0:
        first_col = df['ResponseId'].fillna('')
        header_rows = first_col.str.startswith(_QUALTRICS_IMPORT_MARKER) | (first_col == 'Response ID')
        df = df.loc[~header_rows].reset_index(drop=True)
    return df


def _model_columns(spec: AnalysisSpec) -> Set[str]:
    columns: Set[str] = set()
    for group in (spec.models.main, spec.models.exploratory, spec.models.robustness):
        for model in group:
            columns.add(model.dv)
            columns.update(model.iv)
            columns.update(model.controls)
    return columns


def _merge_definitions(spec: AnalysisSpec) -> List[Any]:
    return [
        d for d in spec.data_contract.derived_variables
        if d.derived_type == COUNTERBALANCE_MERGE and len(d.depends_on) >= 2
    ]


def _as_missing(series: pd.Series) -> pd.Series:
    """Blank strings count as missing, as in a Qualtrics CSV."""
    if series.dtype == object:
        return series.replace(r'^\s*$', np.nan, regex=True)
    return series


def validate_response_data(df: pd.DataFrame, spec: AnalysisSpec) -> Dict[str, Any]:
    """
    Validate a response export against ``spec.data_contract`` and its models.

    Args:
        df: Response export (see load_response_export)
        spec: AnalysisSpec the export should satisfy

    Returns:
        Dictionary with 'valid', 'errors', 'warnings', 'info' and 'summary'
    """
    results: Dict[str, Any] = {
        'valid': True,
        'errors': [],
        'warnings': [],
        'info': [],
        'summary': {},
    }
    present = set(df.columns)
    contract = spec.data_contract

    # Expected catalogue columns
    missing_expected = [c for c in contract.expected_columns if c not in present]
    if missing_expected:
        results['warnings'].append(f"Export is missing expected columns: {missing_expected}")

    response_id = contract.id_columns.get('response_id')
    if response_id and response_id not in present:
        results['warnings'].append(f"Response id column '{response_id}' not found")

    # Columns the models read; derived names are produced by apply_derived_variables
    derived_names = {d.name for d in contract.derived_variables}
    model_columns = _model_columns(spec)
    placeholders = sorted(c for c in model_columns if c.startswith(TODO_PREFIX))
    if placeholders:
        results['warnings'].append(f"Models still reference unresolved placeholders: {placeholders}")

    required = sorted(
        c for c in model_columns
        if not c.startswith(TODO_PREFIX) and c not in derived_names
    )
    missing_required = [c for c in required if c not in present]
    if missing_required:
        results['errors'].append(f"Missing model columns: {missing_required}")
        results['valid'] = False

    # Counterbalance merge sources
    for merge in _merge_definitions(spec):
        missing_sources = [s for s in merge.depends_on if s not in present]
        if missing_sources:
            results['errors'].append(
                f"Cannot derive '{merge.name}': missing source columns {missing_sources}"
            )
            results['valid'] = False

    # Extra columns
    known = set(contract.expected_columns) | set(contract.id_columns.values()) | derived_names
    extra = sorted(present - known)
    if extra:
        results['info'].append(f"{len(extra)} columns not in the data contract: {extra[:10]}")

    # Missing rates for model columns
    n_rows = len(df)
    missing_rates: Dict[str, float] = {}
    for col in required:
        if col not in present:
            continue
        rate = float(_as_missing(df[col]).isna().mean()) if n_rows else 0.0
        missing_rates[col] = round(rate, 4)
        if rate > HIGH_MISSING_RATE:
            results['warnings'].append(
                f"Column {col} is missing for {rate * 100:.1f}% of responses"
            )

    covered = len([c for c in contract.expected_columns if c in present])
    results['summary'] = {
        'rows': n_rows,
        'columns': len(df.columns),
        'expected_columns': {
            'total': len(contract.expected_columns),
            'present': covered,
            'coverage': round(covered / len(contract.expected_columns), 4) if contract.expected_columns else 1.0,
        },
        'model_columns': required,
        'missing_rates': missing_rates,
        'placeholders': placeholders,
    }
    return results


def apply_derived_variables(df: pd.DataFrame, spec: AnalysisSpec) -> pd.DataFrame:
    """
    Add every counterbalance merge column to a copy of ``df``.

    Each merge takes the first non-missing value across its source columns,
    in the order listed in ``depends_on``. Merges whose sources are absent
    are skipped; validate_response_data reports them.
    """
    out = df.copy()
    for merge in _merge_definitions(spec):
        if not all(s in out.columns for s in merge.depends_on):
            continue
        merged = _as_missing(out[merge.depends_on[0]])
        for source in merge.depends_on[1:]:
            merged = merged.combine_first(_as_missing(out[source]))
        out[merge.name] = merged
    return out


def generate_contract_report(results: Dict[str, Any], spec: Union[AnalysisSpec, None] = None) -> str:
    """Plain-text report of a validate_response_data result."""
    summary = results.get('summary', {})
    expected = summary.get('expected_columns', {})
    lines = [
        "=" * 70,
        "DATA CONTRACT CHECK",
        f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        "=" * 70,
    ]
    if spec is not None:
        lines.append(f"Analysis: {spec.analysis_id}")
    lines.extend([
        f"Rows: {summary.get('rows', 0)}",
        f"Columns: {summary.get('columns', 0)}",
        f"Expected columns present: {expected.get('present', 0)}/{expected.get('total', 0)}",
        f"Status: {'VALID' if results.get('valid') else 'INVALID'}",
        "",
    ])
    for title, key in (("ERRORS", 'errors'), ("WARNINGS", 'warnings'), ("INFO", 'info')):
        items = results.get(key) or []
        if not items:
            continue
        lines.append(f"{title}:")
        lines.extend(f"  - {item}" for item in items)
        lines.append("")

    rates = summary.get('missing_rates') or {}
    if rates:
        lines.append("MISSING RATES (model columns):")
        for col, rate in sorted(rates.items()):
            lines.append(f"  {col}: {rate * 100:.1f}%")
        lines.append("")
    lines.append("=" * 70)
    return "\n".join(lines)
