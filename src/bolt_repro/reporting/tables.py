"""Table generation for reporting.

This module turns stored comparison results into pandas tables for display.
"""

import pandas as pd
from typing import Any, Dict, List


def create_comparison_table(comparisons: List[Dict[str, Any]]) -> pd.DataFrame:
    """Create a table of treatments against the baseline.

    Args:
        comparisons: Payloads as written by ``ReportWriter.write_comparison``.

    Returns:
        DataFrame indexed by treatment.
    """
    rows = []

    for payload in comparisons:
        baseline = payload["baseline_stats"]
        treatment = payload["treatment_stats"]
        rows.append({
            'Treatment': payload["treatment"],
            'Baseline': payload["baseline"],
            'Baseline_mean_ms': baseline["mean"],
            'Baseline_std_ms': baseline["stddev"],
            'Treatment_mean_ms': treatment["mean"],
            'Treatment_std_ms': treatment["stddev"],
            'Trials': treatment["n"],
            'Faster_pct': payload["percentage_delta"],
        })

    if not rows:
        return pd.DataFrame()

    df = pd.DataFrame(rows)
    df = df.set_index('Treatment')
    df = df.sort_values('Faster_pct', ascending=False)

    return df


def format_table_for_display(df: pd.DataFrame, decimal_places: int = 2) -> str:
    """Render a table as aligned text."""
    if df.empty:
        return "(no comparison results)"
    return df.to_string(float_format=lambda x: f'{x:.{decimal_places}f}')
