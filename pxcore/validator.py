# pxcore/validator.py
# -*- coding: utf-8 -*-
"""
Cross-table validator.

Compares a new table against trusted reference data: the same table for an
earlier period, or a sibling table sharing dimensions after one side has
been summed to the other's grouping (see ``regroup``). The reference is the
left side of a left join so that keys it has and the new table lacks show
up as failures instead of disappearing.
"""
import logging
from typing import Dict, Iterable, List, Mapping, Optional, Protocol

import numpy as np
import pandas as pd

from pxcore.config import THRESHOLD_EPSILON
from pxcore.models import ValidationConfig, ValidationResult

logger = logging.getLogger(__name__)

LEFT_VALUE = "left_value"
RIGHT_VALUE = "right_value"
MATCHED = "matched"
PCT_CHANGE = "pct_change"
ABS_PCT_CHANGE = "abs_pct_change"
REASON = "reason"


# ===========
# Logging
# ===========
def setup_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(name)s: %(message)s"
    )


# ===========
# Remote reference tables
# ===========
class TableProvider(Protocol):
    """Source of reference tables, e.g. a statistical database API client.

    ``filters`` maps a dimension to the values to keep, or ``"*"`` for all.
    The returned table must be fully materialized.
    """

    def fetch(self, dataset_path: str, filters: Mapping[str, object]) -> pd.DataFrame:
        ...


# ===========
# Config
# ===========
def validate_config(config: ValidationConfig) -> None:
    """Raise ValueError for an unusable configuration."""
    if not config.key_columns:
        raise ValueError("At least one key column is required.")
    threshold = config.threshold_percent
    if threshold is None or not np.isfinite(threshold) or threshold < 0:
        raise ValueError(f"Threshold must be a non-negative number (got {threshold}).")


def _key_list(frame: pd.DataFrame, key_columns: Iterable[str]) -> List[str]:
    if isinstance(key_columns, (set, frozenset)):
        return [c for c in frame.columns if c in key_columns]
    return list(key_columns)


# ===========
# Pre-join reduce
# ===========
def regroup(
    frame: pd.DataFrame,
    column: str,
    mapping: Mapping[str, str],
    value_column: str,
) -> pd.DataFrame:
    """Sum ``value_column`` after mapping the codes of ``column`` to groups.

    Used to bring a finer table to the grouping of a coarser one (single
    ages into an "age 15+" bucket). Codes without a group are dropped.
    """
    if column not in frame.columns:
        raise ValueError(f"Column '{column}' not found.")
    grouped = frame.copy()
    grouped[column] = grouped[column].astype(str).map({str(k): v for k, v in mapping.items()})
    unknown = int(grouped[column].isna().sum())
    if unknown:
        logger.info("%d rows of '%s' fall outside the grouping and are dropped", unknown, column)
        grouped = grouped[grouped[column].notna()]
    keys = [c for c in frame.columns if c != value_column]
    return grouped.groupby(keys, sort=False)[value_column].sum().reset_index()


# ===========
# Join / change / threshold
# ===========
def join(
    left: pd.DataFrame,
    right: pd.DataFrame,
    key_columns: Iterable[str],
    value_column: str = "value",
    right_value_column: Optional[str] = None,
) -> pd.DataFrame:
    """Left join ``right`` onto ``left`` by ``key_columns``.

    Keys are compared as text. Every left row is kept; ``right_value`` is
    missing and ``matched`` False where ``right`` lacks the key. Keys only
    in ``right`` are logged and left out.
    """
    keys = _key_list(left, key_columns)
    right_column = right_value_column or value_column
    for name, frame, needed in (("left", left, keys + [value_column]),
                                ("right", right, keys + [right_column])):
        missing = [c for c in needed if c not in frame.columns]
        if missing:
            raise ValueError(f"Columns {missing} not found in {name} table.")

    lhs = left[keys + [value_column]].rename(columns={value_column: LEFT_VALUE})
    rhs = right[keys + [right_column]].rename(columns={right_column: RIGHT_VALUE})
    lhs[keys] = lhs[keys].astype(str)
    rhs[keys] = rhs[keys].astype(str)
    if rhs.duplicated(keys).any():
        raise ValueError("Right table has more than one row for some keys.")

    joined = lhs.merge(rhs, on=keys, how="left", indicator=True)
    joined[MATCHED] = joined["_merge"] == "both"
    joined = joined.drop(columns="_merge")

    right_only = len(rhs) - int(joined[MATCHED].sum())
    if right_only > 0:
        logger.warning("%d keys exist only in the right table and are not compared", right_only)
    unmatched = int((~joined[MATCHED]).sum())
    if unmatched:
        logger.warning("%d reference keys have no counterpart in the new table", unmatched)

    joined.attrs["key_columns"] = keys
    return joined


def compute_percent_change(
    joined: pd.DataFrame,
    left_value_column: str = LEFT_VALUE,
    right_value_column: str = RIGHT_VALUE,
    key_columns: Optional[List[str]] = None,
) -> pd.Series:
    """``(right - left) / left * 100`` per row, indexed by the key columns.

    Undefined changes (left == 0 or either side missing) are NaN, never a
    finite-looking number.
    """
    keys = key_columns if key_columns is not None else joined.attrs.get("key_columns", [])
    left = pd.to_numeric(joined[left_value_column], errors="coerce").astype(float)
    right = pd.to_numeric(joined[right_value_column], errors="coerce").astype(float)
    pct = (right - left) * 100.0 / left.where(left != 0)
    pct = pct.where(np.isfinite(pct))
    if len(keys) == 1:
        pct.index = pd.Index(joined[keys[0]], name=keys[0])
    elif keys:
        pct.index = pd.MultiIndex.from_frame(joined[keys])
    pct.name = PCT_CHANGE
    return pct


def _reasons(joined: pd.DataFrame, left_value_column: str, right_value_column: str) -> np.ndarray:
    left = pd.to_numeric(joined[left_value_column], errors="coerce")
    right = pd.to_numeric(joined[right_value_column], errors="coerce")
    matched = joined[MATCHED] if MATCHED in joined.columns else pd.Series(True, index=joined.index)
    return np.select(
        [~matched.to_numpy(), left.isna().to_numpy(), (left == 0).to_numpy(), right.isna().to_numpy()],
        ["unmatched", "missing_reference", "zero_reference", "missing_value"],
        default="undefined",
    )


def check_threshold(
    percent_change: pd.Series,
    threshold_percent: float,
    joined: Optional[pd.DataFrame] = None,
) -> ValidationResult:
    """PASS iff every change is finite and max |change| <= threshold.

    Non-finite changes always FAIL and are reported in ``non_finite``;
    finite offenders are reported in ``violations`` sorted by descending
    magnitude, ties broken by key.
    """
    if threshold_percent is None or not np.isfinite(threshold_percent) or threshold_percent < 0:
        raise ValueError(f"Threshold must be a non-negative number (got {threshold_percent}).")

    frame = percent_change.rename(PCT_CHANGE).reset_index()
    keys = [c for c in frame.columns if c != PCT_CHANGE]
    if joined is not None:
        if len(joined) != len(frame):
            raise ValueError("Joined table and percent changes differ in length.")
        frame[LEFT_VALUE] = joined[LEFT_VALUE].to_numpy() if LEFT_VALUE in joined.columns else np.nan
        frame[RIGHT_VALUE] = joined[RIGHT_VALUE].to_numpy() if RIGHT_VALUE in joined.columns else np.nan
    pct = frame[PCT_CHANGE].astype(float)
    finite = np.isfinite(pct)
    frame[ABS_PCT_CHANGE] = pct.abs()

    exceeds = finite & (frame[ABS_PCT_CHANGE] - threshold_percent > THRESHOLD_EPSILON)
    violations = (
        frame[exceeds]
        .sort_values([ABS_PCT_CHANGE] + keys, ascending=[False] + [True] * len(keys), kind="mergesort")
        .reset_index(drop=True)
    )

    non_finite = frame[~finite].drop(columns=[ABS_PCT_CHANGE]).copy()
    if joined is not None and LEFT_VALUE in joined.columns and RIGHT_VALUE in joined.columns:
        non_finite[REASON] = _reasons(joined, LEFT_VALUE, RIGHT_VALUE)[~finite.to_numpy()]
    non_finite = non_finite.sort_values(keys, kind="mergesort").reset_index(drop=True)

    return ValidationResult(
        key_columns=keys,
        threshold=float(threshold_percent),
        passed=len(violations) == 0 and len(non_finite) == 0,
        percent_change=percent_change,
        violations=violations,
        non_finite=non_finite,
        joined=joined,
    )


def compare_tables(
    left: pd.DataFrame,
    right: pd.DataFrame,
    config: ValidationConfig,
) -> ValidationResult:
    """Join, compute changes and check the threshold in one call.

    ``left`` is the trusted reference (earlier period or sibling table),
    ``right`` the table under test. Pre-aggregate either side with
    ``regroup`` first when their groupings differ.
    """
    validate_config(config)
    joined = join(left, right, config.key_columns, config.value_column, config.right_column)
    pct = compute_percent_change(joined)
    result = check_threshold(pct, config.threshold_percent, joined=joined)

    summary = result.summary()
    if result.passed:
        logger.info("Validation PASS: %d rows within %.3f%%", summary["rows"], result.threshold)
    else:
        logger.warning(
            "Validation FAIL: %d rows above %.3f%%, %d undefined (max change %.3f%%)",
            summary["violations"], result.threshold, summary["non_finite"], summary["max_abs_change"],
        )
    return result


def compare_with_reference(
    provider: TableProvider,
    dataset_path: str,
    filters: Mapping[str, object],
    table: pd.DataFrame,
    config: ValidationConfig,
) -> ValidationResult:
    """Fetch the reference table from ``provider`` and compare ``table`` to it."""
    reference = provider.fetch(dataset_path, filters)
    logger.info("Fetched reference %s: %d rows", dataset_path, len(reference))
    return compare_tables(reference, table, config)


def summarize(results: Dict[str, ValidationResult]) -> pd.DataFrame:
    """One row per named comparison, worst first."""
    rows = [{"check": name, **result.summary()} for name, result in results.items()]
    if not rows:
        return pd.DataFrame(columns=["check", "verdict", "threshold", "rows",
                                     "violations", "non_finite", "max_abs_change"])
    frame = pd.DataFrame(rows)
    return frame.sort_values(["verdict", "max_abs_change"], ascending=[True, False]).reset_index(drop=True)
