"""
pxcore/models.py
================
Plain data types shared by the PX model, the classification store and the
cross-table validator.

No I/O here: every other module imports its types from this one.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Optional

import pandas as pd

from pxcore.config import DEFAULT_THRESHOLD_PERCENT
from pxcore.errors import NonFiniteComparisonError, ThresholdExceededError


# ---------------------------------------------------------------------------
# LocalizedText
# ---------------------------------------------------------------------------

@dataclass
class LocalizedText:
    """Text in every active language of a document.

    Attributes:
        texts: Ordered mapping language tag -> text. Its keys always equal the
               owning document's language set.
    """
    texts: dict[str, str] = field(default_factory=dict)

    @classmethod
    def uniform(cls, languages, text: str) -> "LocalizedText":
        """Same text under every language in ``languages``."""
        return cls({lang: text for lang in languages})

    @property
    def languages(self) -> list[str]:
        return list(self.texts)

    def get(self, language: str) -> str:
        return self.texts[language]

    def extend(self, language: str, source_language: str) -> None:
        """Add ``language`` seeded with the text of ``source_language``.

        Never leaves the new entry blank: if the source is missing the first
        available text is used.
        """
        if language in self.texts:
            return
        seed = self.texts.get(source_language)
        if seed is None:
            seed = next(iter(self.texts.values()), "")
        self.texts[language] = seed

    def merged(self, values: Mapping[str, str]) -> "LocalizedText":
        """New instance with ``values`` written over the current texts."""
        texts = dict(self.texts)
        texts.update({lang: str(text) for lang, text in values.items()})
        return LocalizedText(texts)

    def reordered(self, languages) -> "LocalizedText":
        return LocalizedText({lang: self.texts[lang] for lang in languages})

    def to_dict(self) -> dict[str, str]:
        return dict(self.texts)


# ---------------------------------------------------------------------------
# Variable
# ---------------------------------------------------------------------------

@dataclass
class Variable:
    """A dimension of a PX table.

    Attributes:
        code:         Language independent identifier (VARIABLECODE).
        values:       Value codes in declaration order.
        label:        Variable label per language (the STUB/HEADING entry).
        value_labels: value code -> label per language (VALUES).
        note:         Optional variable note per language.
        domain:       Name of an external classification, resolved lazily.
        elimination:  Value code used when the variable is eliminated.
        placement:    "stub" or "heading".
    """
    code: str
    values: list[str] = field(default_factory=list)
    label: LocalizedText = field(default_factory=LocalizedText)
    value_labels: dict[str, LocalizedText] = field(default_factory=dict)
    note: Optional[LocalizedText] = None
    domain: Optional[str] = None
    elimination: Optional[str] = None
    placement: str = "stub"

    def localized(self):
        """Yield (path, LocalizedText) for every language-scoped field."""
        yield ("LABEL", self.code), self.label
        if self.note is not None:
            yield ("NOTE", self.code), self.note
        for value in self.values:
            yield ("VALUES", self.code, value), self.value_labels[value]


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

CLASSIFICATION_CODE = "valuecode"
CLASSIFICATION_TEXT = "valuetext"


@dataclass
class Classification:
    """A PX-web value set with its aggregations.

    Attributes:
        name:     File stem of the exported artifacts.
        prestext: Presentation text of the value set.
        domain:   Key that PX-files use to reference this classification.
        table:    DataFrame with ``valuecode``, ``valuetext`` and one column
                  per aggregation (valuecode -> group label).
    """
    name: str
    prestext: str
    domain: str
    table: pd.DataFrame = field(default_factory=pd.DataFrame)

    @property
    def aggregations(self) -> list[str]:
        return [c for c in self.table.columns if c not in (CLASSIFICATION_CODE, CLASSIFICATION_TEXT)]

    @property
    def valuecodes(self) -> list[str]:
        return self.table[CLASSIFICATION_CODE].tolist()

    def groups(self, aggregation: str) -> dict[str, list[str]]:
        """Group label -> member valuecodes, groups in first-appearance order."""
        if aggregation not in self.aggregations:
            raise KeyError(f"Classification '{self.name}' has no aggregation '{aggregation}'")
        out: dict[str, list[str]] = {}
        for code, group in zip(self.table[CLASSIFICATION_CODE], self.table[aggregation]):
            out.setdefault(group, []).append(code)
        return out


# ---------------------------------------------------------------------------
# ValidationConfig
# ---------------------------------------------------------------------------

@dataclass
class ValidationConfig:
    """Parameters of a cross-table comparison.

    Attributes:
        key_columns:        Dimension columns shared by both tables.
        value_column:       Value column of the reference (left) table.
        right_value_column: Value column of the new (right) table; defaults
                            to ``value_column``.
        threshold_percent:  Maximum accepted absolute percent change
                            (inclusive).
    """
    key_columns: list[str] = field(default_factory=list)
    value_column: str = "value"
    right_value_column: Optional[str] = None
    threshold_percent: float = DEFAULT_THRESHOLD_PERCENT

    @property
    def right_column(self) -> str:
        return self.right_value_column or self.value_column


# ---------------------------------------------------------------------------
# ValidationResult
# ---------------------------------------------------------------------------

@dataclass
class ValidationResult:
    """Outcome of a join-and-threshold check.

    Attributes:
        key_columns:    Columns identifying a row.
        threshold:      Threshold in percent.
        passed:         Verdict.
        percent_change: Percent change per key (NaN where undefined).
        violations:     Finite offenders, sorted by descending magnitude.
        non_finite:     Rows whose change is undefined (zero or missing
                        reference value, unmatched key).
        joined:         The joined table the changes were computed from.
    """
    key_columns: list[str]
    threshold: float
    passed: bool
    percent_change: pd.Series = field(default_factory=lambda: pd.Series(dtype=float))
    violations: pd.DataFrame = field(default_factory=pd.DataFrame)
    non_finite: pd.DataFrame = field(default_factory=pd.DataFrame)
    joined: Optional[pd.DataFrame] = None

    @property
    def verdict(self) -> str:
        return "PASS" if self.passed else "FAIL"

    @property
    def max_abs_change(self) -> float:
        finite = self.percent_change[pd.notna(self.percent_change)]
        return float(finite.abs().max()) if len(finite) else 0.0

    def summary(self) -> dict:
        return {
            "verdict": self.verdict,
            "threshold": self.threshold,
            "rows": int(len(self.percent_change)),
            "violations": int(len(self.violations)),
            "non_finite": int(len(self.non_finite)),
            "max_abs_change": self.max_abs_change,
        }

    def raise_for_status(self) -> None:
        """Raise if the verdict is FAIL; for pipelines that treat it as fatal."""
        if len(self.non_finite):
            raise NonFiniteComparisonError(
                f"{len(self.non_finite)} rows have an undefined percent change", self
            )
        if len(self.violations):
            worst = self.violations.iloc[0]
            raise ThresholdExceededError(
                f"{len(self.violations)} rows exceed {self.threshold}% "
                f"(worst: {worst['pct_change']:.3f}%)",
                self,
            )
