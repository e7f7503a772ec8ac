"""
pxcore/document.py
==================
PX Document model: one data table, the language set, the metadata fields
and the variables with their classification bindings.

Data cells are addressed by explicit index arithmetic over the ordered
variables (stub first, then heading) and their ordered value codes, so the
serialized order never depends on how a DataFrame happens to be sorted.
"""
from __future__ import annotations

import copy
import logging
from typing import Iterable, Mapping, Optional, Union

import numpy as np
import pandas as pd

from pxcore import keywords
from pxcore.config import DEFAULT_LANGUAGE, FIGURES_COLUMN, TOTAL_CODE, TOTAL_LABEL
from pxcore.errors import UnknownLanguageError
from pxcore.models import LocalizedText, Variable

logger = logging.getLogger(__name__)

FieldValue = Union[str, Mapping[str, str]]


# ===========
# Helpers
# ===========
def natural_sort(values: Iterable[str]) -> list[str]:
    """Sort codes numerically when every code is a number, else as text."""
    values = list(values)
    try:
        keys = [float(v) for v in values]
    except (TypeError, ValueError):
        return sorted(values)
    if not np.isfinite(keys).all():
        return sorted(values)
    return sorted(values, key=float)


def cell_strides(variables: list[Variable]) -> tuple[list[int], int]:
    """Stride of each variable in the flat cross product, and its size."""
    strides = []
    size = 1
    for var in reversed(variables):
        strides.append(size)
        size *= len(var.values)
    return list(reversed(strides)), size


# ===========
# Document
# ===========
class Document:
    """A PX table under construction.

    ``languages[0]`` is the main language. ``variables`` are kept in stub,
    then heading order. ``data`` holds one column per variable code (value
    codes as strings) plus ``figures``; only observed cells need a row.
    """

    def __init__(self, language: str = DEFAULT_LANGUAGE):
        self.languages: list[str] = [language]
        self.fields: dict[str, Union[str, LocalizedText]] = {"DECIMALS": "0"}
        self.variables: list[Variable] = []
        self.data = pd.DataFrame(columns=[FIGURES_COLUMN])
        # (field path, language) pairs holding seeded, unreviewed text
        self.untranslated: set[tuple[tuple, str]] = set()

    def __repr__(self) -> str:
        return (
            f"Document(languages={self.languages}, "
            f"variables={self.variable_codes}, rows={len(self.data)})"
        )

    # -- structure ----------------------------------------------------------

    @property
    def main_language(self) -> str:
        return self.languages[0]

    @property
    def variable_codes(self) -> list[str]:
        return [v.code for v in self.variables]

    @property
    def stub(self) -> list[Variable]:
        return [v for v in self.variables if v.placement == "stub"]

    @property
    def heading(self) -> list[Variable]:
        return [v for v in self.variables if v.placement == "heading"]

    def variable(self, code: str) -> Variable:
        for var in self.variables:
            if var.code == code:
                return var
        raise KeyError(f"Unknown variable: {code}")

    def add_variable(
        self,
        code: str,
        values: Iterable,
        label: Optional[FieldValue] = None,
        value_labels: Optional[Mapping[str, FieldValue]] = None,
        placement: str = "stub",
    ) -> Variable:
        """Declare a variable. Labels default to the codes themselves."""
        if code in self.variable_codes:
            raise ValueError(f"Variable '{code}' already exists")
        if len(self.data):
            raise ValueError("Variables must be declared before data is attached")
        if code == FIGURES_COLUMN:
            raise ValueError(f"'{FIGURES_COLUMN}' is reserved for the data values")
        if placement not in ("stub", "heading"):
            raise ValueError(f"Invalid placement: {placement}")
        values = [str(v) for v in values]
        if not values:
            raise ValueError(f"Variable '{code}' has no values")
        if len(set(values)) != len(values):
            raise ValueError(f"Variable '{code}' has duplicated value codes")
        value_labels = value_labels or {}
        var = Variable(
            code=code,
            values=values,
            label=self._localized_text(label if label is not None else code),
            value_labels={
                v: self._localized_text(value_labels.get(v, v)) for v in values
            },
            placement=placement,
        )
        self.variables.append(var)
        self._order_variables()
        self.data = pd.DataFrame(columns=self.variable_codes + [FIGURES_COLUMN])
        return var

    def pivot(self, stub: list[str], heading: list[str]) -> "Document":
        """Place the variables in ``stub`` and ``heading``, in that order."""
        if sorted(stub + heading) != sorted(self.variable_codes):
            raise ValueError("stub and heading must list every variable exactly once")
        by_code = {v.code: v for v in self.variables}
        for code in stub:
            by_code[code].placement = "stub"
        for code in heading:
            by_code[code].placement = "heading"
        self.variables = [by_code[c] for c in stub + heading]
        self.data = self.data[self.variable_codes + [FIGURES_COLUMN]]
        self.sort_data()
        return self

    def _order_variables(self) -> None:
        self.variables = self.stub + self.heading

    def localized_fields(self):
        """Yield (path, LocalizedText) for every language-scoped field."""
        for name, value in self.fields.items():
            if isinstance(value, LocalizedText):
                yield (name,), value
        for var in self.variables:
            yield from var.localized()

    # -- metadata -----------------------------------------------------------

    def set_field(
        self,
        keyword: str,
        value: FieldValue,
        variable: Optional[str] = None,
        code: Optional[str] = None,
    ) -> "Document":
        """Set a metadata field.

        Language-scoped fields take either a mapping language -> text or a
        plain string meaning the main language. Languages left out keep
        their previous text; on first assignment they are seeded with the
        supplied text and recorded as untranslated. Nothing is changed if
        the call fails.

        Args:
            keyword:  PX keyword (``LABEL`` for a variable label).
            value:    Text or mapping language -> text.
            variable: Variable code for variable/value level keywords.
            code:     Value code for value level keywords (``VALUES``).
        """
        scope = keywords.VALUE if code is not None else (
            keywords.VARIABLE if variable is not None else keywords.TABLE
        )
        if code is not None and variable is None:
            raise ValueError("A value code needs its variable")
        kw = keywords.lookup(keyword, scope)
        if kw.name in keywords.STRUCTURAL:
            raise ValueError(f"{kw.name} is derived from the variables and cannot be set")
        var = self.variable(variable) if variable is not None else None
        if code is not None and code not in var.values:
            raise KeyError(f"Variable '{variable}' has no value code '{code}'")
        path = _field_path(kw, variable, code)
        if isinstance(value, LocalizedText):
            value = value.to_dict()

        if not kw.language_dependent:
            if isinstance(value, Mapping):
                raise ValueError(f"{kw.name} is language independent; pass a single value")
            self._set_plain(kw, None if value is None else str(value), var)
            return self

        mapping = dict(value) if isinstance(value, Mapping) else {self.main_language: value}
        if not mapping:
            raise ValueError(f"No value given for {kw.name}")
        empty = [lang for lang, text in mapping.items() if text is None]
        if empty:
            raise ValueError(f"{kw.name} needs a text, got None for {empty}")
        unknown = set(mapping) - set(self.languages)
        if unknown:
            raise UnknownLanguageError(unknown, self.languages)

        current = self._get_localized(kw, var, code)
        seeded: list[str] = []
        if current is None:
            seed = mapping.get(self.main_language, next(iter(mapping.values())))
            current = LocalizedText.uniform(self.languages, str(seed))
            seeded = [lang for lang in self.languages if lang not in mapping]
        new = current.merged(mapping).reordered(self.languages)

        if kw.scope == keywords.TABLE:
            self.fields[kw.name] = new
        elif kw.scope == keywords.VALUE:
            var.value_labels[code] = new
        else:
            setattr(var, kw.attribute, new)
        for lang in mapping:
            self.untranslated.discard((path, lang))
        for lang in seeded:
            self.untranslated.add((path, lang))
        return self

    def get_field(
        self,
        keyword: str,
        language: Optional[str] = None,
        variable: Optional[str] = None,
        code: Optional[str] = None,
    ) -> Optional[str]:
        """Value of a field; language-scoped fields default to the main language."""
        scope = keywords.VALUE if code is not None else (
            keywords.VARIABLE if variable is not None else keywords.TABLE
        )
        kw = keywords.lookup(keyword, scope)
        var = self.variable(variable) if variable is not None else None
        if kw.name == "CODES":
            return code
        if kw.scope == keywords.TABLE:
            value = self.fields.get(kw.name)
        elif kw.scope == keywords.VALUE:
            value = var.value_labels[code]
        else:
            value = getattr(var, kw.attribute)
        if isinstance(value, LocalizedText):
            language = language or self.main_language
            if language not in self.languages:
                raise UnknownLanguageError([language], self.languages)
            return value.get(language)
        return value

    def _set_plain(self, kw: keywords.Keyword, value: Optional[str], var: Optional[Variable]) -> None:
        if kw.scope == keywords.TABLE:
            if value is None:
                self.fields.pop(kw.name, None)
            else:
                self.fields[kw.name] = value
            return
        if kw.name == "ELIMINATION" and value is not None and value not in var.values:
            raise KeyError(f"Variable '{var.code}' has no value code '{value}'")
        if kw.name == "DOMAIN" and value is not None:
            logger.info("Variable '%s' bound to domain '%s' (resolved on save)", var.code, value)
        setattr(var, kw.attribute, value)

    def _get_localized(self, kw, var, code) -> Optional[LocalizedText]:
        if kw.scope == keywords.TABLE:
            return self.fields.get(kw.name)
        if kw.scope == keywords.VALUE:
            return var.value_labels.get(code)
        return getattr(var, kw.attribute)

    def _localized_text(self, value: FieldValue) -> LocalizedText:
        if isinstance(value, LocalizedText):
            value = value.to_dict()
        if isinstance(value, Mapping):
            unknown = set(value) - set(self.languages)
            if unknown:
                raise UnknownLanguageError(unknown, self.languages)
            seed = value.get(self.main_language, next(iter(value.values())))
            return LocalizedText.uniform(self.languages, str(seed)).merged(value)
        return LocalizedText.uniform(self.languages, str(value))

    # -- data ---------------------------------------------------------------

    def cell_index(self, frame: Optional[pd.DataFrame] = None) -> np.ndarray:
        """Flat cross-product position of every row of ``frame``."""
        frame = self.data if frame is None else frame
        strides, _size = cell_strides(self.variables)
        index = np.zeros(len(frame), dtype=np.int64)
        for var, stride in zip(self.variables, strides):
            positions = frame[var.code].astype(str).map(
                {value: i for i, value in enumerate(var.values)}
            )
            if positions.isna().any():
                unknown = sorted(set(frame[var.code].astype(str)[positions.isna()]))
                raise ValueError(f"Undeclared codes for variable '{var.code}': {unknown}")
            index += positions.to_numpy(dtype=np.int64) * stride
        return index

    def sort_data(self) -> None:
        """Put data rows in cross-product order; reject duplicated cells."""
        if not self.variables:
            return
        index = self.cell_index()
        if len(np.unique(index)) != len(index):
            raise ValueError("Data holds more than one row for the same cell")
        order = np.argsort(index, kind="stable")
        self.data = self.data.iloc[order].reset_index(drop=True)

    # -- comparison ---------------------------------------------------------

    def copy(self) -> "Document":
        return copy.deepcopy(self)

    def equals(self, other: "Document") -> bool:
        """Same languages, field values, variables and data in the same order.

        Review state (``untranslated``) is not part of the comparison.
        """
        if not isinstance(other, Document):
            return False
        if self.languages != other.languages or self.fields != other.fields:
            return False
        if self.variables != other.variables:
            return False
        left, right = self.data.reset_index(drop=True), other.data.reset_index(drop=True)
        if list(left.columns) != list(right.columns) or len(left) != len(right):
            return False
        for code in self.variable_codes:
            if not (left[code].astype(str).to_numpy() == right[code].astype(str).to_numpy()).all():
                return False
        return bool(np.allclose(
            left[FIGURES_COLUMN].astype(float).to_numpy(),
            right[FIGURES_COLUMN].astype(float).to_numpy(),
            equal_nan=True,
        ))


def _field_path(kw: keywords.Keyword, variable: Optional[str], code: Optional[str]) -> tuple:
    if kw.scope == keywords.TABLE:
        return (kw.name,)
    if kw.scope == keywords.VALUE:
        return (kw.name, variable, code)
    return (kw.name, variable)


# ===========
# Builders
# ===========
def from_microdata(
    rows,
    aggregation_key: Iterable[str],
    language: str = DEFAULT_LANGUAGE,
) -> Document:
    """Count microdata rows per observed combination of ``aggregation_key``.

    Args:
        rows:            DataFrame or iterable of mappings.
        aggregation_key: Columns to group by. A list fixes the variable
                         order; a set follows the column order of ``rows``.
        language:        Main language of the new document.

    Returns:
        Document with one row per observed combination; unobserved
        combinations are left out.
    """
    frame = rows if isinstance(rows, pd.DataFrame) else pd.DataFrame(list(rows))
    if isinstance(aggregation_key, (set, frozenset)):
        missing = set(aggregation_key) - set(frame.columns)
        keys = [c for c in frame.columns if c in aggregation_key]
    else:
        keys = list(aggregation_key)
        missing = set(keys) - set(frame.columns)
    if missing:
        raise KeyError(f"Columns not found in microdata: {sorted(missing)}")
    if not keys:
        raise ValueError("Aggregation key is empty")

    complete = frame[keys].notna().all(axis=1)
    dropped = int((~complete).sum())
    if dropped:
        logger.warning("%d microdata rows with a missing key value dropped", dropped)
    subset = frame.loc[complete, keys].astype(str)
    counts = subset.groupby(keys, sort=False).size().reset_index(name=FIGURES_COLUMN)

    doc = Document(language)
    for i, key in enumerate(keys):
        placement = "heading" if len(keys) > 1 and i == len(keys) - 1 else "stub"
        doc.add_variable(key, natural_sort(counts[key].unique()), placement=placement)
    doc.data = counts[keys + [FIGURES_COLUMN]]
    doc.sort_data()
    logger.info(
        "Built document from %d microdata rows: %d cells observed", len(subset), len(doc.data)
    )
    return doc


def add_totals(
    document: Document,
    variables: Union[str, Iterable[str]],
    code: str = TOTAL_CODE,
    label: FieldValue = TOTAL_LABEL,
) -> Document:
    """Add a total value code to each of ``variables``.

    The total cell is the sum over the variable's other codes, every other
    variable held fixed. Variables are processed in turn, so totals of
    totals are included. The total code becomes the first value and the
    variable's elimination value.
    """
    variables = [variables] if isinstance(variables, str) else list(variables)
    repeated = sorted({v for v in variables if variables.count(v) > 1})
    if repeated:
        raise ValueError(f"Variables listed more than once: {repeated}")
    for var_code in variables:
        if code in document.variable(var_code).values:
            raise ValueError(f"Variable '{var_code}' already has value code '{code}'")
    document._localized_text(label)

    for var_code in variables:
        var = document.variable(var_code)
        text = document._localized_text(label)
        seeded = [] if isinstance(label, Mapping) else document.languages[1:]

        data = document.data
        others = [c for c in document.variable_codes if c != var_code]
        if others:
            totals = (
                data.groupby(others, sort=False)[FIGURES_COLUMN]
                .sum(min_count=1)
                .reset_index()
            )
        else:
            totals = pd.DataFrame({FIGURES_COLUMN: [data[FIGURES_COLUMN].sum(min_count=1)]})
        totals = totals[totals[FIGURES_COLUMN].notna()].copy()
        totals[var_code] = code

        var.values.insert(0, code)
        var.value_labels[code] = text
        var.elimination = code
        for lang in seeded:
            document.untranslated.add((("VALUES", var_code, code), lang))
        document.data = pd.concat(
            [data, totals[list(data.columns)]], ignore_index=True
        )
        document.sort_data()
        logger.info("Added %d total cells for variable '%s'", len(totals), var_code)
    return document
