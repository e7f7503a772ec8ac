"""
pxcore/classification.py
========================
Classification store: PX-web value sets (.vs) and their aggregations (.agg).

A value set lists the codes of a domain; each aggregation maps every code
to a group. PX-files only reference a classification by its domain name,
so bindings are resolved when the file is written, not when they are made.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, Optional

import pandas as pd

from pxcore.config import CLASSIFICATION_ENCODING, FIGURES_COLUMN
from pxcore.document import Document
from pxcore.errors import (
    DuplicateCodeError,
    IncompleteAggregationError,
    InvalidBindingError,
    UnknownDomainError,
    UnresolvedDomainError,
)
from pxcore.fileio import write_atomic
from pxcore.models import CLASSIFICATION_CODE, CLASSIFICATION_TEXT, Classification, Variable
from pxcore.validator import regroup

logger = logging.getLogger(__name__)

NEWLINE = "\r\n"


# ===========
# Building
# ===========
def build_classification(name: str, prestext: str, domain: str, rows) -> Classification:
    """Validate ``rows`` and build a Classification.

    Args:
        name:     Stem of the exported files.
        prestext: Presentation text.
        domain:   Domain key referenced from PX-files.
        rows:     DataFrame or iterable of mappings with ``valuecode``,
                  optional ``valuetext`` and one column per aggregation.

    Raises:
        DuplicateCodeError:         a valuecode appears twice.
        IncompleteAggregationError: a code has no group in some aggregation.
    """
    if not name or re.search(r'[\\/:*?"<>|]', name):
        raise ValueError(f"Invalid classification name: {name!r}")
    if not domain:
        raise ValueError("Classification domain is empty")
    table = rows.copy() if isinstance(rows, pd.DataFrame) else pd.DataFrame(list(rows))
    if CLASSIFICATION_CODE not in table.columns:
        raise ValueError(f"Classification '{name}' has no '{CLASSIFICATION_CODE}' column")
    if table.empty:
        raise ValueError(f"Classification '{name}' has no rows")

    table[CLASSIFICATION_CODE] = table[CLASSIFICATION_CODE].astype(str).str.strip()
    codes = table[CLASSIFICATION_CODE]
    duplicated = codes[codes.duplicated()].unique().tolist()
    if duplicated:
        raise DuplicateCodeError(name, duplicated)

    if CLASSIFICATION_TEXT not in table.columns:
        table[CLASSIFICATION_TEXT] = codes
    else:
        blank = _blank(table[CLASSIFICATION_TEXT])
        table[CLASSIFICATION_TEXT] = table[CLASSIFICATION_TEXT].where(~blank, codes).astype(str)

    aggregations = [c for c in table.columns if c not in (CLASSIFICATION_CODE, CLASSIFICATION_TEXT)]
    missing = {}
    for agg in aggregations:
        blank = _blank(table[agg])
        if blank.any():
            missing[str(agg)] = codes[blank].tolist()
        table[agg] = table[agg].astype(str).str.strip()
    if missing:
        raise IncompleteAggregationError(name, missing)

    table = table[[CLASSIFICATION_CODE, CLASSIFICATION_TEXT] + aggregations].reset_index(drop=True)
    return Classification(name=name, prestext=prestext, domain=domain, table=table)


def _blank(column: pd.Series) -> pd.Series:
    return column.isna() | (column.astype(str).str.strip() == "")


def aggregate(
    classification: Classification,
    frame: pd.DataFrame,
    column: str,
    aggregation: str,
    value_column: str = FIGURES_COLUMN,
) -> pd.DataFrame:
    """Sum ``frame`` over the groups of one aggregation of ``classification``."""
    mapping = {
        code: group
        for group, members in classification.groups(aggregation).items()
        for code in members
    }
    return regroup(frame, column, mapping, value_column)


# ===========
# Store
# ===========
class ClassificationStore:
    """Classifications by domain. Variables reference them by name only."""

    def __init__(self, classifications: Iterable[Classification] = ()):
        self._by_domain: dict[str, Classification] = {}
        for c in classifications:
            self.add(c)

    def __contains__(self, domain: str) -> bool:
        return domain in self._by_domain

    def __len__(self) -> int:
        return len(self._by_domain)

    @property
    def domains(self) -> list[str]:
        return list(self._by_domain)

    def add(self, classification: Classification) -> Classification:
        if classification.domain in self._by_domain:
            logger.warning("Replacing classification for domain '%s'", classification.domain)
        self._by_domain[classification.domain] = classification
        return classification

    def build(self, name: str, prestext: str, domain: str, rows) -> Classification:
        return self.add(build_classification(name, prestext, domain, rows))

    def get(self, domain: str) -> Classification:
        try:
            return self._by_domain[domain]
        except KeyError:
            raise UnresolvedDomainError(domain) from None

    resolve = get

    def remove(self, domain: str) -> None:
        """Forget a classification; variables bound to it keep the binding."""
        self._by_domain.pop(domain, None)

    def export(self, destination_dir) -> dict[str, tuple[Path, list[Path]]]:
        return {
            domain: export_classification(c, destination_dir)
            for domain, c in self._by_domain.items()
        }

    @classmethod
    def from_directory(cls, path) -> "ClassificationStore":
        """Load every .vs file (with its .agg files) under ``path``."""
        store = cls()
        for vs_path in sorted(Path(path).glob("*.vs")):
            store.add(load_classification(vs_path))
        logger.info("Loaded %d classifications from %s", len(store), path)
        return store


# ===========
# Binding
# ===========
def bind_variable(
    document: Document,
    variable_code: str,
    domain: str,
    store: Optional[ClassificationStore] = None,
) -> Document:
    """Bind a variable of ``document`` to ``domain``.

    With a ``store`` the domain must exist now and match the variable's
    codes. Without one the binding is only recorded; ``serialize`` resolves
    it and fails with UnresolvedDomainError if it is still dangling.
    """
    var = document.variable(variable_code)
    if store is not None:
        if domain not in store:
            raise UnknownDomainError(domain)
        check_binding(var, store.get(domain))
    else:
        logger.info("Variable '%s' bound to domain '%s' (resolved on save)", variable_code, domain)
    var.domain = domain
    return document


def check_binding(var: Variable, classification: Classification) -> None:
    declared = set(var.values)
    missing = [c for c in classification.valuecodes if c not in declared]
    if missing:
        raise InvalidBindingError(var.code, classification.domain, missing)


# ===========
# PX-web artifacts
# ===========
def _slug(text: str) -> str:
    return re.sub(r"[^0-9A-Za-z]+", "_", str(text)).strip("_").lower()


def aggregation_filenames(classification: Classification) -> list[str]:
    """``<name>_<slug>.agg`` per aggregation; the index breaks slug clashes."""
    names, seen = [], set()
    for i, agg in enumerate(classification.aggregations, start=1):
        slug = _slug(agg) or str(i)
        if slug in seen:
            slug = f"{slug}_{i}"
        seen.add(slug)
        names.append(f"{classification.name}_{slug}.agg")
    return names


def _section(title: str, entries) -> list[str]:
    lines = [f"[{title}]"]
    lines.extend(f"{key}={value}" for key, value in entries)
    return lines


def _numbered(values) -> list[tuple[int, str]]:
    return list(enumerate(values, start=1))


def _check_line(text: str, what: str) -> str:
    text = str(text)
    if "\r" in text or "\n" in text:
        raise ValueError(f"{what} cannot contain line breaks: {text!r}")
    return text


def _check_group(text: str) -> str:
    text = _check_line(text, "Group")
    if "[" in text or "]" in text or text in ("Aggreg", "Aggtext"):
        raise ValueError(f"Group label cannot be used as a section name: {text!r}")
    return text


def render_value_set(classification: Classification) -> str:
    lines = _section("Descr", [("Prestext", _check_line(classification.prestext, "Prestext"))])
    lines += _section("Domain", _numbered([classification.domain]))
    lines += _section("Aggreg", _numbered(aggregation_filenames(classification)))
    lines += _section("Valuecode", _numbered(classification.valuecodes))
    lines += _section("Valuetext", _numbered(_check_line(t, "Valuetext") for t in classification.table[CLASSIFICATION_TEXT]))
    return NEWLINE.join(lines) + NEWLINE


def render_aggregation(classification: Classification, aggregation: str) -> str:
    groups = classification.groups(aggregation)
    lines = _section("Aggreg", [
        ("Name", _check_line(aggregation, "Aggregation name")),
        ("Valueset", classification.name),
    ])
    lines += _section("Aggtext", _numbered(_check_group(g) for g in groups))
    for group, members in groups.items():
        lines += _section(group, _numbered(members))
    return NEWLINE.join(lines) + NEWLINE


def export_classification(classification: Classification, destination_dir) -> tuple[Path, list[Path]]:
    """Write ``<name>.vs`` and one ``.agg`` per aggregation.

    Everything is rendered before the first file is written; each file is
    replaced atomically. Output is identical for identical input.

    Returns:
        (value set path, aggregation paths in the order the .vs lists them)
    """
    destination = Path(destination_dir)
    payloads = [(f"{classification.name}.vs", render_value_set(classification))]
    for filename, agg in zip(aggregation_filenames(classification), classification.aggregations):
        payloads.append((filename, render_aggregation(classification, agg)))

    paths = [
        write_atomic(destination / filename, text.encode(CLASSIFICATION_ENCODING))
        for filename, text in payloads
    ]
    logger.info(
        "Exported classification '%s' (%d aggregations) to %s",
        classification.name, len(paths) - 1, destination,
    )
    return paths[0], paths[1:]


def _read_sections(path: Path) -> dict[str, list[tuple[str, str]]]:
    sections: dict[str, list[tuple[str, str]]] = {}
    current = None
    for line in path.read_text(encoding=CLASSIFICATION_ENCODING).splitlines():
        line = line.strip()
        if not line:
            continue
        if line.startswith("[") and line.endswith("]"):
            current = sections.setdefault(line[1:-1], [])
            continue
        if current is None or "=" not in line:
            raise ValueError(f"Unexpected line in {path.name}: {line!r}")
        key, _, value = line.partition("=")
        current.append((key.strip(), value))
    return sections


def load_classification(vs_path) -> Classification:
    """Read a .vs file and the .agg files it lists back into a Classification."""
    vs_path = Path(vs_path)
    sections = _read_sections(vs_path)
    try:
        prestext = dict(sections["Descr"])["Prestext"]
        domain = sections["Domain"][0][1]
        codes = [v for _k, v in sections["Valuecode"]]
    except (KeyError, IndexError):
        raise ValueError(f"{vs_path.name} is not a value set file") from None
    texts = [v for _k, v in sections.get("Valuetext", [])] or codes

    table = pd.DataFrame({CLASSIFICATION_CODE: codes, CLASSIFICATION_TEXT: texts})
    for _key, filename in sections.get("Aggreg", []):
        agg_sections = _read_sections(vs_path.parent / filename)
        name = dict(agg_sections["Aggreg"])["Name"]
        mapping = {}
        for _k, group in agg_sections.get("Aggtext", []):
            for _m, code in agg_sections.get(group, []):
                mapping[code] = group
        table[name] = table[CLASSIFICATION_CODE].map(mapping)
    return build_classification(vs_path.stem, prestext, domain, table)
