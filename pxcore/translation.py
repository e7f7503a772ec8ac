"""
pxcore/translation.py
=====================
Spreadsheet interchange for translators.

``export_for_translation`` writes the metadata of a Document to an xlsx
workbook (one column per language, seeded cells highlighted);
``import_from_translation`` reads the edited workbook back into a Document
with the same structure and the translated texts. Data rows travel
separately (``attach_data``).

Sheets:
    Settings      languages and main language
    Table         keyword, one column per language
    Variables     code, placement, domain, elimination, label[lang], note[lang]
    Values        variable, code, one column per language
    Untranslated  keyword, variable, code, language still to review
    Data          (optional) variable codes + figures
"""
from __future__ import annotations

import io
import logging
from typing import Optional, Union

import numpy as np
import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils.dataframe import dataframe_to_rows

from pxcore import keywords
from pxcore.config import FIGURES_COLUMN
from pxcore.document import Document
from pxcore.models import LocalizedText

logger = logging.getLogger(__name__)

SETTINGS_SHEET = "Settings"
TABLE_SHEET = "Table"
VARIABLES_SHEET = "Variables"
VALUES_SHEET = "Values"
UNTRANSLATED_SHEET = "Untranslated"
DATA_SHEET = "Data"

UNTRANSLATED_FILL = PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid")

_PATH_COLUMNS = ["keyword", "variable", "code", "language"]


# ===========
# Excel (format)
# ===========
def write_sheet(ws, df: pd.DataFrame, highlight=()) -> None:
    """Write ``df`` with a bold header and fitted widths.

    ``highlight`` holds (row position, column name) pairs to fill.
    """
    for r in dataframe_to_rows(df, index=False, header=True):
        ws.append(r)
    for cell in ws[1]:
        cell.font = Font(bold=True)
    for col in ws.columns:
        max_len = max((len(str(cell.value)) if cell.value is not None else 0) for cell in col)
        ws.column_dimensions[col[0].column_letter].width = min(max(10, max_len + 2), 45)
    columns = list(df.columns)
    for row, name in highlight:
        ws.cell(row=row + 2, column=columns.index(name) + 1).fill = UNTRANSLATED_FILL


def _label_column(prefix: str, language: str) -> str:
    return f"{prefix}[{language}]"


# ===========
# Export
# ===========
def export_for_translation(document: Document, include_data: bool = False) -> bytes:
    """Metadata of ``document`` as xlsx bytes.

    Args:
        document:     Document to export.
        include_data: Also write the ``Data`` sheet.
    """
    languages = document.languages
    pending = document.untranslated

    settings = pd.DataFrame({
        "setting": ["languages", "main_language"],
        "value": [",".join(languages), document.main_language],
    })

    table_rows, table_marks = [], []
    for kw in keywords.TABLE_KEYWORDS:
        value = document.fields.get(kw.name)
        if value is None:
            continue
        row = {"keyword": kw.name}
        if isinstance(value, LocalizedText):
            for lang in languages:
                row[lang] = value.get(lang)
                if ((kw.name,), lang) in pending:
                    table_marks.append((len(table_rows), lang))
        else:
            row.update({lang: "" for lang in languages})
            row[document.main_language] = value
        table_rows.append(row)
    table = pd.DataFrame(table_rows, columns=["keyword"] + languages)

    var_rows, var_marks, value_rows, value_marks = [], [], [], []
    var_columns = ["code", "placement", "domain", "elimination"]
    var_columns += [_label_column("label", lang) for lang in languages]
    var_columns += [_label_column("note", lang) for lang in languages]
    for var in document.variables:
        row = {
            "code": var.code,
            "placement": var.placement,
            "domain": var.domain or "",
            "elimination": var.elimination or "",
        }
        for lang in languages:
            row[_label_column("label", lang)] = var.label.get(lang)
            row[_label_column("note", lang)] = var.note.get(lang) if var.note is not None else ""
            if ((keywords.LABEL, var.code), lang) in pending:
                var_marks.append((len(var_rows), _label_column("label", lang)))
            if (("NOTE", var.code), lang) in pending:
                var_marks.append((len(var_rows), _label_column("note", lang)))
        var_rows.append(row)

        for code in var.values:
            row = {"variable": var.code, "code": code}
            for lang in languages:
                row[lang] = var.value_labels[code].get(lang)
                if (("VALUES", var.code, code), lang) in pending:
                    value_marks.append((len(value_rows), lang))
            value_rows.append(row)
    variables = pd.DataFrame(var_rows, columns=var_columns)
    values = pd.DataFrame(value_rows, columns=["variable", "code"] + languages)

    untranslated = pd.DataFrame(
        [_path_row(path, lang) for path, lang in sorted(pending, key=_path_key)],
        columns=_PATH_COLUMNS,
    )

    wb = Workbook()
    ws0 = wb.active
    ws0.title = SETTINGS_SHEET
    write_sheet(ws0, settings)
    write_sheet(wb.create_sheet(title=TABLE_SHEET), table, table_marks)
    write_sheet(wb.create_sheet(title=VARIABLES_SHEET), variables, var_marks)
    write_sheet(wb.create_sheet(title=VALUES_SHEET), values, value_marks)
    write_sheet(wb.create_sheet(title=UNTRANSLATED_SHEET), untranslated)
    if include_data:
        data = document.data[document.variable_codes + [FIGURES_COLUMN]]
        write_sheet(wb.create_sheet(title=DATA_SHEET), data)

    bio = io.BytesIO()
    wb.save(bio)
    bio.seek(0)
    logger.info(
        "Exported %d fields for translation (%d to review)",
        len(table) + len(variables) + len(values), len(pending),
    )
    return bio.getvalue()


def _path_row(path: tuple, language: str) -> dict:
    variable = path[1] if len(path) > 1 else ""
    code = path[2] if len(path) > 2 else ""
    return {"keyword": path[0], "variable": variable, "code": code, "language": language}


def _path_key(item):
    path, lang = item
    return tuple(str(p) for p in path), lang


# ===========
# Import
# ===========
def _read_sheets(data: bytes) -> dict[str, pd.DataFrame]:
    try:
        return pd.read_excel(
            io.BytesIO(data), sheet_name=None, engine="openpyxl",
            dtype=str, keep_default_na=False,
        )
    except Exception as e:
        raise ValueError(f"Cannot read translation workbook: {e}") from e


def _texts(row: pd.Series, columns: dict[str, str], main: str):
    """(language -> text, languages that fell back to the main text).

    Returns (None, []) when every language is blank.
    """
    found = {lang: str(row.get(col, "")).strip() for lang, col in columns.items()}
    seed = found.get(main) or next((t for t in found.values() if t), "")
    if not seed:
        return None, []
    missing = [lang for lang, text in found.items() if not text]
    return {lang: text or seed for lang, text in found.items()}, missing


def import_from_translation(data: bytes) -> Document:
    """Rebuild a Document (structure and metadata, no data rows) from xlsx bytes.

    Blank cells fall back to the main-language text and are recorded as
    untranslated, so a partially translated workbook never blanks a field.
    Entries of the ``Untranslated`` sheet are kept while their text still
    equals the main-language text.

    Raises:
        ValueError: unreadable workbook or missing sheets/columns.
    """
    sheets = _read_sheets(data)
    missing = [s for s in (SETTINGS_SHEET, TABLE_SHEET, VARIABLES_SHEET, VALUES_SHEET) if s not in sheets]
    if missing:
        raise ValueError(f"Translation workbook lacks sheets: {missing}")

    settings = dict(zip(sheets[SETTINGS_SHEET]["setting"], sheets[SETTINGS_SHEET]["value"]))
    languages = [lang.strip() for lang in settings.get("languages", "").split(",") if lang.strip()]
    main = settings.get("main_language", "").strip() or (languages[0] if languages else "")
    if not languages or main not in languages:
        raise ValueError(f"Invalid language settings: languages={languages}, main={main!r}")
    ordered = [main] + [lang for lang in languages if lang != main]

    document = Document(main)
    document.languages = ordered
    document.fields = {}
    untranslated = set()

    table = sheets[TABLE_SHEET]
    for _, row in table.iterrows():
        kw = keywords.lookup(str(row["keyword"]).strip(), keywords.TABLE)
        if not kw.language_dependent:
            value = str(row.get(main, "")).strip()
            if value:
                document.fields[kw.name] = value
            continue
        texts, fallback = _texts(row, {lang: lang for lang in ordered}, main)
        if texts is None:
            continue
        document.fields[kw.name] = LocalizedText(texts)
        untranslated.update(((kw.name,), lang) for lang in fallback)

    values = sheets[VALUES_SHEET]
    for _, row in sheets[VARIABLES_SHEET].iterrows():
        code = str(row["code"]).strip()
        var_values = values[values["variable"].astype(str).str.strip() == code]
        if var_values.empty:
            raise ValueError(f"Variable '{code}' has no rows in the {VALUES_SHEET} sheet")

        label, fallback = _texts(row, {lang: _label_column("label", lang) for lang in ordered}, main)
        untranslated.update(((keywords.LABEL, code), lang) for lang in fallback)
        value_labels = {}
        for _, value_row in var_values.iterrows():
            value_code = str(value_row["code"]).strip()
            texts, fallback = _texts(value_row, {lang: lang for lang in ordered}, main)
            value_labels[value_code] = texts if texts is not None else value_code
            untranslated.update((("VALUES", code, value_code), lang) for lang in fallback)

        var = document.add_variable(
            code,
            list(value_labels),
            label=label,
            value_labels=value_labels,
            placement=str(row.get("placement", "stub")).strip() or "stub",
        )
        note, fallback = _texts(row, {lang: _label_column("note", lang) for lang in ordered}, main)
        if note is not None:
            var.note = LocalizedText(note)
            untranslated.update((("NOTE", code), lang) for lang in fallback)
        var.domain = str(row.get("domain", "")).strip() or None
        elimination = str(row.get("elimination", "")).strip() or None
        if elimination is not None and elimination not in var.values:
            raise ValueError(f"Elimination '{elimination}' is not a value of '{code}'")
        var.elimination = elimination

    document.untranslated = untranslated | _still_untranslated(
        document, sheets.get(UNTRANSLATED_SHEET)
    )
    logger.info(
        "Imported translation: %d languages, %d variables, %d fields to review",
        len(ordered), len(document.variables), len(document.untranslated),
    )
    return document


def _still_untranslated(document: Document, sheet: Optional[pd.DataFrame]) -> set:
    """Listed entries whose text is still the main-language seed."""
    if sheet is None or sheet.empty:
        return set()
    texts = dict(document.localized_fields())
    main = document.main_language
    out = set()
    for _, row in sheet.iterrows():
        path = tuple(
            p for p in (str(row["keyword"]), str(row["variable"]), str(row["code"])) if p
        )
        lang = str(row["language"])
        text = texts.get(path)
        if text is None or lang not in text.texts or lang == main:
            continue
        if text.get(lang) == text.get(main):
            out.add((path, lang))
    return out


# ===========
# Data
# ===========
def read_data_sheet(data: bytes) -> pd.DataFrame:
    """The ``Data`` sheet as a DataFrame (codes as text, numeric figures)."""
    sheets = _read_sheets(data)
    if DATA_SHEET not in sheets:
        raise ValueError(f"Workbook has no {DATA_SHEET} sheet")
    frame = sheets[DATA_SHEET]
    if FIGURES_COLUMN not in frame.columns:
        raise ValueError(f"{DATA_SHEET} sheet has no '{FIGURES_COLUMN}' column")
    frame[FIGURES_COLUMN] = pd.to_numeric(frame[FIGURES_COLUMN].replace("", np.nan), errors="coerce")
    return frame[frame[FIGURES_COLUMN].notna()].reset_index(drop=True)


def attach_data(document: Document, data_source: Union[pd.DataFrame, Document]) -> Document:
    """Replace the data rows of ``document`` with those of ``data_source``.

    ``data_source`` is a DataFrame with one column per variable code plus
    ``figures``, or another Document. Codes must be declared in
    ``document``; nothing changes if they are not.
    """
    frame = data_source.data if isinstance(data_source, Document) else data_source
    columns = document.variable_codes + [FIGURES_COLUMN]
    missing = [c for c in columns if c not in frame.columns]
    if missing:
        raise ValueError(f"Data source lacks columns: {missing}")

    candidate = frame[columns].copy()
    for code in document.variable_codes:
        candidate[code] = candidate[code].astype(str)
    candidate[FIGURES_COLUMN] = pd.to_numeric(candidate[FIGURES_COLUMN], errors="coerce")
    candidate = candidate[candidate[FIGURES_COLUMN].notna()].reset_index(drop=True)

    index = document.cell_index(candidate)
    if len(np.unique(index)) != len(index):
        raise ValueError("Data source holds more than one row for the same cell")
    document.data = candidate.iloc[np.argsort(index, kind="stable")].reset_index(drop=True)
    logger.info("Attached %d data rows", len(document.data))
    return document
