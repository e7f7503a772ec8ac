"""
pxcore/pxfile.py
================
PX-file serializer and parser.

Layout written by ``serialize``:

    AXIS-VERSION, CODEPAGE, LANGUAGE, LANGUAGES
    table keywords (keywords.TABLE_KEYWORDS order)
    STUB / HEADING
    VALUES, CODES, VARIABLECODE, DOMAIN, ELIMINATION, NOTE per variable
    DATA

The main language is written without a suffix, other languages as
``KEYWORD[lang]``. Variable subkeys are the variable label in the record's
language.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd

from pxcore import keywords
from pxcore.classification import check_binding
from pxcore.config import (
    AXIS_VERSION,
    CODEPAGE,
    DEFAULT_LANGUAGE,
    FIGURES_COLUMN,
    LEGACY_CODEPAGE,
    LINE_LENGTH,
    MISSING_SYMBOL,
    MISSING_SYMBOLS,
)
from pxcore.document import Document, cell_strides
from pxcore.errors import (
    LanguageMismatchError,
    MalformedHeaderError,
    UnresolvedDomainError,
)
from pxcore.fileio import write_atomic
from pxcore.models import LocalizedText

logger = logging.getLogger(__name__)

NEWLINE = "\r\n"

_HEAD = re.compile(
    r'^(?P<keyword>[A-Z0-9][A-Z0-9-]*)(?:\[(?P<lang>[^\]]*)\])?(?:\((?P<subkey>.*)\))?$',
    re.DOTALL,
)
_CODEPAGE = re.compile(rb'CODEPAGE\s*=\s*"([^"]+)"')


# ===========
# Writing
# ===========
def serialize(document: Document, store=None) -> bytes:
    """Serialize ``document`` to PX bytes.

    Args:
        document: Document to write.
        store:    Classification store used to resolve domain bindings;
                  anything with ``__contains__`` and ``get(domain)``.

    Raises:
        UnresolvedDomainError: a bound domain is not in ``store``.
        InvalidBindingError:   a classification has codes the variable lacks.
        MalformedHeaderError:  a mandatory keyword or the variables are missing.
        ValueError:            text that cannot be represented in PX.
    """
    resolve_domains(document, store)
    _check_header(document)

    languages = document.languages
    main = document.main_language
    lines: list[str] = []

    lines.append(_record("AXIS-VERSION", [AXIS_VERSION]))
    lines.append(_record("CODEPAGE", [CODEPAGE]))
    lines.append(_record("LANGUAGE", [main]))
    if len(languages) > 1:
        lines.append(_record("LANGUAGES", languages))

    for kw in keywords.TABLE_KEYWORDS:
        value = document.fields.get(kw.name)
        if value is None:
            continue
        if kw.language_dependent:
            for lang in languages:
                lines.append(_record(kw.name, [value.get(lang)], language=_suffix(document, lang)))
        else:
            lines.append(_record(kw.name, [value], quoted=kw.quoted))

    for axis, variables in (("STUB", document.stub), ("HEADING", document.heading)):
        if not variables:
            continue
        for lang in languages:
            lines.append(_record(
                axis, [v.label.get(lang) for v in variables], language=_suffix(document, lang)
            ))

    for kw in keywords.VALUE_KEYWORDS + keywords.VARIABLE_KEYWORDS:
        if not kw.emitted:
            continue
        for lang in (languages if kw.language_dependent else [main]):
            for var in document.variables:
                values = _variable_values(kw, var, lang)
                if values is None:
                    continue
                lines.append(_record(
                    kw.name, values, language=_suffix(document, lang), subkey=var.label.get(lang)
                ))

    lines.extend(_data_lines(document))
    text = NEWLINE.join(lines) + NEWLINE
    return text.encode(CODEPAGE)


def write_px(document: Document, path, store=None) -> Path:
    """Serialize and replace ``path`` in one step; nothing is written on error."""
    payload = serialize(document, store)
    path = write_atomic(path, payload)
    logger.info("Wrote %s (%d bytes)", path, len(payload))
    return path


def resolve_domains(document: Document, store) -> None:
    """Check every domain binding of ``document`` against ``store``."""
    for var in document.variables:
        if not var.domain:
            continue
        if store is None or var.domain not in store:
            raise UnresolvedDomainError(var.domain, var.code)
        check_binding(var, store.get(var.domain))


def _check_header(document: Document) -> None:
    missing = [k for k in keywords.mandatory_table_keywords() if k not in document.fields]
    if missing:
        raise MalformedHeaderError(f"Missing mandatory keywords: {', '.join(missing)}")
    if not document.variables:
        raise MalformedHeaderError("Document has no variables (STUB/HEADING)")
    for lang in document.languages:
        labels = [v.label.get(lang) for v in document.variables]
        if len(set(labels)) != len(labels):
            raise ValueError(f"Variable labels are not unique in language '{lang}': {labels}")


def _suffix(document: Document, language: str) -> Optional[str]:
    return None if language == document.main_language else language


def _variable_values(kw: keywords.Keyword, var, language: str) -> Optional[list[str]]:
    if kw.name == "VALUES":
        return [var.value_labels[c].get(language) for c in var.values]
    if kw.name == "CODES":
        return list(var.values)
    if kw.name == "ELIMINATION":
        return [var.value_labels[var.elimination].get(language)] if var.elimination else None
    value = getattr(var, kw.attribute)
    if value is None:
        return None
    if isinstance(value, LocalizedText):
        return [value.get(language)]
    return [str(value)]


def _quote(text: str) -> str:
    text = str(text)
    if '"' in text:
        raise ValueError(f"PX text cannot contain double quotes: {text!r}")
    # room for the quotes and a trailing ',' or ';'
    width = LINE_LENGTH - 3
    if len(text) <= width:
        return f'"{text}"'
    chunks = [text[i:i + width] for i in range(0, len(text), width)]
    return NEWLINE.join(f'"{chunk}"' for chunk in chunks)


def _record(
    keyword: str,
    values: list,
    language: Optional[str] = None,
    subkey: Optional[str] = None,
    quoted: bool = True,
) -> str:
    head = keyword
    if language:
        head += f"[{language}]"
    if subkey is not None:
        head += f"({_quote(subkey)})"
    items = [_quote(v) if quoted else str(v) for v in values]
    if not quoted and any(re.search(r'[\s,;"]', item) for item in items):
        raise ValueError(f"Unquoted value of {keyword} must be a single token: {items}")

    lines = []
    current = head + "="
    for i, item in enumerate(items):
        piece = item + ("," if i < len(items) - 1 else "")
        first, *rest = piece.split(NEWLINE)
        if current and len(current) + len(first) > LINE_LENGTH:
            lines.append(current)
            current = ""
        if rest:
            lines.append(current + first)
            lines.extend(rest[:-1])
            current = rest[-1]
        else:
            current += first
    lines.append(current + ";")
    return NEWLINE.join(lines)


def _format_number(value: float) -> str:
    if np.isnan(value):
        return f'"{MISSING_SYMBOL}"'
    if float(value).is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(float(value))


def _data_lines(document: Document) -> list[str]:
    _strides, size = cell_strides(document.variables)
    cells = np.full(size, np.nan)
    if len(document.data):
        figures = pd.to_numeric(document.data[FIGURES_COLUMN], errors="coerce").to_numpy(dtype=float)
        cells[document.cell_index()] = figures
    width = 1
    for var in document.heading:
        width *= len(var.values)
    lines = ["DATA="]
    for row in cells.reshape(-1, width):
        lines.append(" ".join(_format_number(v) for v in row))
    lines[-1] += ";"
    return lines


# ===========
# Reading
# ===========
def read_px(path) -> Document:
    return parse(Path(path).read_bytes())


def parse(data: bytes) -> Document:
    """Parse PX bytes into a Document.

    Raises:
        MalformedHeaderError:  missing mandatory keyword or unreadable record.
        LanguageMismatchError: a ``[lang]`` suffix not declared in LANGUAGES.
    """
    text = _decode(data)
    records: dict[tuple, str] = {}
    data_body = None
    for raw in _split_records(text):
        keyword, language, subkey, body = _split_record(raw)
        if keyword == "DATA":
            data_body = body
            continue
        records[(keyword, language, subkey)] = body

    def values(keyword, language=None, subkey=None):
        body = records.get((keyword, language, subkey))
        return None if body is None else _tokens(body)

    languages = values("LANGUAGES")
    main = (values("LANGUAGE") or (languages or [None]))[0]
    if main is None:
        main = DEFAULT_LANGUAGE
    languages = languages or [main]
    if main not in languages:
        raise MalformedHeaderError(f"LANGUAGE '{main}' is not listed in LANGUAGES {languages}")
    for keyword, language, _subkey in records:
        if language is not None and language not in languages:
            raise LanguageMismatchError(keyword, language)

    def localized(keyword, subkeys=None):
        """LocalizedText of ``keyword``, falling back to the main language."""
        subkeys = subkeys or {}
        main_values = values(keyword, None, subkeys.get(main)) or values(keyword, main, subkeys.get(main))
        if main_values is None:
            return None, []
        texts, missing = {}, []
        for lang in languages:
            found = main_values if lang == main else values(keyword, lang, subkeys.get(lang))
            if found is None:
                found = main_values
                missing.append(lang)
            texts[lang] = found
        return texts, missing

    missing_keywords = [
        k for k in keywords.mandatory_table_keywords()
        if (k, None, None) not in records and (k, main, None) not in records
    ]
    if missing_keywords:
        raise MalformedHeaderError(f"Missing mandatory keywords: {', '.join(missing_keywords)}")
    if data_body is None:
        raise MalformedHeaderError("Missing mandatory keywords: DATA")

    document = Document(main)
    document.languages = list(languages)
    document.fields = {}
    untranslated = set()
    for kw in keywords.TABLE_KEYWORDS:
        if kw.language_dependent:
            texts, missing = localized(kw.name)
            if texts is None:
                continue
            document.fields[kw.name] = LocalizedText({lang: _join(v) for lang, v in texts.items()})
            untranslated.update(((kw.name,), lang) for lang in missing)
        else:
            found = values(kw.name) or values(kw.name, main)
            if found is not None:
                document.fields[kw.name] = _join(found)

    _read_variables(document, localized, values, untranslated)
    _read_data(document, data_body)
    document.untranslated = untranslated
    return document


def _read_variables(document, localized, values, untranslated) -> None:
    main = document.main_language
    axes, missing_labels = {}, set()
    for axis in keywords.AXES:
        texts, missing = localized(axis)
        axes[axis] = texts or {lang: [] for lang in document.languages}
        missing_labels.update(missing)
    labels = {lang: axes["STUB"][lang] + axes["HEADING"][lang] for lang in document.languages}
    count = len(labels[main])
    if count == 0:
        raise MalformedHeaderError("Missing mandatory keywords: STUB or HEADING")
    for lang, names in labels.items():
        if len(names) != count:
            raise MalformedHeaderError(f"STUB/HEADING[{lang}] lists {len(names)} variables, expected {count}")
    stub_count = len(axes["STUB"][main])

    for i in range(count):
        subkeys = {lang: labels[lang][i] for lang in document.languages}
        main_label = subkeys[main]
        codes = values("CODES", None, main_label)
        value_texts, missing_values = localized("VALUES", subkeys)
        if value_texts is None:
            raise MalformedHeaderError(f'Missing mandatory keywords: VALUES("{main_label}")')
        codes = codes or value_texts[main]
        for lang, texts in value_texts.items():
            if len(texts) != len(codes):
                raise MalformedHeaderError(
                    f'VALUES[{lang}]("{subkeys[lang]}") has {len(texts)} entries, expected {len(codes)}'
                )
        code = _join(values("VARIABLECODE", None, main_label) or [main_label])
        var = document.add_variable(
            code,
            codes,
            label=subkeys,
            value_labels={
                c: {lang: value_texts[lang][j] for lang in document.languages}
                for j, c in enumerate(codes)
            },
            placement="stub" if i < stub_count else "heading",
        )
        for c in codes:
            untranslated.update((("VALUES", code, c), lang) for lang in missing_values)
        untranslated.update(((keywords.LABEL, code), lang) for lang in missing_labels)

        domain = values("DOMAIN", None, main_label)
        var.domain = _join(domain) if domain else None
        elimination = values("ELIMINATION", None, main_label)
        if elimination:
            by_label = {value_texts[main][j]: c for j, c in enumerate(codes)}
            var.elimination = by_label.get(_join(elimination))
            if var.elimination is None:
                logger.warning("ELIMINATION of '%s' does not name one of its values", code)
        note_texts, missing_note = localized("NOTE", subkeys)
        if note_texts is not None:
            var.note = LocalizedText({lang: _join(v) for lang, v in note_texts.items()})
            untranslated.update((("NOTE", code), lang) for lang in missing_note)


def _read_data(document: Document, body: str) -> None:
    strides, size = cell_strides(document.variables)
    tokens = re.findall(r'"[^"]*"|[^\s,;]+', body)
    if len(tokens) != size:
        raise MalformedHeaderError(f"DATA has {len(tokens)} cells, expected {size}")
    cells = np.empty(size, dtype=float)
    for i, token in enumerate(tokens):
        if token.startswith('"') or token in MISSING_SYMBOLS:
            symbol = token.strip('"')
            if symbol not in MISSING_SYMBOLS:
                raise MalformedHeaderError(f"Unknown data symbol {token} in DATA")
            cells[i] = np.nan
            continue
        try:
            cells[i] = float(token)
        except ValueError:
            raise MalformedHeaderError(f"Non-numeric value {token!r} in DATA") from None

    observed = np.flatnonzero(~np.isnan(cells))
    columns = {}
    for var, stride in zip(document.variables, strides):
        positions = (observed // stride) % len(var.values)
        columns[var.code] = np.asarray(var.values, dtype=object)[positions]
    figures = cells[observed]
    if len(figures) and np.all(np.mod(figures, 1) == 0):
        figures = figures.astype(np.int64)
    columns[FIGURES_COLUMN] = figures
    document.data = pd.DataFrame(columns, columns=document.variable_codes + [FIGURES_COLUMN])


# ===========
# Tokenizing
# ===========
def _decode(data: bytes) -> str:
    if data.startswith(b"\xef\xbb\xbf"):
        data = data[3:]
    match = _CODEPAGE.search(data)
    encoding = match.group(1).decode("ascii", "replace") if match else LEGACY_CODEPAGE
    try:
        return data.decode(encoding)
    except (LookupError, UnicodeDecodeError) as exc:
        raise MalformedHeaderError(f"Cannot decode PX-file as {encoding}: {exc}") from None


def _split_records(text: str) -> list[str]:
    """Split on ';' outside quoted strings."""
    records, current, quoted = [], [], False
    for ch in text:
        if ch == '"':
            quoted = not quoted
        if ch == ";" and not quoted:
            record = "".join(current).strip()
            if record:
                records.append(record)
            current = []
            continue
        current.append(ch)
    if "".join(current).strip():
        raise MalformedHeaderError("Last record is not terminated by ';'")
    return records


def _split_record(raw: str) -> tuple[str, Optional[str], Optional[str], str]:
    quoted = False
    for i, ch in enumerate(raw):
        if ch == '"':
            quoted = not quoted
        elif ch == "=" and not quoted:
            head, body = raw[:i].strip(), raw[i + 1:]
            break
    else:
        raise MalformedHeaderError(f"Record without '=': {raw[:60]!r}")
    match = _HEAD.match(head)
    if match is None:
        raise MalformedHeaderError(f"Unreadable keyword: {head[:60]!r}")
    subkey = match.group("subkey")
    if subkey is not None:
        subkey = ",".join(_tokens(subkey))
    language = match.group("lang") or None
    return match.group("keyword"), language, subkey, body


def _tokens(body: str) -> list[str]:
    """Values of a record; adjacent quoted strings are concatenated."""
    out: list[str] = []
    i, n = 0, len(body)
    joinable = False
    while i < n:
        ch = body[i]
        if ch.isspace():
            i += 1
        elif ch == ",":
            joinable = False
            i += 1
        elif ch == '"':
            end = body.find('"', i + 1)
            if end < 0:
                raise MalformedHeaderError(f"Unterminated string in {body[:60]!r}")
            text = body[i + 1:end]
            if joinable:
                out[-1] += text
            else:
                out.append(text)
            joinable = True
            i = end + 1
        else:
            match = re.match(r'[^\s,"]+', body[i:])
            out.append(match.group(0))
            joinable = False
            i += match.end()
    return out


def _join(values: list[str]) -> str:
    return ",".join(values)
