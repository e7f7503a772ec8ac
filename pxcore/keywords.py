"""
pxcore/keywords.py
==================
Declared PX keyword set.

The serializer and the parser walk these tables; adding a table-level
keyword only needs a new ``Keyword`` entry here.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

TABLE = "table"
VARIABLE = "variable"
VALUE = "value"

# Pseudo keyword addressing a variable label (written through STUB/HEADING)
LABEL = "LABEL"


@dataclass(frozen=True)
class Keyword:
    """A PX keyword.

    Attributes:
        name:               Keyword as written in the file.
        scope:              TABLE, VARIABLE (subkey = variable) or VALUE.
        language_dependent: Repeated once per language with a [lang] suffix.
        mandatory:          Required both to serialize and to parse.
        quoted:             Value written as a quoted string.
        attribute:          Variable attribute holding the value.
        emitted:            False for fields carried by another keyword.
    """
    name: str
    scope: str = TABLE
    language_dependent: bool = True
    mandatory: bool = False
    quoted: bool = True
    attribute: Optional[str] = None
    emitted: bool = True


# Written in this order, before STUB/HEADING.
TABLE_KEYWORDS = [
    Keyword("CREATION-DATE", language_dependent=False),
    Keyword("TABLEID", language_dependent=False),
    Keyword("DECIMALS", language_dependent=False, mandatory=True, quoted=False),
    Keyword("SHOWDECIMALS", language_dependent=False, quoted=False),
    Keyword("MATRIX", language_dependent=False, mandatory=True),
    Keyword("OFFICIAL-STATISTICS", language_dependent=False, quoted=False),
    Keyword("SUBJECT-CODE", language_dependent=False, mandatory=True),
    Keyword("SUBJECT-AREA", mandatory=True),
    Keyword("DESCRIPTION"),
    Keyword("TITLE", mandatory=True),
    Keyword("CONTENTS", mandatory=True),
    Keyword("UNITS", mandatory=True),
    Keyword("UPDATE-FREQUENCY"),
    Keyword("LAST-UPDATED", language_dependent=False),
    Keyword("CONTACT"),
    Keyword("REFPERIOD"),
    Keyword("SOURCE"),
    Keyword("INFOFILE"),
    Keyword("NOTE"),
]

# Written after STUB/HEADING, once per variable.
VALUE_KEYWORDS = [
    Keyword("VALUES", VALUE, mandatory=True),
    Keyword("CODES", VALUE, language_dependent=False),
]

VARIABLE_KEYWORDS = [
    Keyword(LABEL, VARIABLE, attribute="label", emitted=False),
    Keyword("VARIABLECODE", VARIABLE, language_dependent=False, attribute="code"),
    Keyword("DOMAIN", VARIABLE, language_dependent=False, attribute="domain"),
    Keyword("ELIMINATION", VARIABLE, language_dependent=False, attribute="elimination"),
    Keyword("NOTE", VARIABLE, attribute="note"),
]

AXES = ("STUB", "HEADING")

KEYWORDS = TABLE_KEYWORDS + VALUE_KEYWORDS + VARIABLE_KEYWORDS

# Set only by the model itself
STRUCTURAL = {"VARIABLECODE", "CODES"}

_INDEX = {(k.name, k.scope): k for k in KEYWORDS}


def lookup(name: str, scope: str = TABLE) -> Keyword:
    """Return the keyword ``name`` declared for ``scope``."""
    try:
        return _INDEX[(name.upper(), scope)]
    except KeyError:
        raise ValueError(f"Unknown {scope} keyword: {name}") from None


def mandatory_table_keywords() -> list[str]:
    return [k.name for k in TABLE_KEYWORDS if k.mandatory]
