"""
pxcore/languages.py
===================
Language set of a Document.

Every language-scoped field holds text for exactly the active languages.
Languages can be added or reordered, never removed: removing one would
throw away translated text.
"""
from __future__ import annotations

import logging
from typing import Optional, Sequence

from pxcore.document import Document
from pxcore.errors import InvalidLanguageTransitionError

logger = logging.getLogger(__name__)


def get_languages(document: Document) -> list[str]:
    return list(document.languages)


def main_language(document: Document) -> str:
    return document.main_language


def set_languages(document: Document, codes: Sequence[str], primary: str) -> Document:
    """Replace the language set of ``document``.

    Args:
        document: Document to update in place.
        codes:    New languages; must include every current language.
        primary:  Main language, moved to the front.

    Returns:
        The same document. Each added language is seeded in every
        LocalizedText with the current main language's text and the seeded
        entries are recorded in ``document.untranslated``.

    Raises:
        InvalidLanguageTransitionError: empty set, duplicates, primary not
            listed, or a current language missing.
    """
    codes = [str(c) for c in codes]
    if not codes:
        raise InvalidLanguageTransitionError("At least one language is required")
    if len(set(codes)) != len(codes):
        raise InvalidLanguageTransitionError(f"Duplicated languages in {codes}")
    if primary not in codes:
        raise InvalidLanguageTransitionError(
            f"Main language '{primary}' is not among {codes}"
        )
    removed = [lang for lang in document.languages if lang not in codes]
    if removed:
        raise InvalidLanguageTransitionError(
            f"Languages cannot be removed: {removed}"
        )

    ordered = [primary] + [c for c in codes if c != primary]
    added = [lang for lang in ordered if lang not in document.languages]
    source = document.main_language

    seeded = 0
    for path, text in document.localized_fields():
        for lang in added:
            text.extend(lang, source)
            document.untranslated.add((path, lang))
            seeded += 1
        text.texts = {lang: text.texts[lang] for lang in ordered}
    document.languages = ordered

    if added:
        logger.info(
            "Added languages %s; %d fields seeded from '%s' need translation",
            added, seeded, source,
        )
    return document


def untranslated_fields(document: Document, language: Optional[str] = None) -> list[tuple]:
    """Sorted (path, language) pairs a translator still has to review."""
    pending = [
        (path, lang) for path, lang in document.untranslated
        if language is None or lang == language
    ]
    return sorted(pending, key=lambda item: (tuple(str(p) for p in item[0]), item[1]))
