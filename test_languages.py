"""
test_languages.py
=================
Tests for the language set of a Document.
"""
from __future__ import annotations

import pandas as pd
import pytest

from pxcore.document import Document, from_microdata
from pxcore.errors import InvalidLanguageTransitionError
from pxcore.languages import get_languages, main_language, set_languages, untranslated_fields


@pytest.fixture
def document() -> Document:
    doc = from_microdata(
        pd.DataFrame({"region": ["01", "02", "02"], "year": ["2020", "2020", "2021"]}),
        ["region", "year"],
    )
    doc.set_field("TITLE", "Population by region")
    doc.set_field("NOTE", "Provisional figures", variable="region")
    return doc


def all_texts(document: Document):
    return [text for _path, text in document.localized_fields()]


class TestSetLanguages:

    def test_adds_language_everywhere(self, document):
        set_languages(document, ["en", "sv"], "en")
        assert get_languages(document) == ["en", "sv"]
        for text in all_texts(document):
            assert text.languages == ["en", "sv"]
            assert text.get("sv") == text.get("en")

    def test_new_language_never_blank(self, document):
        set_languages(document, ["en", "sv", "fi"], "en")
        for text in all_texts(document):
            assert all(text.get(lang) for lang in ("sv", "fi"))

    def test_seeded_fields_recorded(self, document):
        set_languages(document, ["en", "sv"], "en")
        pending = untranslated_fields(document, "sv")
        assert ((("TITLE",), "sv")) in pending
        assert ((("LABEL", "region"), "sv")) in pending
        assert ((("NOTE", "region"), "sv")) in pending
        assert ((("VALUES", "year", "2021"), "sv")) in pending
        assert untranslated_fields(document, "en") == []

    def test_worklist_is_sorted(self, document):
        set_languages(document, ["en", "sv"], "en")
        pending = untranslated_fields(document)
        assert pending == sorted(pending, key=lambda item: (tuple(item[0]), item[1]))

    def test_primary_moves_first(self, document):
        set_languages(document, ["en", "sv"], "sv")
        assert main_language(document) == "sv"
        assert document.fields["TITLE"].languages == ["sv", "en"]
        assert document.get_field("TITLE") == "Population by region"

    def test_reorder_keeps_texts(self, document):
        set_languages(document, ["en", "sv"], "en")
        document.set_field("TITLE", {"sv": "Folkmängd per region"})
        set_languages(document, ["sv", "en"], "sv")
        assert document.get_field("TITLE") == "Folkmängd per region"
        assert document.get_field("TITLE", "en") == "Population by region"

    def test_existing_translation_untouched(self, document):
        set_languages(document, ["en", "sv"], "en")
        document.set_field("TITLE", {"sv": "Folkmängd"})
        set_languages(document, ["en", "sv", "fi"], "en")
        assert document.get_field("TITLE", "sv") == "Folkmängd"
        assert document.get_field("TITLE", "fi") == "Population by region"

    def test_same_set_is_a_no_op(self, document):
        set_languages(document, ["en"], "en")
        assert get_languages(document) == ["en"]
        assert document.untranslated == set()

    @pytest.mark.parametrize("codes,primary,match", [
        ([], "en", "At least one"),
        (["en", "sv", "sv"], "en", "Duplicated"),
        (["en", "sv"], "fi", "not among"),
        (["sv"], "sv", "cannot be removed"),
    ])
    def test_invalid_transitions(self, document, codes, primary, match):
        with pytest.raises(InvalidLanguageTransitionError, match=match):
            set_languages(document, codes, primary)

    def test_failed_transition_changes_nothing(self, document):
        with pytest.raises(InvalidLanguageTransitionError):
            set_languages(document, ["sv"], "sv")
        assert get_languages(document) == ["en"]
        assert document.fields["TITLE"].languages == ["en"]

    def test_new_document_uses_given_language(self):
        assert main_language(Document("sv")) == "sv"
