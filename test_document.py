"""
test_document.py
================
Unit tests for the PX Document model: microdata aggregation, totals,
metadata fields and data layout.
Run with: pytest -v
"""
from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from pxcore.config import FIGURES_COLUMN
from pxcore.document import Document, add_totals, cell_strides, from_microdata, natural_sort
from pxcore.errors import UnknownLanguageError
from pxcore.languages import set_languages
from pxcore.models import LocalizedText


# ===========================================================================
# Fixtures
# ===========================================================================

@pytest.fixture
def microdata() -> pd.DataFrame:
    """Six persons; region 03 has no women, so one combination is unobserved."""
    return pd.DataFrame({
        "region": ["01", "01", "02", "02", "02", "03"],
        "sex": ["1", "2", "1", "1", "2", "1"],
        "income": [100, 200, 300, 400, 500, 600],
    })


@pytest.fixture
def document(microdata) -> Document:
    return from_microdata(microdata, ["region", "sex"], language="en")


def cell(document: Document, *codes):
    frame = document.data.set_index(document.variable_codes)[FIGURES_COLUMN]
    return frame.loc[codes if len(codes) > 1 else codes[0]]


# ===========================================================================
# 1. Helpers
# ===========================================================================

class TestHelpers:

    @pytest.mark.parametrize("values,expected", [
        (["10", "9", "1"], ["1", "9", "10"]),
        (["b", "a", "10"], ["10", "a", "b"]),
        (["2023", "2021"], ["2021", "2023"]),
        (["2", "nan", "1", "10"], ["1", "10", "2", "nan"]),
        (["inf", "3", "1"], ["1", "3", "inf"]),
    ])
    def test_natural_sort(self, values, expected):
        assert natural_sort(values) == expected

    def test_cell_strides(self, document):
        strides, size = cell_strides(document.variables)
        assert strides == [2, 1]
        assert size == 6


# ===========================================================================
# 2. from_microdata
# ===========================================================================

class TestFromMicrodata:

    def test_counts_observed_combinations(self, document):
        assert len(document.data) == 5
        assert cell(document, "02", "1") == 2
        assert cell(document, "01", "2") == 1

    def test_unobserved_combination_absent(self, document):
        rows = set(zip(document.data["region"], document.data["sex"]))
        assert ("03", "2") not in rows

    def test_variables_and_placement(self, document):
        assert document.variable_codes == ["region", "sex"]
        assert [v.code for v in document.stub] == ["region"]
        assert [v.code for v in document.heading] == ["sex"]
        assert document.variable("region").values == ["01", "02", "03"]

    def test_rows_in_cross_product_order(self, document):
        assert list(document.cell_index()) == sorted(document.cell_index())

    def test_set_key_follows_column_order(self, microdata):
        doc = from_microdata(microdata, {"sex", "region"})
        assert doc.variable_codes == ["region", "sex"]

    def test_single_variable_stays_in_stub(self, microdata):
        doc = from_microdata(microdata, ["sex"])
        assert doc.heading == []
        assert doc.data[FIGURES_COLUMN].tolist() == [4, 2]

    def test_missing_column(self, microdata):
        with pytest.raises(KeyError, match="age"):
            from_microdata(microdata, ["region", "age"])

    def test_empty_key(self, microdata):
        with pytest.raises(ValueError, match="empty"):
            from_microdata(microdata, [])

    def test_rows_with_missing_key_dropped(self, microdata):
        microdata.loc[0, "sex"] = np.nan
        doc = from_microdata(microdata, ["region", "sex"])
        assert int(doc.data[FIGURES_COLUMN].sum()) == 5

    def test_numeric_codes_become_strings(self):
        doc = from_microdata(pd.DataFrame({"year": [2021, 2020, 2021]}), ["year"])
        assert doc.variable("year").values == ["2020", "2021"]
        assert doc.data["year"].tolist() == ["2020", "2021"]


# ===========================================================================
# 3. add_totals
# ===========================================================================

class TestAddTotals:

    def test_total_sums_other_codes(self, document):
        add_totals(document, "region")
        assert cell(document, "Total", "1") == 4
        assert cell(document, "Total", "2") == 2

    def test_total_code_first_and_elimination(self, document):
        add_totals(document, "region")
        var = document.variable("region")
        assert var.values[0] == "Total"
        assert var.elimination == "Total"

    def test_grand_total(self, document):
        add_totals(document, ["region", "sex"])
        assert cell(document, "Total", "Total") == 6
        assert cell(document, "02", "Total") == 3
        assert cell(document, "03", "Total") == 1
        first = document.data.iloc[0]
        assert (first["region"], first["sex"]) == ("Total", "Total")

    def test_each_total_equals_sum_of_its_group(self, document):
        add_totals(document, "sex")
        data = document.data
        details = data[data["sex"] != "Total"].groupby("region")[FIGURES_COLUMN].sum()
        totals = data[data["sex"] == "Total"].set_index("region")[FIGURES_COLUMN]
        for region, total in totals.items():
            assert total == details[region]

    def test_duplicate_total_code(self, document):
        add_totals(document, "region")
        with pytest.raises(ValueError, match="already has value code"):
            add_totals(document, "region")

    @pytest.mark.parametrize("variables,error", [
        (["region", "nope"], KeyError),
        (["region", "region"], ValueError),
    ])
    def test_failure_changes_nothing(self, document, variables, error):
        before = document.copy()
        with pytest.raises(error):
            add_totals(document, variables)
        assert document.variable("region").values == ["01", "02", "03"]
        assert document.variable("region").elimination is None
        assert document.equals(before)

    def test_existing_code_on_later_variable_changes_nothing(self, document):
        add_totals(document, "sex")
        before = document.copy()
        with pytest.raises(ValueError, match="already has value code"):
            add_totals(document, ["region", "sex"])
        assert "Total" not in document.variable("region").values
        assert document.equals(before)

    def test_custom_label_per_language(self, document):
        set_languages(document, ["en", "sv"], "en")
        add_totals(document, "sex", code="T", label={"en": "Both sexes", "sv": "Båda könen"})
        labels = document.variable("sex").value_labels["T"]
        assert labels.to_dict() == {"en": "Both sexes", "sv": "Båda könen"}
        assert (("VALUES", "sex", "T"), "sv") not in document.untranslated

    def test_plain_label_marks_other_languages(self, document):
        set_languages(document, ["en", "sv"], "en")
        add_totals(document, "sex")
        assert (("VALUES", "sex", "Total"), "sv") in document.untranslated


# ===========================================================================
# 4. Metadata fields
# ===========================================================================

class TestSetField:

    @pytest.fixture
    def bilingual(self, document) -> Document:
        set_languages(document, ["en", "sv"], "en")
        return document

    def test_plain_string_seeds_all_languages(self, bilingual):
        bilingual.set_field("TITLE", "Population")
        assert bilingual.get_field("TITLE", "sv") == "Population"
        assert (("TITLE",), "sv") in bilingual.untranslated
        assert (("TITLE",), "en") not in bilingual.untranslated

    def test_partial_update_keeps_other_languages(self, bilingual):
        bilingual.set_field("TITLE", {"en": "Population", "sv": "Befolkning"})
        bilingual.set_field("TITLE", {"sv": "Folkmängd"})
        assert bilingual.get_field("TITLE") == "Population"
        assert bilingual.get_field("TITLE", "sv") == "Folkmängd"

    def test_supplying_language_marks_it_reviewed(self, bilingual):
        bilingual.set_field("TITLE", "Population")
        bilingual.set_field("TITLE", {"sv": "Befolkning"})
        assert (("TITLE",), "sv") not in bilingual.untranslated

    def test_unknown_language_changes_nothing(self, bilingual):
        bilingual.set_field("TITLE", "Population")
        before = (bilingual.fields["TITLE"], set(bilingual.untranslated))
        with pytest.raises(UnknownLanguageError, match="fi"):
            bilingual.set_field("TITLE", {"sv": "Befolkning", "fi": "Väestö"})
        assert (bilingual.fields["TITLE"], bilingual.untranslated) == before

    def test_language_independent_rejects_mapping(self, bilingual):
        with pytest.raises(ValueError, match="language independent"):
            bilingual.set_field("MATRIX", {"en": "BE0101"})

    def test_localized_text_value(self, bilingual):
        bilingual.set_field("TITLE", "Pop")
        bilingual.set_field("TITLE", LocalizedText({"en": "Population", "sv": "Befolkning"}))
        assert bilingual.get_field("TITLE", "en") == "Population"
        assert bilingual.get_field("TITLE", "sv") == "Befolkning"
        assert (("TITLE",), "sv") not in bilingual.untranslated

    def test_language_independent_rejects_localized_text(self, bilingual):
        with pytest.raises(ValueError, match="language independent"):
            bilingual.set_field("MATRIX", LocalizedText({"en": "BE0101", "sv": "BE0101"}))
        assert bilingual.get_field("MATRIX") is None

    @pytest.mark.parametrize("value", [None, {"sv": None}])
    def test_none_text_rejected(self, bilingual, value):
        bilingual.set_field("TITLE", "Population")
        with pytest.raises(ValueError, match="got None"):
            bilingual.set_field("TITLE", value)
        assert bilingual.get_field("TITLE", "en") == "Population"
        assert bilingual.get_field("TITLE", "sv") == "Population"

    def test_language_independent_value(self, bilingual):
        bilingual.set_field("MATRIX", "BE0101")
        assert bilingual.get_field("MATRIX") == "BE0101"

    def test_unknown_keyword(self, bilingual):
        with pytest.raises(ValueError, match="Unknown table keyword"):
            bilingual.set_field("FOO", "bar")

    def test_structural_keyword_rejected(self, bilingual):
        with pytest.raises(ValueError, match="derived"):
            bilingual.set_field("VARIABLECODE", "reg", variable="region")

    def test_variable_label(self, bilingual):
        bilingual.set_field("LABEL", {"sv": "region (län)"}, variable="region")
        assert bilingual.get_field("LABEL", "sv", variable="region") == "region (län)"
        assert bilingual.get_field("LABEL", "en", variable="region") == "region"

    def test_value_label(self, bilingual):
        bilingual.set_field("VALUES", {"en": "Stockholm"}, variable="region", code="01")
        assert bilingual.get_field("VALUES", variable="region", code="01") == "Stockholm"

    def test_value_label_unknown_code(self, bilingual):
        with pytest.raises(KeyError, match="99"):
            bilingual.set_field("VALUES", "x", variable="region", code="99")

    def test_variable_note_first_assignment(self, bilingual):
        bilingual.set_field("NOTE", "Provisional", variable="region")
        assert bilingual.variable("region").note.to_dict() == {"en": "Provisional", "sv": "Provisional"}
        assert (("NOTE", "region"), "sv") in bilingual.untranslated

    def test_elimination_must_be_a_value(self, bilingual):
        with pytest.raises(KeyError, match="Total"):
            bilingual.set_field("ELIMINATION", "Total", variable="region")


# ===========================================================================
# 5. Structure and data layout
# ===========================================================================

class TestStructure:

    def test_add_variable_after_data(self, document):
        with pytest.raises(ValueError, match="before data"):
            document.add_variable("age", ["0-14", "15-64"])

    @pytest.mark.parametrize("code,values,match", [
        ("region", ["x"], "already exists"),
        ("figures", ["x"], "reserved"),
        ("age", [], "no values"),
        ("age", ["1", "1"], "duplicated"),
    ])
    def test_add_variable_rejects(self, code, values, match):
        doc = Document()
        doc.add_variable("region", ["01"])
        with pytest.raises(ValueError, match=match):
            doc.add_variable(code, values)

    def test_default_labels_are_codes(self):
        doc = Document()
        var = doc.add_variable("age", [0, 15])
        assert var.values == ["0", "15"]
        assert var.label.to_dict() == {"en": "age"}
        assert var.value_labels["15"].get("en") == "15"

    def test_heading_variables_follow_stub(self):
        doc = Document()
        doc.add_variable("year", ["2020"], placement="heading")
        doc.add_variable("region", ["01"])
        assert doc.variable_codes == ["region", "year"]

    def test_pivot(self, document):
        document.pivot(["sex"], ["region"])
        assert document.variable_codes == ["sex", "region"]
        assert [v.code for v in document.heading] == ["region"]
        first = document.data.iloc[0]
        assert (first["sex"], first["region"]) == ("1", "01")

    def test_cell_index_rejects_undeclared(self, document):
        frame = pd.DataFrame({"region": ["04"], "sex": ["1"], FIGURES_COLUMN: [1]})
        with pytest.raises(ValueError, match="Undeclared codes"):
            document.cell_index(frame)

    def test_sort_data_rejects_duplicate_cells(self, document):
        document.data = pd.concat([document.data, document.data.iloc[[0]]], ignore_index=True)
        with pytest.raises(ValueError, match="same cell"):
            document.sort_data()

    def test_copy_is_independent(self, document):
        clone = document.copy()
        clone.set_field("TITLE", "Changed")
        assert "TITLE" not in document.fields
        assert clone.equals(clone.copy())
        assert not clone.equals(document)
