import logging

import pytest

from amsf_xbrl.services.section_catalog import (
    SECTIONS,
    SectionCatalog,
    SectionCatalogError,
    section_sort_key,
)


@pytest.fixture
def catalog():
    return SectionCatalog()


def test_sections_follow_questionnaire_order(catalog):
    ids = [s["id"] for s in catalog.sections()]
    assert ids[0] == "1.1"
    assert ids[-1] == "S1"
    assert ids.index("1.2") < ids.index("1.10")
    assert ids.index("1.12") < ids.index("2.1")
    assert ids.index("3.7") < ids.index("C1.1")
    assert ids.index("C1.2") < ids.index("C1.15")
    assert len(ids) == len(SECTIONS)


def test_unknown_ids_sort_last():
    ids = sorted(["S1", "X9", "C1.1", "2.1"], key=section_sort_key)
    assert ids == ["2.1", "C1.1", "S1", "X9"]


def test_section_lookup(catalog):
    assert catalog.section("C1.5") == {
        "id": "C1.5",
        "title": "Training",
        "elements": ["aC1501", "aC1503B"],
    }
    assert catalog.section("9.9") is None


def test_elements_for(catalog):
    assert catalog.elements_for("1.2") == ["a1101", "a1102", "a1103"]
    assert catalog.elements_for("nope") == []


def test_returned_lists_are_copies(catalog):
    catalog.elements_for("1.2").append("zzz")
    catalog.sections()[0]["elements"].append("zzz")
    assert "zzz" not in catalog.elements_for("1.2")
    assert "zzz" not in catalog.sections()[0]["elements"]


def test_section_for_element(catalog):
    assert catalog.section_for_element("a2104B")["id"] == "2.2"
    assert catalog.section_for_element("unknown") is None


def test_all_element_names(catalog):
    names = catalog.all_element_names()
    assert "a1101" in names
    assert "aS1" in names
    assert len(names) == len(set(names))


def test_catalog_matches_sample_taxonomy(catalog, registry):
    assert catalog.missing_elements(registry) == []
    assert catalog.validate(registry) is True


def test_validate_warns_on_missing_elements(registry, caplog):
    catalog = SectionCatalog({"1.1": {"title": "Broken", "elements": ["a1101", "zz1", "zz2"]}})
    with caplog.at_level(logging.WARNING):
        assert catalog.validate(registry) is False
    assert "2 elements not in taxonomy" in caplog.text
    assert "zz1, zz2" in caplog.text


def test_validate_strict_raises(registry):
    catalog = SectionCatalog({"1.1": {"title": "Broken", "elements": ["zz1"]}})
    with pytest.raises(SectionCatalogError) as exc:
        catalog.validate(registry, strict=True)
    assert exc.value.missing == ["zz1"]


def test_validate_skipped_when_registry_not_loaded(registry_factory):
    catalog = SectionCatalog({"1.1": {"title": "Broken", "elements": ["zz1"]}})
    assert catalog.validate(registry_factory()) is True
