import shutil
import threading
import xml.etree.ElementTree as ET
from pathlib import Path

import pytest

from amsf_xbrl.services.taxonomy_registry import (
    DIMENSIONAL_ELEMENTS,
    LABEL_FILE,
    PRESENTATION_FILE,
    SCHEMA_FILE,
    TaxonomyLoadError,
    TaxonomyRegistry,
    load_registry_for_startup,
    section_name_from_role,
)

TAXONOMY_DIR = Path(__file__).resolve().parents[2] / "taxonomy"
CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"

XS = 'xmlns:xs="http://www.w3.org/2001/XMLSchema"'


def make_registry() -> TaxonomyRegistry:
    return TaxonomyRegistry(
        TAXONOMY_DIR,
        short_labels_file=CONFIG_DIR / "xbrl_short_labels.yaml",
        type_overrides_file=CONFIG_DIR / "xbrl_type_overrides.yaml",
    )


def _copy_taxonomy(dest: Path) -> Path:
    for name in (SCHEMA_FILE, LABEL_FILE, PRESENTATION_FILE):
        shutil.copy(TAXONOMY_DIR / name, dest / name)
    return dest


class TestLoading:
    def test_loads_every_concrete_element(self, registry):
        names = [el.name for el in registry.elements()]
        assert len(names) == 30
        assert "a1101" in names
        assert not any(name.startswith("Abstract_") for name in names)

    def test_elements_sorted_by_presentation_order(self, registry):
        orders = [el.order for el in registry.elements()]
        assert orders == sorted(orders)
        assert registry.elements()[0].name == "aACTIVE"
        assert registry.elements()[-1].name == "aS1"

    def test_lookup_before_load_is_absent(self):
        fresh = make_registry()
        assert fresh.is_loaded is False
        assert fresh.element("a1101") is None
        assert fresh.elements() == []

    def test_unknown_element_is_absent(self, registry):
        assert registry.element("zz_not_there") is None
        assert registry.element("") is None
        assert "zz_not_there" not in registry

    def test_elements_by_name(self, registry):
        by_name = registry.elements_by_name()
        assert by_name["a2104B"].is_monetary


class TestTypes:
    @pytest.mark.parametrize("name,expected", [
        ("a1101", "integer"),
        ("a2104B", "monetary"),
        ("a2201", "boolean"),
        ("aACTIVE", "boolean"),
        ("aC1811", "decimal"),
        ("aS1", "string"),
        ("a2202", "string"),  # overridden from integer
    ])
    def test_type_inference(self, registry, name, expected):
        assert registry.element(name).type == expected

    def test_declared_type_without_override_table(self):
        plain = TaxonomyRegistry(TAXONOMY_DIR).load()
        assert plain.element("a2202").type == "integer"

    def test_enumeration_with_yes_is_boolean(self):
        node = ET.fromstring(
            f'<xs:element {XS} name="x"><xs:complexType><xs:simpleContent>'
            '<xs:restriction base="xbrli:stringItemType"><xs:enumeration value="Yes"/>'
            '</xs:restriction></xs:simpleContent></xs:complexType></xs:element>'
        )
        assert TaxonomyRegistry.determine_type(node) == "boolean"

    def test_declared_type_wins_over_enumeration(self):
        node = ET.fromstring(
            f'<xs:element {XS} name="x" type="xbrli:integerItemType">'
            '<xs:simpleType><xs:restriction><xs:enumeration value="Oui"/></xs:restriction></xs:simpleType>'
            '</xs:element>'
        )
        assert TaxonomyRegistry.determine_type(node) == "integer"

    def test_unknown_declared_type_falls_back_to_string(self):
        node = ET.fromstring(f'<xs:element {XS} name="x" type="xbrli:dateItemType"/>')
        assert TaxonomyRegistry.determine_type(node) == "string"

    def test_unknown_override_type_is_ignored(self, tmp_path):
        overrides = tmp_path / "overrides.yaml"
        overrides.write_text("a1101: currency\na2104B: string\n")
        reg = TaxonomyRegistry(TAXONOMY_DIR, type_overrides_file=overrides).load()
        assert reg.element("a1101").type == "integer"
        assert reg.element("a2104B").type == "string"

    def test_malformed_override_yaml_is_ignored(self, tmp_path, caplog):
        overrides = tmp_path / "overrides.yaml"
        overrides.write_text("a1101: [unclosed\n")
        reg = TaxonomyRegistry(TAXONOMY_DIR, type_overrides_file=overrides).load()
        assert reg.element("a1101").type == "integer"
        assert "type overrides" in caplog.text


class TestLabelsAndSections:
    def test_standard_label(self, registry):
        assert registry.element("a1101").label == "Nombre total de clients"

    def test_verbose_label_is_stripped_for_display(self, registry):
        el = registry.element("a1101")
        assert "<b>" in el.verbose_label
        assert el.verbose_label_text == (
            "Veuillez indiquer le nombre total de clients actifs au cours de la période."
        )
        assert el.tooltip_label == el.verbose_label_text

    def test_verbose_label_falls_back_to_standard(self, registry):
        el = registry.element("a1502")
        assert el.verbose_label == el.label == "Bénéficiaires effectifs PPE"

    def test_section_from_role(self, registry):
        assert registry.element("a1101").section == "Tab 1 Customer Risk"
        assert registry.element("a2104B").section == "Tab 2 Products Services Risk"
        assert registry.element("aS1").section == "Tab 5 Signatories"

    def test_order_counter_is_global(self, registry):
        # Second link continues numbering after the first
        assert registry.element("a14801").order == 11
        assert registry.element("a2101B").order == 12

    def test_elements_by_section_preserves_order(self, registry):
        sections = registry.elements_by_section()
        assert list(sections)[0] == "Tab 1 Customer Risk"
        assert [el.name for el in sections["Tab 3 Distribution Risk"]] == ["a3101"]

    @pytest.mark.parametrize("role,expected", [
        ("http://amsf.mc/fr/taxonomy/strix/role/Link_NoCountryDimension", "NoCountryDimension"),
        ("http://amsf.mc/fr/taxonomy/strix/role/Link_Tab_4_Controls", "Tab 4 Controls"),
        ("http://www.xbrl.org/2003/role/link", "General"),
        ("", "General"),
    ])
    def test_section_name_from_role(self, role, expected):
        assert section_name_from_role(role) == expected


class TestDimensionalAndLabels:
    def test_only_country_breakdown_is_dimensional(self, registry):
        assert [el.name for el in registry.dimensional_elements()] == ["a1103"]
        assert DIMENSIONAL_ELEMENTS == {"a1103"}

    def test_short_label_from_table(self, registry):
        assert registry.short_label("a1101") == "Total clients"

    def test_short_label_fallback_humanizes(self, registry):
        assert registry.short_label("some_element_name") == "Some element name"


class TestFailures:
    def test_missing_file_raises(self, tmp_path):
        reg = TaxonomyRegistry(tmp_path)
        with pytest.raises(TaxonomyLoadError) as exc:
            reg.load()
        assert exc.value.file_path.endswith(SCHEMA_FILE)
        assert reg.is_loaded is False

    def test_invalid_xml_raises_with_cause(self, tmp_path):
        _copy_taxonomy(tmp_path)
        (tmp_path / LABEL_FILE).write_text("<link:linkbase><unclosed>")
        with pytest.raises(TaxonomyLoadError) as exc:
            TaxonomyRegistry(tmp_path).load()
        assert exc.value.cause is not None
        assert "Invalid XML" in str(exc.value)

    def test_startup_policy_is_fatal_in_production(self, tmp_path):
        with pytest.raises(TaxonomyLoadError):
            load_registry_for_startup(TaxonomyRegistry(tmp_path), production=True)

    def test_startup_policy_continues_in_development(self, tmp_path):
        assert load_registry_for_startup(TaxonomyRegistry(tmp_path), production=False) is False
        assert load_registry_for_startup(make_registry(), production=False) is True


class TestConcurrency:
    def test_concurrent_first_load_parses_once(self):
        reg = make_registry()
        original_parse = reg._parse
        calls = []

        def counting_parse():
            calls.append(threading.get_ident())
            return original_parse()

        reg._parse = counting_parse
        barrier = threading.Barrier(8)
        seen = []

        def worker():
            barrier.wait()
            reg.load()
            seen.append(reg.element("a1101"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(calls) == 1
        assert len(seen) == 8
        assert all(el is seen[0] for el in seen)

    def test_reload_swaps_snapshot(self, tmp_path):
        _copy_taxonomy(tmp_path)
        reg = TaxonomyRegistry(tmp_path).load()
        before = reg.element("a1101")

        lab = tmp_path / LABEL_FILE
        lab.write_text(lab.read_text(encoding="utf-8").replace(
            "Nombre total de clients<", "Total des clients<"), encoding="utf-8")

        reg.load()
        assert reg.element("a1101") is before
        reg.reload()
        assert reg.element("a1101").label == "Total des clients"
