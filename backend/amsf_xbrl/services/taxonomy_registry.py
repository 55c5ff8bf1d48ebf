"""
Taxonomy Registry

Parses the AMSF strix taxonomy files (schema, label linkbase, presentation
linkbase) into TaxonomyElement records. This is the single source of truth
for element types, labels, sections and ordering.

The registry is constructed explicitly at application startup and loaded
once; concurrent first callers block on the same load. `reload()` re-parses
and swaps the new snapshot in atomically.
"""

from __future__ import annotations

import logging
import threading
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

import yaml

from amsf_xbrl.models.taxonomy_element import ELEMENT_TYPES, TaxonomyElement
from amsf_xbrl.utils.logging import ReportLogger

logger = logging.getLogger(__name__)
report_logger = ReportLogger(__name__)

XLINK_NS = "http://www.w3.org/1999/xlink"

SCHEMA_FILE = "strix_Real_Estate_AML_CFT_survey_2025.xsd"
LABEL_FILE = "strix_Real_Estate_AML_CFT_survey_2025_lab.xml"
PRESENTATION_FILE = "strix_Real_Estate_AML_CFT_survey_2025_pre.xml"

# Declared item types with a direct mapping
TYPE_MAPPINGS = {
    "xbrli:integerItemType": "integer",
    "xbrli:monetaryItemType": "monetary",
    "xbrli:stringItemType": "string",
    "xbrli:pureItemType": "decimal",
}

# Enumeration values that mark a yes/no element
BOOLEAN_ENUM_VALUES = ("Oui", "Yes")

DECIMAL_RESTRICTION_BASES = ("xbrli:pureItemType", "xbrli:decimalItemType")

# a1103 is the only dimensional element in the strix taxonomy (per-country
# breakdown). The taxonomy files carry no parseable marker for it.
DIMENSIONAL_ELEMENTS = frozenset(["a1103"])

LOCATOR_PREFIX = "strix_"

DEFAULT_SECTION = "General"


class TaxonomyLoadError(Exception):
    """Raised when taxonomy files cannot be loaded or parsed."""

    def __init__(self, message: str, file_path: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.file_path = file_path
        self.cause = cause


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if isinstance(tag, str) else ""


def _xlink(el: ET.Element, name: str) -> Optional[str]:
    return el.get(f"{{{XLINK_NS}}}{name}") or el.get(name)


def _text(el: ET.Element) -> str:
    return "".join(el.itertext()).strip()


def _strip_locator(ref: Optional[str]) -> str:
    ref = ref or ""
    return ref[len(LOCATOR_PREFIX):] if ref.startswith(LOCATOR_PREFIX) else ref


def section_name_from_role(role_uri: str) -> str:
    """
    Readable section name from a presentation role URI.

    e.g. ".../role/Link_NoCountryDimension" -> "NoCountryDimension",
         ".../role/Link_Tab_1_Customers" -> "Tab 1 Customers"
    """
    marker = "/Link_"
    idx = (role_uri or "").rfind(marker)
    if idx < 0:
        return DEFAULT_SECTION
    raw = role_uri[idx + len(marker):]
    name = raw.replace("_", " ").strip()
    return name or DEFAULT_SECTION


@dataclass
class _ElementBuilder:
    """Mutable partial record filled in by the three parse passes."""
    name: str
    type: str
    dimensional: bool
    label: Optional[str] = None
    verbose_label: Optional[str] = None
    section: Optional[str] = None
    order: int = 0

    def build(self) -> TaxonomyElement:
        return TaxonomyElement(
            name=self.name,
            type=self.type,
            label=self.label,
            verbose_label=self.verbose_label,
            section=self.section,
            order=self.order,
            dimensional=self.dimensional,
        )


@dataclass(frozen=True)
class _Snapshot:
    by_name: Mapping[str, TaxonomyElement]
    ordered: Tuple[TaxonomyElement, ...]
    by_section: Mapping[str, Tuple[TaxonomyElement, ...]]
    short_labels: Mapping[str, str] = field(default_factory=dict)


class TaxonomyRegistry:
    """
    Element registry for one taxonomy version.

    Usage:
        registry = TaxonomyRegistry(Path("taxonomy")).load()
        registry.element("a1101")        # => TaxonomyElement or None
        registry.elements()              # => all elements in presentation order
        registry.elements_by_section()   # => {section: (elements...)}
    """

    def __init__(
        self,
        taxonomy_dir: Path,
        schema_file: str = SCHEMA_FILE,
        label_file: str = LABEL_FILE,
        presentation_file: str = PRESENTATION_FILE,
        short_labels_file: Optional[Path] = None,
        type_overrides_file: Optional[Path] = None,
        version: str = "2025",
    ):
        self.taxonomy_dir = Path(taxonomy_dir)
        self.schema_file = schema_file
        self.label_file = label_file
        self.presentation_file = presentation_file
        self.short_labels_file = Path(short_labels_file) if short_labels_file else None
        self.type_overrides_file = Path(type_overrides_file) if type_overrides_file else None
        self.version = version
        self._lock = threading.Lock()
        self._snapshot: Optional[_Snapshot] = None

    @classmethod
    def from_settings(cls, taxonomy_settings) -> "TaxonomyRegistry":
        return cls(
            taxonomy_dir=taxonomy_settings.resolve(taxonomy_settings.dir),
            schema_file=taxonomy_settings.schema_file,
            label_file=taxonomy_settings.label_file,
            presentation_file=taxonomy_settings.presentation_file,
            short_labels_file=taxonomy_settings.resolve(taxonomy_settings.short_labels_file),
            type_overrides_file=taxonomy_settings.resolve(taxonomy_settings.type_overrides_file),
            version=taxonomy_settings.version,
        )

    # === Loading ===

    def load(self) -> "TaxonomyRegistry":
        """Parse the taxonomy once. Raises TaxonomyLoadError on bad files."""
        if self._snapshot is not None:
            return self
        with self._lock:
            if self._snapshot is None:
                self._snapshot = self._parse()
        return self

    def reload(self) -> "TaxonomyRegistry":
        """Force a re-parse (development/testing); readers keep the old snapshot until the swap."""
        with self._lock:
            self._snapshot = self._parse()
        return self

    @property
    def is_loaded(self) -> bool:
        return self._snapshot is not None

    # === Lookup ===

    def element(self, name: str) -> Optional[TaxonomyElement]:
        snap = self._snapshot
        if snap is None or not name:
            return None
        return snap.by_name.get(name)

    def __contains__(self, name: str) -> bool:
        return self.element(name) is not None

    def elements(self) -> List[TaxonomyElement]:
        snap = self._snapshot
        return list(snap.ordered) if snap else []

    def elements_by_name(self) -> Mapping[str, TaxonomyElement]:
        snap = self._snapshot
        return snap.by_name if snap else MappingProxyType({})

    def elements_by_section(self) -> Dict[str, List[TaxonomyElement]]:
        snap = self._snapshot
        if snap is None:
            return {}
        return {section: list(items) for section, items in snap.by_section.items()}

    def short_label(self, name: str) -> str:
        """Manual short label, falling back to a humanized element name."""
        snap = self._snapshot
        if snap is not None and name in snap.short_labels:
            return snap.short_labels[name]
        return name.replace("_", " ").capitalize()

    def dimensional_elements(self) -> List[TaxonomyElement]:
        return [el for el in self.elements() if el.dimensional]

    # === Parsing ===

    def _parse(self) -> _Snapshot:
        started = time.time()
        type_overrides = self._load_type_overrides()

        builders: Dict[str, _ElementBuilder] = {}
        self._parse_schema(builders, type_overrides)
        self._parse_labels(builders)
        self._parse_presentation(builders)

        ordered = tuple(sorted((b.build() for b in builders.values()), key=lambda e: (e.order, e.name)))
        by_section: Dict[str, List[TaxonomyElement]] = {}
        for el in ordered:
            by_section.setdefault(el.section or DEFAULT_SECTION, []).append(el)

        snapshot = _Snapshot(
            by_name=MappingProxyType({el.name: el for el in ordered}),
            ordered=ordered,
            by_section=MappingProxyType({k: tuple(v) for k, v in by_section.items()}),
            short_labels=MappingProxyType(self._load_short_labels()),
        )
        report_logger.log_taxonomy_loaded(
            str(self.taxonomy_dir), len(ordered), int((time.time() - started) * 1000)
        )
        return snapshot

    def _load_xml(self, filename: str) -> ET.Element:
        path = self.taxonomy_dir / filename
        if not path.exists():
            raise TaxonomyLoadError(f"Taxonomy file not found: {filename}", file_path=str(path))
        try:
            return ET.parse(path).getroot()
        except ET.ParseError as e:
            raise TaxonomyLoadError(
                f"Invalid XML in taxonomy file: {filename} - {e}", file_path=str(path), cause=e
            ) from e
        except OSError as e:
            raise TaxonomyLoadError(
                f"Cannot read taxonomy file: {filename} - {e}", file_path=str(path), cause=e
            ) from e

    def _parse_schema(self, builders: Dict[str, _ElementBuilder], type_overrides: Mapping[str, str]) -> None:
        root = self._load_xml(self.schema_file)
        for el in root:
            if _local(el.tag) != "element":
                continue
            if (el.get("abstract") or "false").lower() == "true":
                continue
            name = (el.get("name") or "").strip()
            if not name:
                continue
            builders[name] = _ElementBuilder(
                name=name,
                type=type_overrides.get(name) or self.determine_type(el),
                dimensional=name in DIMENSIONAL_ELEMENTS,
            )

    @staticmethod
    def determine_type(element_node: ET.Element) -> str:
        """
        Infer the element type.

        Precedence: declared item type, then a yes/no enumeration (boolean),
        then a pure/decimal restriction (decimal), then string.
        """
        declared = element_node.get("type")
        if declared and declared in TYPE_MAPPINGS:
            return TYPE_MAPPINGS[declared]

        for node in element_node.iter():
            if _local(node.tag) == "enumeration" and node.get("value") in BOOLEAN_ENUM_VALUES:
                return "boolean"

        for node in element_node.iter():
            if _local(node.tag) == "restriction" and node.get("base") in DECIMAL_RESTRICTION_BASES:
                return "decimal"

        return "string"

    def _parse_labels(self, builders: Dict[str, _ElementBuilder]) -> None:
        root = self._load_xml(self.label_file)

        labels: Dict[str, str] = {}
        verbose_labels: Dict[str, str] = {}
        for node in root.iter():
            if _local(node.tag) != "label":
                continue
            label_id = _xlink(node, "label")
            if not label_id:
                continue
            role = _xlink(node, "role") or ""
            if "verboseLabel" in role:
                verbose_labels[label_id] = _text(node)
            else:
                labels[label_id] = _text(node)

        for arc in root.iter():
            if _local(arc.tag) != "labelArc":
                continue
            builder = builders.get(_strip_locator(_xlink(arc, "from")))
            if builder is None:
                continue
            to = _xlink(arc, "to")
            if to in labels:
                builder.label = labels[to]
            verbose = verbose_labels.get(to)
            if verbose is not None:
                builder.verbose_label = verbose
            elif builder.verbose_label is None:
                builder.verbose_label = builder.label

    def _parse_presentation(self, builders: Dict[str, _ElementBuilder]) -> None:
        root = self._load_xml(self.presentation_file)

        # Not reset per link, so the final sort is stable across sections
        global_order = 0
        for link in root.iter():
            if _local(link.tag) != "presentationLink":
                continue
            section = section_name_from_role(_xlink(link, "role") or "")
            for arc in link.iter():
                if _local(arc.tag) != "presentationArc":
                    continue
                builder = builders.get(_strip_locator(_xlink(arc, "to")))
                if builder is None:
                    continue
                global_order += 1
                builder.section = section
                builder.order = global_order

    # === Override tables ===

    def _load_yaml_table(self, path: Optional[Path], what: str) -> Dict[str, str]:
        if path is None or not path.exists():
            return {}
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh) or {}
        except (yaml.YAMLError, OSError) as e:
            logger.warning(f"Failed to parse {what} YAML {path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring {what} file {path}: expected a mapping")
            return {}
        return {str(k): str(v) for k, v in data.items() if v is not None}

    def _load_short_labels(self) -> Dict[str, str]:
        return self._load_yaml_table(self.short_labels_file, "short labels")

    def _load_type_overrides(self) -> Dict[str, str]:
        overrides = {}
        for name, type_name in self._load_yaml_table(self.type_overrides_file, "type overrides").items():
            if type_name not in ELEMENT_TYPES:
                logger.warning(f"Ignoring type override {name}={type_name}: unknown type")
                continue
            overrides[name] = type_name
        return overrides


def load_registry_for_startup(registry: TaxonomyRegistry, production: bool) -> bool:
    """
    Startup policy: a load failure is fatal in production and a warning
    otherwise. Returns True when the registry loaded.
    """
    try:
        registry.load()
        return True
    except TaxonomyLoadError as e:
        logger.error(f"Failed to load XBRL taxonomy: {e}", extra={"file_path": e.file_path})
        if production:
            raise
        return False
