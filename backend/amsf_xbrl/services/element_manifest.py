"""
Element Manifest

Read-side view joining taxonomy metadata with the stored values of one
submission, plus the pluggable field-definition/visibility collaborator.

Usage:
    manifest = ElementManifest.for_submission(registry, submission)
    manifest.value_for("a1101")              # => "42"
    manifest.element_with_value("a1101")     # => ElementValue or None
    manifest.all_elements_with_values()      # => stored values in presentation order
"""

import json
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Union

import yaml

from amsf_xbrl.models.constants import (
    SOURCE_CALCULATED,
    SOURCE_FROM_SETTINGS,
    SOURCE_MANUAL,
    is_truthy_token,
    to_yes_no,
)
from amsf_xbrl.models.records import Submission, SubmissionValue
from amsf_xbrl.models.taxonomy_element import TaxonomyElement

logger = logging.getLogger(__name__)


# === Field definitions ===

class FieldDefinitionProvider(Protocol):
    """Questionnaire definition collaborator (labels, gating rules)."""

    def field_definition(self, name: str) -> Optional[Dict[str, Any]]:
        ...

    def visibility(self, name: str, data: Mapping[str, Any]) -> bool:
        ...


class PermissiveFieldDefinitions:
    """No definitions; every field is visible."""

    def field_definition(self, name: str) -> Optional[Dict[str, Any]]:
        return None

    def visibility(self, name: str, data: Mapping[str, Any]) -> bool:
        return True


class YamlFieldDefinitions:
    """
    Field definitions for one questionnaire year, read from YAML.

    File layout:
        2025:
          aC1102:
            label: "Compliance officer"
            depends_on: {field: aACTIVE, equals: "Yes"}
          a2202:
            depends_on: {field: a2201, in: ["Yes", "Oui"]}

    A field whose controlling answer is missing is hidden.
    """

    def __init__(self, definitions: Optional[Dict[str, Dict[str, Any]]] = None):
        self.definitions = definitions or {}

    @classmethod
    def from_file(cls, path: Union[str, Path], year: int) -> "YamlFieldDefinitions":
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Field definitions unavailable ({path}): {e}")
            return cls({})

        if not isinstance(data, dict):
            logger.warning(f"Ignoring field definitions file {path}: expected a mapping")
            return cls({})

        year_defs = data.get(year, data.get(str(year))) or {}
        if not isinstance(year_defs, dict):
            return cls({})
        return cls({str(k): (v or {}) for k, v in year_defs.items()})

    def field_definition(self, name: str) -> Optional[Dict[str, Any]]:
        return self.definitions.get(name)

    def visibility(self, name: str, data: Mapping[str, Any]) -> bool:
        definition = self.definitions.get(name) or {}
        rule = definition.get("depends_on")
        if not rule:
            return True

        controlling = data.get(rule.get("field"))
        if controlling is None or str(controlling).strip() == "":
            return False
        if "equals" in rule:
            return str(controlling) == str(rule["equals"])
        if "in" in rule:
            return str(controlling) in [str(v) for v in (rule["in"] or [])]
        return True


# === Element value ===

@dataclass(frozen=True)
class ElementValue:
    """Element metadata together with its stored row (if any)."""

    element: TaxonomyElement
    row: Optional[SubmissionValue] = None

    @property
    def name(self) -> str:
        return self.element.name

    @property
    def value(self) -> Optional[str]:
        return self.row.value if self.row is not None else None

    @property
    def source(self) -> Optional[str]:
        return self.row.source if self.row is not None else None

    @property
    def is_calculated(self) -> bool:
        return self.source == SOURCE_CALCULATED

    @property
    def is_from_settings(self) -> bool:
        return self.source == SOURCE_FROM_SETTINGS

    @property
    def is_manual(self) -> bool:
        return self.source == SOURCE_MANUAL

    @property
    def is_overridden(self) -> bool:
        return bool(self.row is not None and self.row.overridden)

    @property
    def is_confirmed(self) -> bool:
        return bool(self.row is not None and self.row.confirmed_at is not None)

    @property
    def needs_review(self) -> bool:
        return (self.is_from_settings and not self.is_confirmed) or self.is_overridden

    @property
    def is_present(self) -> bool:
        return self.value is not None and self.value.strip() != ""

    @property
    def country_breakdown(self) -> Dict[str, Any]:
        """Parsed country map of the dimensional element, {} otherwise."""
        if not self.element.dimensional or not self.is_present:
            return {}
        try:
            parsed = json.loads(self.value)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.element.type,
            "label": self.element.label_text,
            "section": self.element.section,
            "order": self.element.order,
            "value": self.value,
            "source": self.source,
            "overridden": self.is_overridden,
            "confirmed": self.is_confirmed,
            "needs_review": self.needs_review,
        }


# === Formatting ===

def _format_grouped(number: Decimal, places: int) -> str:
    return f"{number:,.{places}f}"


def format_value(value: Optional[str], element: TaxonomyElement, fmt: str = "display") -> Optional[str]:
    """Render a stored value for display or for the instance document; never raises."""
    if value is None or str(value).strip() == "":
        return None
    text = str(value).strip()
    try:
        if element.is_boolean:
            return to_yes_no(is_truthy_token(text))
        if element.is_monetary:
            amount = Decimal(text)
            if fmt == "xbrl":
                return f"{amount:.2f}"
            return f"{_format_grouped(amount, 2)} €"
        if element.is_integer:
            number = int(Decimal(text))
            return str(number) if fmt == "xbrl" else f"{number:,}"
    except (InvalidOperation, ValueError, ArithmeticError):
        return text
    return text


# === Manifest ===

class ElementManifest:
    """
    Thin read layer over registry metadata and stored SubmissionValue rows.

    Args:
        registry: Loaded TaxonomyRegistry
        values: SubmissionValue rows of one submission
        field_definitions: Optional FieldDefinitionProvider; permissive when absent
    """

    def __init__(self, registry, values: Iterable[SubmissionValue],
                 field_definitions: Optional[FieldDefinitionProvider] = None):
        self.registry = registry
        self._stored: Dict[str, SubmissionValue] = {sv.element_name: sv for sv in values}
        self.field_definitions = field_definitions or PermissiveFieldDefinitions()
        self._all: Optional[List[ElementValue]] = None

    @classmethod
    def for_submission(cls, registry, submission: Submission,
                       field_definitions: Optional[FieldDefinitionProvider] = None) -> "ElementManifest":
        return cls(registry, submission.submission_values, field_definitions)

    def value_for(self, name: str) -> Optional[str]:
        row = self._stored.get(name)
        return row.value if row is not None else None

    def submission_value_for(self, name: str) -> Optional[SubmissionValue]:
        return self._stored.get(name)

    def element_with_value(self, name: str) -> Optional[ElementValue]:
        element = self.registry.element(name)
        if element is None:
            return None
        return ElementValue(element=element, row=self._stored.get(name))

    def all_elements_with_values(self) -> List[ElementValue]:
        """Elements that have a stored row, sorted by presentation order."""
        if self._all is None:
            found = []
            for name in self._stored:
                ev = self.element_with_value(name)
                if ev is not None:
                    found.append(ev)
            found.sort(key=lambda ev: (ev.element.order, ev.name))
            self._all = found
        return list(self._all)

    def elements_by_section(self) -> Dict[str, List[ElementValue]]:
        grouped: Dict[str, List[ElementValue]] = {}
        for ev in self.all_elements_with_values():
            grouped.setdefault(ev.element.section or "General", []).append(ev)
        return grouped

    def formatted_value(self, name: str, fmt: str = "display") -> Optional[str]:
        ev = self.element_with_value(name)
        if ev is None or not ev.is_present:
            return None
        return format_value(ev.value, ev.element, fmt)

    def field_definition(self, name: str) -> Optional[Dict[str, Any]]:
        try:
            return self.field_definitions.field_definition(name)
        except Exception as e:
            logger.warning(f"Field definition lookup failed for {name}: {e}")
            return None

    def field_visible(self, name: str, current_data: Optional[Mapping[str, Any]] = None) -> bool:
        """Visibility of a field given sibling answers; visible when the provider cannot decide."""
        try:
            return bool(self.field_definitions.visibility(name, current_data or {}))
        except Exception as e:
            logger.warning(f"Visibility check failed for {name}: {e}")
            return True

    def current_data(self) -> Dict[str, Optional[str]]:
        """Stored answers keyed by element name, for visibility checks."""
        return {name: row.value for name, row in self._stored.items()}
