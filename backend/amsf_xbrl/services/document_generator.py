"""
Document Generator

Builds the XBRL instance document for one submission following the AMSF
strix taxonomy format: schema reference, entity context, one dimensional
context per reported country, units, then one fact per stored value.
"""

import json
import logging
import xml.etree.ElementTree as ET
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional, Tuple

from amsf_xbrl.models.constants import is_truthy_token, to_yes_no
from amsf_xbrl.models.records import Submission, SubmissionValue
from amsf_xbrl.models.taxonomy_element import UNIT_EUR, UNIT_PURE
from amsf_xbrl.services.aggregation_engine import sanitize_country_code

logger = logging.getLogger(__name__)

XBRLI_NS = "http://www.xbrl.org/2003/instance"
LINK_NS = "http://www.xbrl.org/2003/linkbase"
XLINK_NS = "http://www.w3.org/1999/xlink"
ISO4217_NS = "http://www.xbrl.org/2003/iso4217"
XBRLDI_NS = "http://xbrl.org/2006/xbrldi"
STRIX_NS = "http://amsf.mc/fr/taxonomy/strix"

NAMESPACES = (
    ("xmlns", XBRLI_NS),
    ("xmlns:xbrli", XBRLI_NS),
    ("xmlns:link", LINK_NS),
    ("xmlns:xlink", XLINK_NS),
    ("xmlns:iso4217", ISO4217_NS),
    ("xmlns:xbrldi", XBRLDI_NS),
    ("xmlns:strix", STRIX_NS),
)

SCHEMA_REF_TEMPLATE = "http://amsf.mc/fr/taxonomy/strix/{version}/strix.xsd"
ENTITY_SCHEME = "http://amsf.mc/rci"

ENTITY_CONTEXT_ID = "ctx_entity"
COUNTRY_CONTEXT_PREFIX = "ctx_country_"
COUNTRY_DIMENSION = "strix:CountryDimension"

DIMENSIONAL_ELEMENT = "a1103"
LEGACY_DIMENSIONAL_PREFIX = DIMENSIONAL_ELEMENT + "_"

# Not every element type is known without a registry, so these are fixed
MONETARY_ELEMENTS = frozenset(["a2104B", "a2105", "a2106", "a2107"])
BOOLEAN_ELEMENTS = frozenset(["a2201", "a2203"])

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'


def country_context_id(code: str) -> str:
    return f"{COUNTRY_CONTEXT_PREFIX}{code}"


class DocumentGenerator:
    """
    XBRL instance builder.

    Args:
        submission: Submission with its organization loaded
        values: SubmissionValue rows to emit (defaults to the submission's rows)
        registry: Optional TaxonomyRegistry; when given, facts for names it
            does not know are dropped and its types refine unit/format choices
    """

    def __init__(self, submission: Submission, values: Optional[Iterable[SubmissionValue]] = None,
                 registry=None):
        self.submission = submission
        self.organization = submission.organization
        self.values: List[SubmissionValue] = list(values if values is not None else submission.submission_values)
        self.registry = registry

    # === Public API ===

    def generate(self) -> str:
        facts = self._collect_facts()
        country_codes = sorted({code for _, code, _ in facts if code})

        root = ET.Element("xbrli:xbrl", dict(NAMESPACES))
        self._build_schema_ref(root)
        self._build_context(root, ENTITY_CONTEXT_ID)
        for code in country_codes:
            self._build_context(root, country_context_id(code), country_code=code)
        self._build_units(root)
        for name, code, value in facts:
            self._build_fact(root, name, code, value)

        ET.indent(root, space="  ")
        return XML_DECLARATION + ET.tostring(root, encoding="unicode") + "\n"

    def suggested_filename(self) -> str:
        return f"amsf_{self.submission.year}_{self.organization.rci_number}.xml"

    # === Structure ===

    def _build_schema_ref(self, root: ET.Element) -> None:
        version = self.submission.taxonomy_version or "2025"
        ET.SubElement(root, "link:schemaRef", {
            "xlink:type": "simple",
            "xlink:href": SCHEMA_REF_TEMPLATE.format(version=version),
        })

    def _build_context(self, root: ET.Element, context_id: str, country_code: Optional[str] = None) -> None:
        context = ET.SubElement(root, "xbrli:context", {"id": context_id})
        entity = ET.SubElement(context, "xbrli:entity")
        identifier = ET.SubElement(entity, "xbrli:identifier", {"scheme": ENTITY_SCHEME})
        identifier.text = self.organization.rci_number or ""
        if country_code:
            segment = ET.SubElement(entity, "xbrli:segment")
            member = ET.SubElement(segment, "xbrldi:explicitMember", {"dimension": COUNTRY_DIMENSION})
            member.text = f"strix:{country_code}"
        period = ET.SubElement(context, "xbrli:period")
        instant = ET.SubElement(period, "xbrli:instant")
        instant.text = self.submission.report_date.isoformat()

    def _build_units(self, root: ET.Element) -> None:
        eur = ET.SubElement(root, "xbrli:unit", {"id": UNIT_EUR})
        ET.SubElement(eur, "xbrli:measure").text = "iso4217:EUR"
        pure = ET.SubElement(root, "xbrli:unit", {"id": UNIT_PURE})
        ET.SubElement(pure, "xbrli:measure").text = "xbrli:pure"

    def _build_fact(self, root: ET.Element, name: str, country_code: Optional[str], value: str) -> None:
        attrs = {"contextRef": country_context_id(country_code) if country_code else ENTITY_CONTEXT_ID}
        unit = self.unit_for(name)
        if unit:
            attrs["unitRef"] = unit
            attrs["decimals"] = self.decimals_for(name)
        fact = ET.SubElement(root, f"strix:{name}", attrs)
        fact.text = self.format_value(name, value)

    # === Facts ===

    def _collect_facts(self) -> List[Tuple[str, Optional[str], str]]:
        """
        (element name, country code or None, raw value) in taxonomy order.

        A country in both the JSON breakdown and a legacy per-country row is
        emitted once, from the JSON breakdown.
        """
        facts: List[Tuple[str, Optional[str], str]] = []
        legacy: List[Tuple[str, Optional[str], str]] = []
        for row in self.values:
            if row.value is None or str(row.value).strip() == "":
                continue
            name = row.element_name
            if name.startswith(LEGACY_DIMENSIONAL_PREFIX):
                code = sanitize_country_code(name[len(LEGACY_DIMENSIONAL_PREFIX):])
                if code and self._known(DIMENSIONAL_ELEMENT):
                    legacy.append((DIMENSIONAL_ELEMENT, code, row.value))
                continue
            if not self._known(name):
                continue
            if name == DIMENSIONAL_ELEMENT:
                for code, count in self._country_breakdown(row.value).items():
                    facts.append((name, code, count))
                continue
            facts.append((name, None, row.value))

        covered = {code for name, code, _ in facts if name == DIMENSIONAL_ELEMENT}
        for fact in legacy:
            if fact[1] in covered:
                logger.debug(f"Skipping legacy {DIMENSIONAL_ELEMENT} row for {fact[1]}, breakdown already has it")
                continue
            covered.add(fact[1])
            facts.append(fact)

        facts.sort(key=lambda f: (self._order(f[0]), f[0], f[1] or ""))
        return facts

    def _country_breakdown(self, raw: str) -> Dict[str, str]:
        try:
            parsed = json.loads(raw)
        except ValueError:
            logger.warning(f"Skipping unparseable country breakdown for submission {self.submission.id}")
            return {}
        if not isinstance(parsed, dict):
            return {}
        breakdown: Dict[str, str] = {}
        for key, count in parsed.items():
            code = sanitize_country_code(key)
            if code is None or count is None:
                continue
            breakdown[code] = str(count)
        return breakdown

    def _known(self, name: str) -> bool:
        if self.registry is None:
            return True
        if self.registry.element(name) is None:
            logger.warning(f"Skipping fact for element not in taxonomy: {name}")
            return False
        return True

    def _order(self, name: str) -> int:
        element = self.registry.element(name) if self.registry is not None else None
        return element.order if element is not None else 0

    # === Typing rules ===

    def _registry_type(self, name: str) -> Optional[str]:
        element = self.registry.element(name) if self.registry is not None else None
        return element.type if element is not None else None

    def is_monetary(self, name: str) -> bool:
        return name in MONETARY_ELEMENTS or self._registry_type(name) == "monetary"

    def is_boolean(self, name: str) -> bool:
        return name in BOOLEAN_ELEMENTS or self._registry_type(name) == "boolean"

    def unit_for(self, name: str) -> Optional[str]:
        if self.is_monetary(name):
            return UNIT_EUR
        if self.is_boolean(name) or self._registry_type(name) == "string":
            return None
        return UNIT_PURE

    def decimals_for(self, name: str) -> str:
        if self.is_monetary(name):
            return "2"
        if self._registry_type(name) == "decimal":
            return "INF"
        return "0"

    def format_value(self, name: str, value: str) -> str:
        """Text content of a fact; malformed input falls back to the raw string."""
        text = str(value).strip()
        if self.is_boolean(name):
            return to_yes_no(is_truthy_token(text))
        if self.is_monetary(name):
            try:
                return f"{Decimal(text):.2f}"
            except (InvalidOperation, ValueError):
                return text
        return text
