"""
Section Catalog

AMSF questionnaire structure: section ids, titles and the element names
each section reports. The grouping does not exist in the taxonomy files
(they only define elements), so it is maintained here and checked against
the registry at startup.

Section ids follow the questionnaire numbering:
- Tab 1 (Customer Risk): "1.1" .. "1.12"
- Tab 2 (Products & Services Risk): "2.1" .. "2.10"
- Tab 3 (Distribution Risk): "3.1" .. "3.7"
- Tab 4 (Controls): "C1.1" .. "C1.15"
- Tab 5 (Signatories): "S1"
"""

import logging
import re
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class SectionCatalogError(Exception):
    """Raised by strict validation when sections reference unknown elements."""

    def __init__(self, message: str, missing: List[str]):
        super().__init__(message)
        self.missing = missing


SECTIONS: Dict[str, Dict] = {
    # Tab 1: Customer Risk
    "1.1": {"title": "Active in Reporting Cycle", "elements": ["aACTIVE"]},
    "1.2": {"title": "Clients Summary", "elements": ["a1101", "a1102", "a1103"]},
    "1.3": {"title": "Beneficial Owners", "elements": ["a1501", "a1502"]},
    "1.4": {"title": "Distinguishing Client Types", "elements": ["a11502B", "a11802B"]},
    "1.5": {"title": "Clients - Natural Persons", "elements": ["a1401"]},
    "1.6": {"title": "Clients - Legal Persons", "elements": []},
    "1.7": {"title": "Clients - Trusts and Other Legal Arrangements", "elements": []},
    "1.8": {"title": "PEPs", "elements": ["a1301"]},
    "1.9": {"title": "Virtual Asset Service Providers", "elements": []},
    "1.10": {"title": "2nd Nationalities", "elements": []},
    "1.11": {"title": "Monegasque Client Types - Purchases and Sales", "elements": []},
    "1.12": {"title": "Comments & Feedback", "elements": ["a14801"]},
    # Tab 2: Products & Services Risk
    "2.1": {"title": "Transactions Summary", "elements": ["a2101B", "a2102", "a2103", "a2104"]},
    "2.2": {"title": "Transaction Values", "elements": ["a2104B", "a2105", "a2106", "a2107"]},
    "2.3": {"title": "Payment Types with Clients - Electronic Transfers", "elements": []},
    "2.4": {"title": "Payment Types by Clients - Electronic Transfers", "elements": []},
    "2.5": {"title": "Payment Types with Clients - Cash", "elements": ["a2201", "a2202"]},
    "2.6": {"title": "Payment Types by Clients - Cash", "elements": []},
    "2.7": {"title": "Virtual Currencies", "elements": ["a2203"]},
    "2.8": {"title": "Services Offered, Agent for Purchases & Sales", "elements": ["a2401"]},
    "2.9": {"title": "Services Offered, Agent for Rentals", "elements": []},
    "2.10": {"title": "Comments & Feedback", "elements": []},
    # Tab 3: Distribution Risk
    "3.1": {"title": "Identification", "elements": ["a3101"]},
    "3.2": {"title": "Onboarding", "elements": []},
    "3.3": {"title": "Structure", "elements": []},
    "3.4": {"title": "Entity Finances", "elements": []},
    "3.5": {"title": "Rejected Relationships", "elements": []},
    "3.6": {"title": "Terminated Relationships", "elements": []},
    "3.7": {"title": "Comments & Feedback", "elements": []},
    # Tab 4: Controls
    "C1.1": {"title": "Structure", "elements": ["aC1102"]},
    "C1.2": {"title": "Policies & Procedures", "elements": ["aC1201"]},
    "C1.3": {"title": "Governance", "elements": []},
    "C1.4": {"title": "Compliance & Violations", "elements": []},
    "C1.5": {"title": "Training", "elements": ["aC1501", "aC1503B"]},
    "C1.6": {"title": "CDD", "elements": []},
    "C1.7": {"title": "EDD", "elements": []},
    "C1.8": {"title": "Risk Assessments", "elements": ["aC1811"]},
    "C1.9": {"title": "Audit / Controls", "elements": []},
    "C1.10": {"title": "Record Keeping", "elements": []},
    "C1.11": {"title": "Targeted Financial Sanctions (TFS)", "elements": []},
    "C1.12": {"title": "PEPs", "elements": []},
    "C1.13": {"title": "Cash Transactions", "elements": []},
    "C1.14": {"title": "Suspicious Transaction Reporting", "elements": []},
    "C1.15": {"title": "Comments & Feedback", "elements": []},
    # Tab 5: Signatories
    "S1": {"title": "Attestation", "elements": ["aS1"]},
}

_NUMERIC_RE = re.compile(r"^(\d+)\.(\d+)$")
_CONTROLS_RE = re.compile(r"^C(\d+)\.(\d+)$")
_SIGNATORY_RE = re.compile(r"^S(\d+)$")


def section_sort_key(section_id: str) -> Tuple[int, int, int]:
    """Sort key placing 1.x < 2.x < 3.x < C1.x < S1 < anything else."""
    m = _NUMERIC_RE.match(section_id)
    if m:
        return (0, int(m.group(1)), int(m.group(2)))
    m = _CONTROLS_RE.match(section_id)
    if m:
        return (1, int(m.group(1)), int(m.group(2)))
    m = _SIGNATORY_RE.match(section_id)
    if m:
        return (2, int(m.group(1)), 0)
    return (99, 0, 0)


class SectionCatalog:
    """Read access to the questionnaire sections."""

    def __init__(self, sections: Optional[Dict[str, Dict]] = None):
        self._sections = sections if sections is not None else SECTIONS
        self._ordered: Optional[List[Dict]] = None

    def _as_dict(self, section_id: str, data: Dict) -> Dict:
        return {"id": section_id, "title": data["title"], "elements": list(data["elements"])}

    def sections(self) -> List[Dict]:
        """All sections in questionnaire order as {id, title, elements}."""
        if self._ordered is None:
            self._ordered = [
                self._as_dict(sid, self._sections[sid])
                for sid in sorted(self._sections, key=section_sort_key)
            ]
        return [dict(s, elements=list(s["elements"])) for s in self._ordered]

    def section(self, section_id: str) -> Optional[Dict]:
        data = self._sections.get(section_id)
        return self._as_dict(section_id, data) if data else None

    def elements_for(self, section_id: str) -> List[str]:
        data = self._sections.get(section_id)
        return list(data["elements"]) if data else []

    def section_for_element(self, element_name: str) -> Optional[Dict]:
        for section_id, data in self._sections.items():
            if element_name in data["elements"]:
                return self._as_dict(section_id, data)
        return None

    def all_element_names(self) -> List[str]:
        names: List[str] = []
        for data in self._sections.values():
            names.extend(data["elements"])
        return names

    def missing_elements(self, registry) -> List[str]:
        """Element names referenced by a section but unknown to the registry."""
        return [name for name in self.all_element_names() if registry.element(name) is None]

    def validate(self, registry, strict: bool = False) -> bool:
        """
        Check every referenced element exists in the registry.

        Skipped when the registry is not loaded. Logs a warning listing up to
        ten missing names; raises SectionCatalogError instead when strict.
        """
        if not registry.is_loaded:
            return True

        missing = self.missing_elements(registry)
        if not missing:
            return True

        preview = ", ".join(missing[:10]) + ("..." if len(missing) > 10 else "")
        message = f"Section catalog references {len(missing)} elements not in taxonomy: {preview}"
        if strict:
            raise SectionCatalogError(message, missing)
        logger.warning(message)
        return False
