"""
Taxonomy Element

Immutable metadata for one element of the AMSF strix taxonomy.

Sources:
- name, type: from the .xsd schema
- label, verbose_label: from the _lab.xml label linkbase
- section, order: from the _pre.xml presentation linkbase
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

ELEMENT_TYPES = ("monetary", "integer", "boolean", "decimal", "string")

UNIT_EUR = "unit_EUR"
UNIT_PURE = "unit_pure"

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")


def strip_tags(text: Optional[str]) -> Optional[str]:
    """Plain-text rendering of an HTML-bearing label, whitespace squished."""
    if not text or not text.strip():
        return None
    plain = html.unescape(_TAG_RE.sub(" ", text))
    plain = _WS_RE.sub(" ", plain).strip()
    return plain or None


@dataclass(frozen=True)
class TaxonomyElement:
    name: str
    type: str = "string"
    label: Optional[str] = None
    verbose_label: Optional[str] = None
    section: Optional[str] = None
    order: int = 0
    dimensional: bool = False

    @property
    def is_monetary(self) -> bool:
        return self.type == "monetary"

    @property
    def is_integer(self) -> bool:
        return self.type == "integer"

    @property
    def is_boolean(self) -> bool:
        return self.type == "boolean"

    @property
    def is_decimal(self) -> bool:
        return self.type == "decimal"

    @property
    def is_string(self) -> bool:
        return self.type == "string"

    @property
    def is_numeric(self) -> bool:
        return self.is_monetary or self.is_integer

    @property
    def label_text(self) -> Optional[str]:
        return strip_tags(self.label)

    @property
    def verbose_label_text(self) -> Optional[str]:
        return strip_tags(self.verbose_label)

    @property
    def tooltip_label(self) -> Optional[str]:
        return self.verbose_label_text or self.label_text

    @property
    def unit_ref(self) -> Optional[str]:
        if self.is_monetary:
            return UNIT_EUR
        if self.is_integer:
            return UNIT_PURE
        return None

    @property
    def decimals(self) -> Optional[str]:
        return "2" if self.is_monetary else None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
