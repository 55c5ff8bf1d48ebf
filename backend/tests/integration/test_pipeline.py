"""
End-to-end run of the reporting pipeline without HTTP: records are
aggregated, rendered to an instance document and sent to a scripted
validator.
"""

import re
import xml.etree.ElementTree as ET

import httpx

from amsf_xbrl.services.aggregation_engine import AggregationEngine
from amsf_xbrl.services.document_generator import DocumentGenerator
from amsf_xbrl.services.element_manifest import ElementManifest
from amsf_xbrl.services.section_catalog import SectionCatalog
from amsf_xbrl.services.validation_client import ValidationClient

XBRLI = "{http://www.xbrl.org/2003/instance}"
XBRLDI = "{http://xbrl.org/2006/xbrldi}"
STRIX = "{http://amsf.mc/fr/taxonomy/strix}"


def _generate(session, submission, registry):
    AggregationEngine(session, submission).populate()
    document = DocumentGenerator(submission, registry=registry).generate()
    return document, ET.fromstring(document.encode("utf-8"))


def _facts(root):
    return [el for el in root if el.tag.startswith(STRIX)]


def test_every_fact_names_a_taxonomy_element(session, seeded, submission, registry):
    _, root = _generate(session, submission, registry)
    names = {el.tag[len(STRIX):] for el in _facts(root)}
    assert names
    assert all(name in registry for name in names)


def test_identifier_and_period_round_trip(session, seeded, submission, registry):
    _, root = _generate(session, submission, registry)
    for context in root.findall(f"{XBRLI}context"):
        assert context.find(f"{XBRLI}entity/{XBRLI}identifier").text == "RCI12345"
        assert context.find(f"{XBRLI}period/{XBRLI}instant").text == "2025-12-31"


def test_country_facts_bounded_by_total_clients(session, seeded, submission, registry):
    _, root = _generate(session, submission, registry)
    total = int(root.find(f"{STRIX}a1101").text)

    contexts = {}
    for context in root.findall(f"{XBRLI}context"):
        member = context.find(f".//{XBRLDI}explicitMember")
        if member is not None:
            contexts[context.get("id")] = member.text

    country_facts = [el for el in _facts(root) if el.tag == f"{STRIX}a1103"]
    codes = [contexts[el.get("contextRef")] for el in country_facts]

    assert sorted(codes) == ["strix:FR", "strix:GB", "strix:MC"]
    assert all(re.match(r"^strix:[A-Z]{2}$", code) for code in codes)
    assert sum(int(el.text) for el in country_facts) <= total


def test_manifest_and_catalog_agree_with_registry(session, seeded, submission, registry):
    AggregationEngine(session, submission).populate()
    manifest = ElementManifest.for_submission(registry, submission)

    catalog = SectionCatalog()
    assert catalog.validate(registry) is True
    for ev in manifest.all_elements_with_values():
        assert catalog.section_for_element(ev.name) is not None


def test_generated_document_is_validated_after_outage(session, seeded, submission, registry):
    document, _ = _generate(session, submission, registry)
    answers = [httpx.Response(503), httpx.Response(200, json={"valid": True, "errors": [], "warnings": []})]
    received = []

    def handler(request):
        received.append(request.content)
        return answers.pop(0)

    sleeps = []
    client = ValidationClient(
        base_url="http://validator.test",
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
        sleep=sleeps.append,
    )
    result = client.validate(document)

    assert result.valid is True
    assert result.attempts == 2
    assert sleeps == [0.1]
    assert len(received) == 2
