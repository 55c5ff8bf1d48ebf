from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from amsf_xbrl.models.constants import is_truthy_token, to_yes_no
from amsf_xbrl.models.records import Submission, SubmissionValue
from amsf_xbrl.models.taxonomy_element import TaxonomyElement, strip_tags


class TestSubmissionValue:
    def test_defaults_after_flush(self, session, submission):
        row = SubmissionValue(submission_id=submission.id, element_name="a1101", value="3")
        session.add(row)
        session.flush()
        assert row.source == "calculated"
        assert row.overridden is False
        assert row.value_metadata == {}
        assert not row.is_confirmed

    def test_one_row_per_element(self, session, submission):
        session.add(SubmissionValue(submission_id=submission.id, element_name="a1101", value="1"))
        session.add(SubmissionValue(submission_id=submission.id, element_name="a1101", value="2"))
        with pytest.raises(IntegrityError):
            session.flush()

    def test_edit_of_calculated_value_marks_override(self):
        row = SubmissionValue(element_name="a1101", value="3", source="calculated", overridden=False)
        row.update_value(3)
        assert row.overridden is False
        row.update_value(4)
        assert row.overridden is True
        assert row.value == "4"

    def test_edit_of_manual_value_is_not_override(self):
        row = SubmissionValue(element_name="a3101", value="3", source="manual", overridden=False)
        row.update_value("5")
        assert row.overridden is False

    def test_confirm_is_sticky(self):
        first = datetime(2025, 2, 1, tzinfo=timezone.utc)
        row = SubmissionValue(element_name="aC1102", value="x", source="from_settings")
        row.confirm(at=first)
        row.confirm(at=datetime(2025, 3, 1, tzinfo=timezone.utc))
        assert row.confirmed_at == first
        assert row.is_from_settings

    @pytest.mark.parametrize("raw,expected", [
        ("42", 42),
        ("Oui", True),
        ("No", False),
        ("12.50", Decimal("12.50")),
        ("2025-12-31", date(2025, 12, 31)),
        ("Jane Doe", "Jane Doe"),
        ("  ", None),
        (None, None),
    ])
    def test_typed_value(self, raw, expected):
        assert SubmissionValue(element_name="x", value=raw).typed_value == expected


class TestSubmission:
    def test_report_date_is_year_end(self):
        assert Submission(year=2025).report_date == date(2025, 12, 31)

    def test_one_submission_per_year(self, session, organization, submission):
        session.add(Submission(organization=organization, year=submission.year))
        with pytest.raises(IntegrityError):
            session.flush()

    def test_values_by_element(self, session, submission):
        session.add(SubmissionValue(submission_id=submission.id, element_name="a1101", value="1"))
        session.flush()
        session.expire(submission, ["submission_values"])
        assert submission.values_by_element()["a1101"].value == "1"


class TestTaxonomyElement:
    def test_units_and_decimals(self):
        assert TaxonomyElement(name="m", type="monetary").unit_ref == "unit_EUR"
        assert TaxonomyElement(name="m", type="monetary").decimals == "2"
        assert TaxonomyElement(name="i", type="integer").unit_ref == "unit_pure"
        assert TaxonomyElement(name="b", type="boolean").unit_ref is None
        assert TaxonomyElement(name="s", type="string").decimals is None

    def test_strip_tags(self):
        assert strip_tags("<p>Hello&nbsp;<b>world</b></p>\n ") == "Hello world"
        assert strip_tags("   ") is None
        assert strip_tags(None) is None

    def test_tooltip_falls_back_to_label(self):
        el = TaxonomyElement(name="x", label="<i>Short</i>")
        assert el.tooltip_label == "Short"


def test_boolean_tokens():
    assert to_yes_no(True) == "Yes"
    assert to_yes_no(0) == "No"
    assert is_truthy_token(" OUI ")
    assert not is_truthy_token("Non")
