"""
Comparison Engine

Year-over-year comparison of a submission's values against the same
organization's submission for the previous year. Changes strictly above
SIGNIFICANCE_THRESHOLD percent are flagged for review.
"""

import logging
from dataclasses import dataclass, asdict
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from amsf_xbrl.models.records import Submission

logger = logging.getLogger(__name__)

SIGNIFICANCE_THRESHOLD = 25.0

_HUNDRED = Decimal(100)
_TWO_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class Comparison:
    element_name: str
    current: Optional[str]
    previous: Optional[str]
    change_percent: Optional[float]
    significant: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _to_decimal(value: Optional[str]) -> Optional[Decimal]:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        number = Decimal(text)
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


def change_percent(current: Optional[str], previous: Optional[str]) -> Optional[float]:
    """
    (current - previous) / previous * 100 rounded to 2 places.

    None when undefined, or when the change cannot be represented at the
    context precision (overflow, or more digits than quantize allows).
    """
    cur = _to_decimal(current)
    prev = _to_decimal(previous)
    if cur is None or prev is None or prev == 0:
        return None
    try:
        change = ((cur - prev) / prev * _HUNDRED).quantize(_TWO_PLACES, rounding=ROUND_HALF_EVEN)
    except ArithmeticError as e:
        logger.warning(f"Change percent out of range for {current!r} vs {previous!r}: {e}")
        return None
    return float(change)


class ComparisonEngine:
    """
    Compares one submission with the previous year's.

    Args:
        session: SQLAlchemy session used to find the previous submission
        submission: Current submission
    """

    def __init__(self, session: Session, submission: Submission, threshold: float = SIGNIFICANCE_THRESHOLD):
        self.session = session
        self.submission = submission
        self.threshold = threshold
        self._previous: Optional[Submission] = None
        self._previous_loaded = False

    def previous_submission(self) -> Optional[Submission]:
        if not self._previous_loaded:
            stmt = select(Submission).where(
                Submission.organization_id == self.submission.organization_id,
                Submission.year == self.submission.year - 1,
            )
            self._previous = self.session.scalars(stmt).first()
            self._previous_loaded = True
        return self._previous

    def is_first_submission(self) -> bool:
        return self.previous_submission() is None

    def compare(self, element_name: str) -> Comparison:
        current = self._value(self.submission, element_name)
        previous_submission = self.previous_submission()
        previous = self._value(previous_submission, element_name) if previous_submission else None

        percent = change_percent(current, previous)
        return Comparison(
            element_name=element_name,
            current=current,
            previous=previous,
            change_percent=percent,
            significant=percent is not None and abs(percent) > self.threshold,
        )

    def significant_changes(self) -> List[Comparison]:
        if self.is_first_submission():
            return []
        names = [sv.element_name for sv in self.submission.submission_values]
        return [c for c in (self.compare(name) for name in names) if c.significant]

    @staticmethod
    def _value(submission: Optional[Submission], element_name: str) -> Optional[str]:
        if submission is None:
            return None
        for sv in submission.submission_values:
            if sv.element_name == element_name:
                return sv.value
        return None
