"""
Aggregation Engine

Derives AMSF survey values from an organization's business records for one
submission year and persists them as SubmissionValue rows.

Each aggregate family is an independent method returning
{element_name: value}; compute_all() merges them. populate() upserts the
result together with settings-sourced values inside a single savepoint.
"""

import json
import logging
import re
import time
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from amsf_xbrl.models.constants import (
    CASH_PAYMENT_METHODS,
    SOURCE_CALCULATED,
    SOURCE_FROM_SETTINGS,
    to_yes_no,
)
from amsf_xbrl.models.records import (
    BeneficialOwner,
    Client,
    Setting,
    StrReport,
    Submission,
    SubmissionValue,
    Training,
    Transaction,
)
from amsf_xbrl.utils.logging import ReportLogger

logger = logging.getLogger(__name__)
report_logger = ReportLogger(__name__)

COUNTRY_BREAKDOWN_ELEMENT = "a1103"

_NON_LETTERS = re.compile(r"[^A-Z]")
_CENTS = Decimal("0.01")


class AggregationError(Exception):
    """Raised when populate fails; no partial writes survive."""

    def __init__(self, message: str, submission_id: Optional[int] = None):
        super().__init__(message)
        self.submission_id = submission_id


@dataclass
class PopulateResult:
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
        }


def sanitize_country_code(raw: Any) -> Optional[str]:
    """Uppercase, drop non-letters; only exact two-letter codes survive."""
    if raw is None:
        return None
    code = _NON_LETTERS.sub("", str(raw).upper())
    return code if len(code) == 2 else None


def serialize_value(value: Any) -> str:
    """Text form stored in SubmissionValue.value."""
    if isinstance(value, bool):
        return to_yes_no(value)
    if isinstance(value, dict):
        return json.dumps(value, sort_keys=True)
    if isinstance(value, Decimal):
        return str(value)
    return str(value)


def _money(value: Any) -> Decimal:
    if value is None:
        return Decimal("0.00")
    try:
        return Decimal(str(value)).quantize(_CENTS)
    except InvalidOperation:
        return Decimal("0.00")


class AggregationEngine:
    """
    Computes and stores the calculated values of one submission.

    Args:
        session: SQLAlchemy session bound to the record store
        submission: Submission being populated
        metrics: Optional Metrics instance for populate run counters
    """

    def __init__(self, session: Session, submission: Submission, metrics=None):
        self.session = session
        self.submission = submission
        self.organization_id = submission.organization_id
        self.year = submission.year
        self.metrics = metrics

    # === Public API ===

    def compute_all(self) -> Dict[str, Any]:
        """All calculated aggregates keyed by element name."""
        values: Dict[str, Any] = {}
        values.update(self.client_statistics())
        values.update(self.country_breakdown())
        values.update(self.transaction_statistics())
        values.update(self.transaction_values())
        values.update(self.payment_method_statistics())
        values.update(self.pep_transaction_statistics())
        values.update(self.str_statistics())
        values.update(self.beneficial_owner_statistics())
        values.update(self.training_statistics())
        return values

    def settings_values(self) -> Dict[str, str]:
        """Organization settings that declare a target element, copied verbatim."""
        stmt = (
            select(Setting)
            .where(Setting.organization_id == self.organization_id)
            .where(Setting.xbrl_element.is_not(None))
            .where(Setting.xbrl_element != "")
            .order_by(Setting.id)
        )
        return {
            s.xbrl_element.strip(): "" if s.value is None else str(s.value)
            for s in self.session.scalars(stmt)
        }

    def populate(self) -> PopulateResult:
        """
        Upsert calculated and settings-sourced values.

        Locked rows are left untouched: calculated rows already overridden,
        manual rows, and settings rows already confirmed. Runs in one
        savepoint; any failure rolls the whole pass back and raises
        AggregationError.
        """
        started = time.time()
        result = PopulateResult()
        try:
            with self.session.begin_nested():
                existing = {
                    sv.element_name: sv
                    for sv in self.session.scalars(
                        select(SubmissionValue).where(SubmissionValue.submission_id == self.submission.id)
                    )
                }
                for name, value in self.compute_all().items():
                    self._upsert(existing, name, serialize_value(value), SOURCE_CALCULATED, result)
                for name, value in self.settings_values().items():
                    self._upsert(existing, name, value, SOURCE_FROM_SETTINGS, result)
                self.session.flush()
        except Exception as e:
            if self.metrics:
                self.metrics.inc_populate_runs("failure")
            logger.error(
                f"Populate failed for submission {self.submission.id}: {e}",
                extra={"submission_id": self.submission.id},
            )
            raise AggregationError(f"Populate failed: {e}", submission_id=self.submission.id) from e

        # Rows were added through the session, not the relationship
        self.session.expire(self.submission, ["submission_values"])
        if self.metrics:
            self.metrics.inc_populate_runs("success")
        report_logger.log_populate_complete(
            self.submission.id, self.year, result.created, result.updated, result.skipped,
            int((time.time() - started) * 1000),
        )
        return result

    # === Upsert ===

    def _is_locked(self, row: SubmissionValue, source: str) -> bool:
        if row.is_manual:
            return True
        if source == SOURCE_CALCULATED:
            return row.is_calculated and row.overridden
        return row.is_confirmed

    def _upsert(self, existing: Dict[str, SubmissionValue], name: str, value: str,
                source: str, result: PopulateResult) -> None:
        row = existing.get(name)
        if row is None:
            row = SubmissionValue(
                submission_id=self.submission.id,
                element_name=name,
                value=value,
                source=source,
                overridden=False,
                value_metadata={},
            )
            self.session.add(row)
            existing[name] = row
            result.created += 1
            return

        if self._is_locked(row, source):
            result.skipped += 1
            return

        if row.value == value and row.source == source:
            result.unchanged += 1
            return

        row.value = value
        row.source = source
        result.updated += 1

    # === Query helpers ===

    @property
    def _year_start(self) -> date:
        return date(self.year, 1, 1)

    @property
    def _year_end(self) -> date:
        return date(self.year, 12, 31)

    def _count(self, stmt) -> int:
        return int(self.session.scalar(stmt) or 0)

    def _kept_clients(self):
        return select(Client.id).where(
            Client.organization_id == self.organization_id,
            Client.deleted_at.is_(None),
        )

    def _count_clients(self, *criteria) -> int:
        stmt = (
            select(func.count(Client.id))
            .where(Client.organization_id == self.organization_id, Client.deleted_at.is_(None))
            .where(*criteria)
        )
        return self._count(stmt)

    def _year_transactions(self, *criteria):
        return (
            Transaction.organization_id == self.organization_id,
            Transaction.deleted_at.is_(None),
            Transaction.transaction_date >= self._year_start,
            Transaction.transaction_date <= self._year_end,
            *criteria,
        )

    def _count_transactions(self, *criteria) -> int:
        return self._count(select(func.count(Transaction.id)).where(*self._year_transactions(*criteria)))

    def _sum_transactions(self, *criteria) -> Decimal:
        stmt = select(func.sum(Transaction.transaction_value)).where(*self._year_transactions(*criteria))
        return _money(self.session.scalar(stmt))

    # === Client statistics ===

    def client_statistics(self) -> Dict[str, int]:
        return {
            "a1101": self._count_clients(),
            "a1102": self._count_clients(Client.client_type == "NATURAL_PERSON"),
            "a11502B": self._count_clients(Client.client_type == "LEGAL_ENTITY"),
            "a11802B": self._count_clients(Client.client_type == "TRUST"),
            "a1301": self._count_clients(Client.is_pep.is_(True)),
            "a1401": self._count_clients(Client.risk_level == "HIGH"),
        }

    def country_breakdown(self) -> Dict[str, Dict[str, int]]:
        """
        Kept clients per ISO 3166-1 alpha-2 code.

        Natural persons count by nationality, legal entities and trusts by
        incorporation country; both groupings are merged by summation.
        """
        groupings = (
            (Client.nationality, Client.client_type == "NATURAL_PERSON"),
            (Client.incorporation_country, Client.client_type.in_(("LEGAL_ENTITY", "TRUST"))),
        )
        breakdown: Dict[str, int] = {}
        for column, criterion in groupings:
            stmt = (
                select(column, func.count(Client.id))
                .where(Client.organization_id == self.organization_id, Client.deleted_at.is_(None))
                .where(criterion)
                .group_by(column)
            )
            for raw_code, count in self.session.execute(stmt):
                code = sanitize_country_code(raw_code)
                if code is None:
                    continue
                breakdown[code] = breakdown.get(code, 0) + int(count)

        return {COUNTRY_BREAKDOWN_ELEMENT: dict(sorted(breakdown.items()))}

    # === Transaction statistics ===

    def transaction_statistics(self) -> Dict[str, int]:
        return {
            "a2101B": self._count_transactions(),
            "a2102": self._count_transactions(Transaction.transaction_type == "PURCHASE"),
            "a2103": self._count_transactions(Transaction.transaction_type == "SALE"),
            "a2104": self._count_transactions(Transaction.transaction_type == "RENTAL"),
        }

    def transaction_values(self) -> Dict[str, Decimal]:
        return {
            "a2104B": self._sum_transactions(),
            "a2105": self._sum_transactions(Transaction.transaction_type == "PURCHASE"),
            "a2106": self._sum_transactions(Transaction.transaction_type == "SALE"),
            "a2107": self._sum_transactions(Transaction.transaction_type == "RENTAL"),
        }

    def payment_method_statistics(self) -> Dict[str, Any]:
        cash_count = self._count_transactions(Transaction.payment_method.in_(CASH_PAYMENT_METHODS))
        crypto_count = self._count_transactions(Transaction.payment_method == "CRYPTO")
        return {
            "a2201": cash_count > 0,
            # a2202 is string-typed in the taxonomy
            "a2202": str(cash_count),
            "a2203": crypto_count > 0,
        }

    def pep_transaction_statistics(self) -> Dict[str, int]:
        pep_clients = self._kept_clients().where(Client.is_pep.is_(True))
        return {"a2401": self._count_transactions(Transaction.client_id.in_(pep_clients))}

    # === STR statistics ===

    def str_statistics(self) -> Dict[str, int]:
        stmt = select(func.count(StrReport.id)).where(
            StrReport.organization_id == self.organization_id,
            StrReport.deleted_at.is_(None),
            StrReport.report_date >= self._year_start,
            StrReport.report_date <= self._year_end,
        )
        return {"a3101": self._count(stmt)}

    # === Beneficial owner statistics ===

    def beneficial_owner_statistics(self) -> Dict[str, int]:
        base = (
            select(func.count(BeneficialOwner.id))
            .join(Client, BeneficialOwner.client_id == Client.id)
            .where(Client.organization_id == self.organization_id, Client.deleted_at.is_(None))
        )
        return {
            "a1501": self._count(base.where(Client.client_type.in_(("LEGAL_ENTITY", "TRUST")))),
            "a1502": self._count(base.where(BeneficialOwner.is_pep.is_(True))),
        }

    # === Training statistics ===

    def training_statistics(self) -> Dict[str, int]:
        in_year = (
            Training.organization_id == self.organization_id,
            Training.training_date >= self._year_start,
            Training.training_date <= self._year_end,
        )
        return {
            "aC1501": self._count(select(func.count(Training.id)).where(*in_year)),
            "aC1503B": self._count(select(func.coalesce(func.sum(Training.staff_count), 0)).where(*in_year)),
        }
