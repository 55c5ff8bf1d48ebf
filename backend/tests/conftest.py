"""
Shared fixtures: in-memory record store, the sample strix taxonomy shipped
in backend/taxonomy, and a seeded organization with its 2025 submission.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from amsf_xbrl.models.records import (
    BeneficialOwner,
    Client,
    Organization,
    Setting,
    StrReport,
    Submission,
    Training,
    Transaction,
)
from amsf_xbrl.services.taxonomy_registry import TaxonomyRegistry
from amsf_xbrl.utils.db import Database

BACKEND_DIR = Path(__file__).resolve().parents[1]
TAXONOMY_DIR = BACKEND_DIR / "taxonomy"
CONFIG_DIR = BACKEND_DIR / "config"

RCI = "RCI12345"
YEAR = 2025


def make_registry(**kwargs) -> TaxonomyRegistry:
    params = {
        "short_labels_file": CONFIG_DIR / "xbrl_short_labels.yaml",
        "type_overrides_file": CONFIG_DIR / "xbrl_type_overrides.yaml",
    }
    params.update(kwargs)
    return TaxonomyRegistry(TAXONOMY_DIR, **params)


@pytest.fixture(scope="session")
def registry():
    return make_registry().load()


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.create_all()
    yield db
    db.drop_all()
    db.dispose()


@pytest.fixture
def session(database):
    session = database.session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def organization(session):
    org = Organization(name="Agence Riviera", rci_number=RCI)
    session.add(org)
    session.flush()
    return org


@pytest.fixture
def submission(session, organization):
    sub = Submission(organization=organization, year=YEAR, taxonomy_version="2025")
    session.add(sub)
    session.flush()
    return sub


def seed_business_records(session, org):
    """
    Records for the 2025 reporting year plus noise that must be ignored
    (deleted rows, other years).

    Expected aggregates:
        clients kept 6: natural 4, legal 1, trust 1, PEP 1, high risk 1
        countries FR 2, MC 2, GB 1
        2025 transactions 4: purchases 2 (1300.50), sale 1 (2000.00), rental 1 (500.00)
        cash/mixed 2, crypto 1, PEP client transactions 2
        STRs 2, beneficial owners 3 (PEP 1), trainings 2 (7 staff)
    """
    deleted = datetime(2025, 6, 1, tzinfo=timezone.utc)

    pep = Client(organization=org, name="Jean Dupont", client_type="NATURAL_PERSON",
                 is_pep=True, risk_level="HIGH", nationality="fr")
    local = Client(organization=org, name="Marie Rossi", client_type="NATURAL_PERSON",
                   is_pep=False, risk_level="LOW", nationality="MC")
    dashed = Client(organization=org, name="Paul Martin", client_type="NATURAL_PERSON",
                    is_pep=False, risk_level="MEDIUM", nationality="F-R")
    alpha3 = Client(organization=org, name="Luc Bernard", client_type="NATURAL_PERSON",
                    is_pep=False, risk_level="LOW", nationality="FRA")
    company = Client(organization=org, name="Riviera Holdings SAM", client_type="LEGAL_ENTITY",
                     is_pep=False, risk_level="MEDIUM", incorporation_country="MC")
    trust = Client(organization=org, name="Azur Family Trust", client_type="TRUST",
                   is_pep=False, risk_level="LOW", incorporation_country="GB")
    gone = Client(organization=org, name="Old Client", client_type="NATURAL_PERSON",
                  is_pep=True, risk_level="HIGH", nationality="IT", deleted_at=deleted)
    session.add_all([pep, local, dashed, alpha3, company, trust, gone])
    session.flush()

    session.add_all([
        BeneficialOwner(client=company, name="Owner A", is_pep=True, ownership_percentage=Decimal("60")),
        BeneficialOwner(client=company, name="Owner B", is_pep=False, ownership_percentage=Decimal("40")),
        BeneficialOwner(client=trust, name="Settlor", is_pep=False),
    ])

    session.add_all([
        Transaction(organization=org, client=pep, transaction_date=date(2025, 2, 10),
                    transaction_type="PURCHASE", transaction_value=Decimal("1000.50"), payment_method="WIRE"),
        Transaction(organization=org, client=local, transaction_date=date(2025, 5, 3),
                    transaction_type="SALE", transaction_value=Decimal("2000.00"), payment_method="CASH",
                    cash_amount=Decimal("2000.00")),
        Transaction(organization=org, client=pep, transaction_date=date(2025, 12, 31),
                    transaction_type="RENTAL", transaction_value=Decimal("500.00"), payment_method="MIXED",
                    cash_amount=Decimal("100.00")),
        Transaction(organization=org, client=company, transaction_date=date(2025, 1, 1),
                    transaction_type="PURCHASE", transaction_value=Decimal("300.00"), payment_method="CRYPTO"),
        Transaction(organization=org, client=local, transaction_date=date(2024, 12, 31),
                    transaction_type="PURCHASE", transaction_value=Decimal("999.00"), payment_method="CASH"),
        Transaction(organization=org, client=local, transaction_date=date(2025, 7, 1),
                    transaction_type="SALE", transaction_value=Decimal("5000.00"), payment_method="CASH",
                    deleted_at=deleted),
    ])

    session.add_all([
        StrReport(organization=org, report_date=date(2025, 3, 1), reason="CASH"),
        StrReport(organization=org, report_date=date(2025, 9, 15), reason="PEP"),
        StrReport(organization=org, report_date=date(2024, 11, 1), reason="OTHER"),
        StrReport(organization=org, report_date=date(2025, 4, 1), reason="OTHER", deleted_at=deleted),
    ])

    session.add_all([
        Training(organization=org, training_date=date(2025, 3, 20), staff_count=3),
        Training(organization=org, training_date=date(2025, 10, 2), staff_count=4),
        Training(organization=org, training_date=date(2024, 10, 2), staff_count=9),
    ])

    session.add_all([
        Setting(organization=org, key="compliance_officer", value="Jane Doe",
                category="entity_info", xbrl_element="aC1102"),
        Setting(organization=org, key="has_written_procedures", value="Oui",
                category="compliance_policies", xbrl_element="aC1201"),
        Setting(organization=org, key="internal_note", value="not reported", category="entity_info"),
    ])
    session.flush()


@pytest.fixture
def seeded(session, organization):
    seed_business_records(session, organization)
    return organization


@pytest.fixture
def registry_factory():
    return make_registry


@pytest.fixture
def seed_records():
    return seed_business_records
