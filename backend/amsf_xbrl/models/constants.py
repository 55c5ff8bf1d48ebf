"""
AMSF enumeration values shared by the record models and the reporting services.
"""

CLIENT_TYPES = ("NATURAL_PERSON", "LEGAL_ENTITY", "TRUST")
TRANSACTION_TYPES = ("PURCHASE", "SALE", "RENTAL")
PAYMENT_METHODS = ("WIRE", "CASH", "CHECK", "CRYPTO", "MIXED")
CASH_PAYMENT_METHODS = ("CASH", "MIXED")
RISK_LEVELS = ("LOW", "MEDIUM", "HIGH")
STR_REASONS = ("CASH", "PEP", "UNUSUAL_PATTERN", "OTHER")
SETTING_CATEGORIES = ("entity_info", "kyc_procedures", "compliance_policies", "training", "controls")
SUBMISSION_STATUSES = ("draft", "in_review", "validated", "completed")

SOURCE_CALCULATED = "calculated"
SOURCE_FROM_SETTINGS = "from_settings"
SOURCE_MANUAL = "manual"
SUBMISSION_VALUE_SOURCES = (SOURCE_CALCULATED, SOURCE_FROM_SETTINGS, SOURCE_MANUAL)

# Canonical boolean tokens written to the instance document
YES_TOKEN = "Yes"
NO_TOKEN = "No"
TRUTHY_TOKENS = frozenset(["true", "1", "yes", "oui"])

DEFAULT_TAXONOMY_VERSION = "2025"


def to_yes_no(flag) -> str:
    return YES_TOKEN if flag else NO_TOKEN


def is_truthy_token(value) -> bool:
    return str(value).strip().lower() in TRUTHY_TOKENS
