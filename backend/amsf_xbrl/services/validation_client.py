"""
Validation Client

Posts a generated instance document to the external XBRL validator and
turns its answer into a ValidationResult. Transport failures and 503s are
retried with a linear backoff; content rejections (422) are not. No
exception crosses this boundary: every failure becomes a result.
"""

import json
import logging
import time
from typing import Any, Callable, List, Optional

import httpx

from amsf_xbrl.models.api_models import (
    INVALID_CONTENT,
    ValidationIssue,
    ValidationResult,
)
from amsf_xbrl.utils.logging import ReportLogger

logger = logging.getLogger(__name__)
report_logger = ReportLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8000"
BACKOFF_STEP_SECONDS = 0.1


class _RetryableError(Exception):
    """503 or transport failure; the attempt may be repeated."""


def normalize_issues(items: Any) -> List[ValidationIssue]:
    """Coerce validator items into {code, message, element}."""
    if not isinstance(items, list):
        return []
    issues = []
    for item in items:
        if isinstance(item, dict):
            issues.append(ValidationIssue(
                code=None if item.get("code") is None else str(item.get("code")),
                message=None if item.get("message") is None else str(item.get("message")),
                element=None if item.get("element") is None else str(item.get("element")),
            ))
        elif item is not None:
            issues.append(ValidationIssue(message=str(item)))
    return issues


class ValidationClient:
    """
    Synchronous client for the validator's `/validate` and `/health` endpoints.

    Args:
        base_url: Validator base URL
        connect_timeout: Seconds to establish a connection
        read_timeout: Seconds to wait for a response
        retries: Extra attempts after the first on 503/transport failure
        http_client: Optional httpx.Client (tests pass one with a MockTransport)
        metrics: Optional Metrics instance
        sleep: Backoff sleep function
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        connect_timeout: float = 5.0,
        read_timeout: float = 30.0,
        retries: int = 2,
        http_client: Optional[httpx.Client] = None,
        metrics=None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.retries = retries
        self.timeout = httpx.Timeout(read_timeout, connect=connect_timeout)
        self._client = http_client or httpx.Client(timeout=self.timeout)
        self._owns_client = http_client is None
        self.metrics = metrics
        self.sleep = sleep

    @classmethod
    def from_config(cls, validator_settings, metrics=None) -> "ValidationClient":
        return cls(
            base_url=validator_settings.base_url,
            connect_timeout=validator_settings.connect_timeout,
            read_timeout=validator_settings.read_timeout,
            retries=validator_settings.retries,
            metrics=metrics,
        )

    @property
    def validate_url(self) -> str:
        return f"{self.base_url}/validate"

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    # === Validation ===

    def validate(self, document: str, retries: Optional[int] = None) -> ValidationResult:
        """
        Validate an instance document.

        Args:
            document: XBRL instance XML
            retries: Override of the configured retry count

        Returns:
            ValidationResult; service failures carry a SERVICE_ERROR item
        """
        max_retries = self.retries if retries is None else max(0, retries)
        started = time.time()
        attempts = 0

        while True:
            attempts += 1
            report_logger.log_validation_attempt(attempts, max_retries + 1, self.validate_url)
            try:
                result = self._attempt(document)
                break
            except _RetryableError as e:
                if attempts <= max_retries:
                    logger.warning(f"Validator attempt {attempts} failed, retrying: {e}")
                    if self.metrics:
                        self.metrics.inc_validation_retries()
                    self.sleep(BACKOFF_STEP_SECONDS * attempts)
                    continue
                result = ValidationResult.service_error(str(e))
                break
            except Exception as e:
                logger.error(f"Unexpected validator failure: {e}")
                result = ValidationResult.service_error(f"Validation error: {e}")
                break

        result.attempts = attempts
        self._record(result, started)
        return result

    def _attempt(self, document: str) -> ValidationResult:
        try:
            response = self._client.post(
                self.validate_url,
                json={"documentContent": document},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise _RetryableError(f"Connection error: timeout ({e})") from e
        except httpx.TransportError as e:
            raise _RetryableError(f"Connection error: {e}") from e

        if response.status_code == 503:
            raise _RetryableError("Validation service unavailable: service returned 503")
        if response.status_code == 422:
            return self._parse_unprocessable(response)
        if 200 <= response.status_code < 300:
            return self._parse_success(response)
        return ValidationResult.service_error(f"Validator returned status {response.status_code}")

    def _parse_success(self, response: httpx.Response) -> ValidationResult:
        data = self._json(response)
        if not isinstance(data, dict):
            return ValidationResult.service_error("Invalid response from validator")
        return ValidationResult(
            valid=data.get("valid") is True,
            errors=normalize_issues(data.get("errors") or []),
            warnings=normalize_issues(data.get("warnings") or []),
        )

    def _parse_unprocessable(self, response: httpx.Response) -> ValidationResult:
        """The validator understood and rejected the content."""
        data = self._json(response)
        if not isinstance(data, dict):
            return ValidationResult(
                valid=False,
                errors=[ValidationIssue(code=INVALID_CONTENT, message="Invalid XBRL content (422)")],
            )
        errors = normalize_issues(data.get("errors") or [])
        if not errors:
            errors = [ValidationIssue(message="Validation failed")]
        return ValidationResult(
            valid=False,
            errors=errors,
            warnings=normalize_issues(data.get("warnings") or []),
        )

    @staticmethod
    def _json(response: httpx.Response) -> Optional[Any]:
        try:
            return response.json()
        except (json.JSONDecodeError, ValueError):
            return None

    def _record(self, result: ValidationResult, started: float) -> None:
        if self.metrics:
            if result.is_service_error:
                outcome = "service_error"
            else:
                outcome = "valid" if result.valid else "invalid"
            self.metrics.inc_validation_requests(outcome)
        report_logger.log_validation_complete(
            result.valid, len(result.errors), len(result.warnings), result.attempts,
            int((time.time() - started) * 1000),
        )

    # === Health ===

    def healthy(self) -> bool:
        """True when GET /health answers 2xx."""
        try:
            response = self._client.get(f"{self.base_url}/health", timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.debug(f"Validator health check failed: {e}")
            return False
        return response.is_success
