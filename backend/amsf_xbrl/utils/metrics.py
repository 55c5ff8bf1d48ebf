"""
Metrics utility with a Prometheus exporter.

If `observability.prometheus.enabled` is true in config, registers a `/metrics`
route on the FastAPI app and exposes counters/gauges for the reporting
pipeline.
"""

from __future__ import annotations

from typing import Optional
import logging

from prometheus_client import Counter, Gauge, CollectorRegistry, CONTENT_TYPE_LATEST, generate_latest

logger = logging.getLogger(__name__)


class Metrics:
    def __init__(self, enabled: bool = False, namespace: str = "amsf_xbrl") -> None:
        self.enabled = enabled
        self.namespace = namespace
        self.registry: Optional[CollectorRegistry] = None
        self.taxonomy_elements_loaded: Optional[Gauge] = None
        self.populate_runs_total: Optional[Counter] = None
        self.validation_requests_total: Optional[Counter] = None
        self.validation_retries_total: Optional[Counter] = None
        if self.enabled:
            self.registry = CollectorRegistry()
            self.taxonomy_elements_loaded = Gauge(
                f"{namespace}_taxonomy_elements_loaded",
                "Number of taxonomy elements in the registry",
                registry=self.registry,
            )
            self.populate_runs_total = Counter(
                f"{namespace}_populate_runs_total",
                "Total populate passes by outcome",
                ["outcome"],
                registry=self.registry,
            )
            self.validation_requests_total = Counter(
                f"{namespace}_validation_requests_total",
                "Total validation calls by outcome",
                ["outcome"],
                registry=self.registry,
            )
            self.validation_retries_total = Counter(
                f"{namespace}_validation_retries_total",
                "Total retried validation attempts",
                registry=self.registry,
            )

    def set_taxonomy_elements_loaded(self, value: int) -> None:
        if self.enabled and self.taxonomy_elements_loaded is not None:
            self.taxonomy_elements_loaded.set(float(value))

    def inc_populate_runs(self, outcome: str) -> None:
        if self.enabled and self.populate_runs_total is not None:
            self.populate_runs_total.labels(outcome=outcome).inc()

    def inc_validation_requests(self, outcome: str) -> None:
        if self.enabled and self.validation_requests_total is not None:
            self.validation_requests_total.labels(outcome=outcome).inc()

    def inc_validation_retries(self, value: int = 1) -> None:
        if self.enabled and self.validation_retries_total is not None and value:
            self.validation_retries_total.inc(value)

    def render(self) -> bytes:
        if not self.enabled or not self.registry:
            return b""
        return generate_latest(self.registry)

    def mount_endpoint(self, app, path: str = "/metrics") -> None:
        if not self.enabled or not self.registry:
            return
        from fastapi import Response

        @app.get(path, include_in_schema=False)
        def metrics_endpoint():
            return Response(content=self.render(), media_type=CONTENT_TYPE_LATEST)

        logger.info("Prometheus metrics endpoint mounted at %s", path)
