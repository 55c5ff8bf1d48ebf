"""
Reporting API Routes

Taxonomy browsing and the submission pipeline:
populate -> manifest -> generate -> validate -> compare.

Routes are plain `def` functions so Starlette runs them in its threadpool;
the validation call blocks on network I/O and backoff sleeps.
"""

import logging
from typing import Iterator, List

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from amsf_xbrl.models.api_models import (
    ComparisonInfo,
    ComparisonResponse,
    HealthResponse,
    ManifestEntry,
    ManifestResponse,
    PopulateResponse,
    SectionInfo,
    TaxonomyElementInfo,
    ValidationResult,
)
from amsf_xbrl.models.records import Submission
from amsf_xbrl.services.aggregation_engine import AggregationEngine, AggregationError
from amsf_xbrl.services.comparison_engine import ComparisonEngine
from amsf_xbrl.services.document_generator import DocumentGenerator
from amsf_xbrl.services.element_manifest import ElementManifest, YamlFieldDefinitions

logger = logging.getLogger(__name__)
router = APIRouter()

SERVICE_NAME = "amsf-xbrl-reporting"
SERVICE_VERSION = "0.1.0"


# === Dependencies ===

def get_session(request: Request) -> Iterator[Session]:
    with request.app.state.database.session_scope() as session:
        yield session


def get_registry(request: Request):
    registry = getattr(request.app.state, "registry", None)
    if registry is None or not registry.is_loaded:
        raise HTTPException(status_code=503, detail="Taxonomy not loaded")
    return registry


def _load_submission(session: Session, submission_id: int) -> Submission:
    submission = session.get(Submission, submission_id)
    if submission is None:
        raise HTTPException(status_code=404, detail=f"Submission {submission_id} not found")
    return submission


def _field_definitions(request: Request, year: int):
    path = request.app.state.settings.field_definitions_file
    if not path:
        return None
    return YamlFieldDefinitions.from_file(request.app.state.settings.taxonomy.resolve(path), year)


# === Health & taxonomy ===

@router.get("/health", response_model=HealthResponse)
def health(request: Request):
    """Service health with taxonomy and validator status."""
    registry = getattr(request.app.state, "registry", None)
    client = getattr(request.app.state, "validation_client", None)
    loaded = bool(registry is not None and registry.is_loaded)
    return HealthResponse(
        status="healthy" if loaded else "degraded",
        service=SERVICE_NAME,
        version=SERVICE_VERSION,
        taxonomy_loaded=loaded,
        taxonomy_version=request.app.state.settings.taxonomy.version,
        validator_healthy=client.healthy() if client is not None else None,
    )


@router.get("/taxonomy/elements", response_model=List[TaxonomyElementInfo])
def list_elements(registry=Depends(get_registry)):
    return [
        TaxonomyElementInfo(
            name=el.name,
            type=el.type,
            label=el.label_text,
            verbose_label=el.verbose_label_text,
            short_label=registry.short_label(el.name),
            section=el.section,
            order=el.order,
            dimensional=el.dimensional,
            unit_ref=el.unit_ref,
        )
        for el in registry.elements()
    ]


@router.get("/taxonomy/sections", response_model=List[SectionInfo])
def list_sections(request: Request):
    return [SectionInfo(**s) for s in request.app.state.section_catalog.sections()]


# === Submission pipeline ===

@router.post("/submissions/{submission_id}/populate", response_model=PopulateResponse)
def populate_submission(submission_id: int, request: Request, session: Session = Depends(get_session)):
    submission = _load_submission(session, submission_id)
    engine = AggregationEngine(session, submission, metrics=request.app.state.metrics)
    try:
        result = engine.populate()
    except AggregationError as e:
        logger.error(f"Populate failed for submission {submission_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return PopulateResponse(submission_id=submission_id, **result.to_dict())


@router.get("/submissions/{submission_id}/manifest", response_model=ManifestResponse)
def submission_manifest(submission_id: int, request: Request,
                        session: Session = Depends(get_session), registry=Depends(get_registry)):
    submission = _load_submission(session, submission_id)
    manifest = ElementManifest.for_submission(registry, submission, _field_definitions(request, submission.year))
    answers = manifest.current_data()

    sections = {}
    for section, values in manifest.elements_by_section().items():
        sections[section] = [
            ManifestEntry(
                **ev.to_dict(),
                formatted_value=manifest.formatted_value(ev.name),
                visible=manifest.field_visible(ev.name, answers),
                country_breakdown=ev.country_breakdown if ev.element.dimensional else None,
            )
            for ev in values
        ]
    return ManifestResponse(submission_id=submission.id, year=submission.year, sections=sections)


@router.get("/submissions/{submission_id}/xbrl")
def submission_xbrl(submission_id: int, session: Session = Depends(get_session), registry=Depends(get_registry)):
    submission = _load_submission(session, submission_id)
    generator = DocumentGenerator(submission, registry=registry)
    return Response(
        content=generator.generate(),
        media_type="application/xml",
        headers={"Content-Disposition": f'attachment; filename="{generator.suggested_filename()}"'},
    )


@router.post("/submissions/{submission_id}/validate", response_model=ValidationResult)
def validate_submission(submission_id: int, request: Request,
                        session: Session = Depends(get_session), registry=Depends(get_registry)):
    """Generate the instance document and send it to the external validator."""
    submission = _load_submission(session, submission_id)
    document = DocumentGenerator(submission, registry=registry).generate()
    result = request.app.state.validation_client.validate(document)
    if result.valid and submission.status in ("draft", "in_review"):
        submission.status = "validated"
    logger.info(
        f"Submission {submission_id} validated: valid={result.valid}",
        extra={"submission_id": submission_id, "errors_count": len(result.errors)},
    )
    return result


@router.get("/submissions/{submission_id}/comparison", response_model=ComparisonResponse)
def submission_comparison(submission_id: int, session: Session = Depends(get_session)):
    submission = _load_submission(session, submission_id)
    engine = ComparisonEngine(session, submission)
    previous = engine.previous_submission()
    return ComparisonResponse(
        submission_id=submission.id,
        year=submission.year,
        previous_year=previous.year if previous else None,
        first_submission=previous is None,
        significant_changes=[ComparisonInfo(**c.to_dict()) for c in engine.significant_changes()],
    )
