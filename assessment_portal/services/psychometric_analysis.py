"""Gateway to the external psychometric analysis service.

The request is built from scores already stored on a completed assignment
(never recomputed here), sent in a single POST with a long timeout, and the
response is stored together with the exact payload that produced it.
"""
import logging
import math
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Set

import httpx
from sqlalchemy.orm import Session

from assessment_portal.core.settings import settings
from assessment_portal.exceptions import (
    AnalysisConnectionException,
    AnalysisRemoteException,
    AnalysisServiceException,
    AnalysisTimeoutException,
    ConflictException,
    NotFoundException,
    ValidationException,
)
from assessment_portal.models.psychometric_analysis import PsychometricAnalysis
from assessment_portal.models.question import Question, Subdomain
from assessment_portal.models.test_assignment import AssignmentStatus, TestAssignment
from assessment_portal.models.user import User
from assessment_portal.schemas.test_assignment import answer_response_adapter
from assessment_portal.services import audit
from assessment_portal.services.aggregation import UNKNOWN_SUBDOMAIN
from assessment_portal.services.assignment_lifecycle import ensure_access, get_assignment_or_404
from assessment_portal.services.scoring import display_value
from assessment_portal.utils.datetime import utc_now_naive

logger = logging.getLogger("assessment_portal.analysis")


class InFlightGuard:
    """Rejects a second generate call for an assignment while one is outstanding.

    Check-and-add happens without an await in between, so it is safe on a
    single event loop. Scope is one worker process.
    """

    def __init__(self) -> None:
        self._active: Set[int] = set()

    def is_active(self, assignment_id: int) -> bool:
        return assignment_id in self._active

    @contextmanager
    def hold(self, assignment_id: int):
        if assignment_id in self._active:
            raise ConflictException("Psychometric analysis is already being generated for this assignment")
        self._active.add(assignment_id)
        try:
            yield
        finally:
            self._active.discard(assignment_id)


inflight = InFlightGuard()


def get_http_client() -> httpx.AsyncClient:
    timeout = httpx.Timeout(settings.analysis_timeout_seconds, connect=10.0)
    return httpx.AsyncClient(timeout=timeout)


def _round_score(value: Any) -> int:
    try:
        return int(math.floor(float(value or 0) + 0.5))
    except (TypeError, ValueError):
        return 0


def build_analysis_payload(db: Session, assignment: TestAssignment) -> Dict[str, Any]:
    domain_scores = assignment.domain_scores or []
    subdomain_scores = assignment.subdomain_scores or []

    scores = []
    for domain in domain_scores:
        subdomains = [
            {
                "name": (sub.get("subdomain_name") or UNKNOWN_SUBDOMAIN).upper(),
                "score": _round_score(sub.get("percentage")),
            }
            for sub in subdomain_scores
            if sub.get("domain_id") == domain.get("domain_id")
        ]
        scores.append({
            "name": domain.get("domain_name"),
            "score": _round_score(domain.get("percentage")),
            "subdomains": subdomains,
        })

    answers = list(assignment.answers)
    question_ids = [a.question_id for a in answers]
    questions = {
        q.id: q for q in db.query(Question).filter(Question.id.in_(question_ids)).all()
    } if question_ids else {}
    subdomain_ids = {q.subdomain_id for q in questions.values() if q.subdomain_id}
    subdomain_names = {
        s.id: s.name for s in db.query(Subdomain).filter(Subdomain.id.in_(subdomain_ids)).all()
    } if subdomain_ids else {}

    sub_domains: List[str] = []
    selected: List[str] = []
    texts: List[str] = []
    for answer in answers:
        question = questions.get(answer.question_id)
        if question is None or question.subdomain_id not in subdomain_names:
            continue
        variant = answer_response_adapter.validate_python(answer.response)
        sub_domains.append(subdomain_names[question.subdomain_id].upper())
        selected.append(display_value(question, variant))
        texts.append(question.text)

    candidate = assignment.candidate
    return {
        "scores": scores,
        "items": {
            "sub_domains": sub_domains,
            "question_selected": selected,
            "questions": texts,
        },
        "session_id": str(assignment.id),
        "candidate_name": assignment.candidate_name or (candidate.name if candidate else ""),
    }


async def call_analysis_service(payload: Dict[str, Any]) -> Any:
    """POST the payload once; map each failure mode to its own exception."""
    url = settings.analysis_api_url
    try:
        async with get_http_client() as client:
            response = await client.post(url, json=payload)
    except httpx.TimeoutException as e:
        logger.error(f"[analysis] timeout after {settings.analysis_timeout_seconds}s calling {url}: {e}")
        raise AnalysisTimeoutException("Psychometric analysis service timed out")
    except httpx.RequestError as e:
        logger.error(f"[analysis] could not reach {url}: {e}")
        raise AnalysisConnectionException("Psychometric analysis service is unreachable")

    try:
        body = response.json()
    except ValueError:
        body = response.text

    if response.status_code >= 400:
        logger.error(f"[analysis] remote error {response.status_code}: {str(body)[:500]}")
        raise AnalysisRemoteException(
            "Psychometric analysis service returned an error",
            remote_status=response.status_code,
            remote_body=body,
        )
    return body


def _counts(db: Session, assignment: TestAssignment, record: PsychometricAnalysis) -> Dict[str, int]:
    payload = record.request_payload
    if payload:
        return {
            "domains_analyzed": len(payload.get("scores") or []),
            "questions_analyzed": len((payload.get("items") or {}).get("questions") or []),
        }
    # rows stored before the payload was kept
    question_ids = [a.question_id for a in assignment.answers]
    with_subdomain = 0
    if question_ids:
        with_subdomain = (
            db.query(Question)
            .filter(Question.id.in_(question_ids), Question.subdomain_id.isnot(None))
            .count()
        )
    return {
        "domains_analyzed": len(assignment.domain_scores or []),
        "questions_analyzed": with_subdomain,
    }


def serialize_analysis(db: Session, assignment: TestAssignment, record: PsychometricAnalysis) -> Dict[str, Any]:
    return {
        "assignment_id": assignment.id,
        "analysis": record.analysis_data,
        "generated_at": record.generated_at,
        "api_version": record.api_version,
        **_counts(db, assignment, record),
    }


async def generate_analysis(db: Session, assignment_id: int, user: User) -> Dict[str, Any]:
    assignment = get_assignment_or_404(db, assignment_id)
    ensure_access(assignment, user)
    if assignment.status != AssignmentStatus.completed:
        raise ValidationException("Psychometric analysis is only available for completed tests")

    with inflight.hold(assignment.id):
        payload = build_analysis_payload(db, assignment)
        logger.info(
            f"[analysis] requesting analysis for assignment {assignment.id} "
            f"({len(payload['scores'])} domains, {len(payload['items']['questions'])} questions)"
        )
        # hand the connection back to the pool while the remote side works
        db.rollback()
        try:
            body = await call_analysis_service(payload)
        except AnalysisServiceException as e:
            audit.log_analysis_failed(user.id, assignment_id, e.error_code, e.remote_status)
            raise

        assignment = get_assignment_or_404(db, assignment_id)
        record = assignment.analysis
        if record is None:
            record = PsychometricAnalysis(assignment_id=assignment.id)
            db.add(record)
        record.analysis_data = body
        record.generated_at = utc_now_naive()
        record.api_version = settings.analysis_api_version
        record.request_payload = payload
        db.commit()
        db.refresh(record)

    result = serialize_analysis(db, assignment, record)
    audit.log_analysis_generated(user.id, assignment.id, result["domains_analyzed"], result["questions_analyzed"])
    return result


def get_analysis(db: Session, assignment_id: int, user: User) -> Dict[str, Any]:
    assignment = get_assignment_or_404(db, assignment_id)
    ensure_access(assignment, user)
    record = assignment.analysis
    if record is None:
        raise NotFoundException("No psychometric analysis found for this assignment")
    return serialize_analysis(db, assignment, record)
