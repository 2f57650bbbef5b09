"""Assignment lifecycle: creation, state transitions, answer capture and completion.

State machine::

    pending --start / first get_questions--> started --complete--> completed
    pending|started --expire_overdue (past expires_at)--> expired

Every operation works on the caller's session and commits its own unit of
work; a failure rolls the session back so the assignment is left unchanged.
"""
import logging
import math
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from assessment_portal.core.settings import settings
from assessment_portal.exceptions import (
    AppException,
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from assessment_portal.models.candidate import Candidate, Organization
from assessment_portal.models.question import Domain, Question, Subdomain
from assessment_portal.models.test_assignment import (
    OPEN_STATUSES,
    AssignmentAnswer,
    AssignmentStatus,
    TestAssignment,
)
from assessment_portal.models.test_definition import TestDefinition
from assessment_portal.models.user import User, UserRole
from assessment_portal.schemas.test_assignment import AssignmentCreate, AssignmentOut, answer_response_adapter
from assessment_portal.services import audit
from assessment_portal.services.activity_analytics import record_event, report_for_assignment
from assessment_portal.services.aggregation import ScoredAnswer, aggregate
from assessment_portal.services.notifications import notify_test_assigned
from assessment_portal.services.scoring import coerce_response, score_answer
from assessment_portal.utils.datetime import to_naive_utc, utc_now_naive
from assessment_portal.utils.sequence import next_sequence

logger = logging.getLogger("assessment_portal.lifecycle")

MAX_UPSERT_ATTEMPTS = 3


# ---------------- lookups & access -----------------
def get_assignment_or_404(db: Session, assignment_id: int) -> TestAssignment:
    assignment = db.get(TestAssignment, assignment_id)
    if assignment is None:
        raise NotFoundException("Test assignment not found")
    return assignment


def can_access(assignment: TestAssignment, user: User) -> bool:
    """Admins see everything; candidates their own tests; supervisors their own feedback forms."""
    if user.role == UserRole.admin:
        return True
    if user.role == UserRole.candidate:
        return (
            not assignment.is_supervisor_feedback
            and user.candidate_id is not None
            and user.candidate_id == assignment.candidate_id
        )
    return bool(assignment.is_supervisor_feedback) and assignment.supervisor_id == user.id


def ensure_access(assignment: TestAssignment, user: User) -> None:
    if not can_access(assignment, user):
        raise ForbiddenException("You are not authorized to access this test assignment")


def _test_name(assignment: TestAssignment) -> str:
    return assignment.test.name if assignment.test else f"Test #{assignment.test_id}"


def _schedule_notification(db: Session, background_tasks: Optional[BackgroundTasks], assignment_id: int) -> None:
    if background_tasks is None:
        return
    background_tasks.add_task(notify_test_assigned, db.get_bind(), assignment_id)


# ---------------- creation -----------------
def _build_assignment(db: Session, payload: AssignmentCreate, assigned_by: Optional[str]) -> TestAssignment:
    scheduled_at = to_naive_utc(payload.scheduled_at)
    expires_at = to_naive_utc(payload.expires_at)
    if expires_at <= scheduled_at:
        raise ValidationException("expires_at must be after scheduled_at")
    if payload.is_supervisor_feedback and not payload.supervisor_id:
        raise ValidationException("Supervisor feedback assignments require supervisor_id")

    test = db.get(TestDefinition, payload.test_id)
    if test is None:
        raise NotFoundException(f"Test {payload.test_id} not found")
    candidate = db.get(Candidate, payload.candidate_id)
    if candidate is None:
        raise NotFoundException(f"Candidate {payload.candidate_id} not found")
    if db.get(TestAssignment, payload.assignment_id) is not None:
        raise ValidationException(f"Assignment ID {payload.assignment_id} already exists")

    return TestAssignment(
        id=payload.assignment_id,
        test_id=test.id,
        candidate_id=candidate.id,
        assigned_by=assigned_by,
        scheduled_at=scheduled_at,
        expires_at=expires_at,
        status=AssignmentStatus.pending,
        is_supervisor_feedback=payload.is_supervisor_feedback,
        supervisor_id=payload.supervisor_id,
        supervisor_name=payload.supervisor_name,
        candidate_name=payload.candidate_name or candidate.name,
        domain_scores=[],
        subdomain_scores=[],
        linked_assignment_ids=[],
    )


def create_assignment(
    db: Session,
    payload: AssignmentCreate,
    assigned_by: Optional[str] = None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> TestAssignment:
    assignment = _build_assignment(db, payload, assigned_by)
    db.add(assignment)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationException(f"Assignment ID {payload.assignment_id} already exists")
    db.refresh(assignment)
    audit.log_assignment_created(assigned_by, assignment.id, assignment.test_id,
                                 assignment.candidate_id, assignment.is_supervisor_feedback)
    _schedule_notification(db, background_tasks, assignment.id)
    return assignment


def _build_feedback_form(db: Session, primary: TestAssignment, payload: AssignmentCreate) -> Optional[TestAssignment]:
    """Paired supervisor form for ``primary``; None (logged) when it cannot be created."""
    feedback_id = primary.id + settings.supervisor_assignment_offset
    if db.get(TestAssignment, feedback_id) is not None:
        logger.warning(f"[batch] supervisor assignment {feedback_id} already exists; not linking to {primary.id}")
        return None
    if db.get(TestDefinition, payload.supervisor_test_id) is None:
        logger.warning(f"[batch] supervisor test {payload.supervisor_test_id} not found for assignment {primary.id}")
        return None
    supervisor_name = payload.supervisor_name
    if not supervisor_name:
        supervisor = db.get(User, payload.supervisor_id)
        supervisor_name = supervisor.name if supervisor else None

    return TestAssignment(
        id=feedback_id,
        test_id=payload.supervisor_test_id,
        candidate_id=primary.candidate_id,
        assigned_by=primary.assigned_by,
        scheduled_at=primary.scheduled_at,
        expires_at=primary.expires_at,
        status=AssignmentStatus.pending,
        is_supervisor_feedback=True,
        supervisor_id=payload.supervisor_id,
        supervisor_name=supervisor_name,
        candidate_name=primary.candidate_name,
        linked_assignment_id=primary.id,
        domain_scores=[],
        subdomain_scores=[],
        linked_assignment_ids=[],
    )


def create_batch(
    db: Session,
    payloads: List[AssignmentCreate],
    assigned_by: Optional[str] = None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Dict[str, List[Any]]:
    """Create each assignment independently, collecting per-item failures.

    The primary assignment, its optional feedback form and both sides of the
    link are committed together, so a pair is never left half-linked.
    """
    if not payloads:
        raise ValidationException("No assignments provided")

    result: Dict[str, List[Any]] = {"success": [], "failures": [], "supervisor_assignments": []}
    for payload in payloads:
        try:
            primary = _build_assignment(db, payload, assigned_by)
            db.add(primary)
            db.flush()

            feedback = None
            if payload.auto_assign_supervisor and payload.supervisor_id and payload.supervisor_test_id:
                feedback = _build_feedback_form(db, primary, payload)
                if feedback is not None:
                    db.add(feedback)
                    primary.linked_assignment_ids = [*(primary.linked_assignment_ids or []), feedback.id]
            db.commit()
        except AppException as e:
            db.rollback()
            result["failures"].append({"assignment_id": payload.assignment_id, "message": e.detail})
            continue
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[batch] database error creating assignment {payload.assignment_id}: {e}")
            result["failures"].append({"assignment_id": payload.assignment_id, "message": "Database error while creating assignment"})
            continue

        db.refresh(primary)
        result["success"].append(primary)
        audit.log_assignment_created(assigned_by, primary.id, primary.test_id, primary.candidate_id,
                                     primary.is_supervisor_feedback)
        _schedule_notification(db, background_tasks, primary.id)
        if feedback is not None:
            db.refresh(feedback)
            result["supervisor_assignments"].append(feedback)
            audit.log_assignment_created(assigned_by, feedback.id, feedback.test_id, feedback.candidate_id,
                                         True, linked_assignment_id=primary.id)
            _schedule_notification(db, background_tasks, feedback.id)

    logger.info(
        f"[batch] created={len(result['success'])} failed={len(result['failures'])} "
        f"supervisor_forms={len(result['supervisor_assignments'])}"
    )
    return result


# ---------------- transitions -----------------
def _ensure_in_window(assignment: TestAssignment, now) -> None:
    if now < assignment.scheduled_at:
        raise ValidationException("This test is not yet available")
    if now > assignment.expires_at:
        raise ValidationException("This test has expired")


def start_assignment(db: Session, assignment_id: int, user: User) -> TestAssignment:
    assignment = get_assignment_or_404(db, assignment_id)
    ensure_access(assignment, user)
    if assignment.status == AssignmentStatus.completed:
        raise ValidationException("Test already completed")
    if assignment.status == AssignmentStatus.expired:
        raise ValidationException("This test has expired")
    now = utc_now_naive()
    _ensure_in_window(assignment, now)

    # Resuming keeps the original start time
    if assignment.start_time is None:
        assignment.start_time = now
    assignment.status = AssignmentStatus.started
    db.commit()
    db.refresh(assignment)
    audit.log_assignment_started(user.id, assignment.id, "start")
    return assignment


def _sanitize_question(question: Question, privileged: bool) -> Dict[str, Any]:
    options = []
    for opt in question.options:
        item = {"id": opt.id, "position": opt.position, "text": opt.text}
        if privileged:
            item["score"] = opt.score
            item["is_correct"] = opt.is_correct
        options.append(item)
    return {
        "id": question.id,
        "text": question.text,
        "question_type": question.question_type.value,
        "is_likert": question.is_likert,
        "is_reversed": question.is_reversed,
        "likert_points": question.likert_points,
        "domain_id": question.domain_id,
        "subdomain_id": question.subdomain_id,
        "options": options,
    }


def get_questions(db: Session, assignment_id: int, user: User) -> Dict[str, Any]:
    """Question sheet for an assignment; the first view of a pending assignment starts it."""
    assignment = get_assignment_or_404(db, assignment_id)
    ensure_access(assignment, user)
    privileged = user.role == UserRole.admin

    if assignment.status == AssignmentStatus.pending:
        now = utc_now_naive()
        if assignment.scheduled_at <= now <= assignment.expires_at:
            assignment.status = AssignmentStatus.started
            assignment.start_time = assignment.start_time or now
            db.commit()
            db.refresh(assignment)
            audit.log_assignment_started(user.id, assignment.id, "first_view")
        elif not privileged:
            _ensure_in_window(assignment, now)

    test = assignment.test
    if test is None:
        raise NotFoundException("Test not found for this assignment")

    answers = []
    for answer in assignment.answers:
        item = {"question_id": answer.question_id, "response": answer.response}
        if privileged:
            item["score_obtained"] = answer.score_obtained
            item["max_score"] = answer.max_score
        answers.append(item)

    candidate = assignment.candidate
    organization = None
    if candidate is not None and candidate.org_id is not None:
        org = db.get(Organization, candidate.org_id)
        if org is not None:
            organization = {
                "org_id": org.id,
                "org_name": org.name,
                "terms_and_conditions": org.terms_and_conditions,
            }

    candidate_info = None
    if assignment.is_supervisor_feedback and candidate is not None:
        candidate_info = {
            "candidate_id": candidate.id,
            "name": candidate.name,
            "email": candidate.email,
            "employee_id": candidate.employee_id,
        }

    return {
        "assignment_id": assignment.id,
        "status": assignment.status.value,
        "test": {
            "id": test.id,
            "name": test.name,
            "instruction": test.instruction,
            "closing_remarks": test.closing_remarks,
            "duration_minutes": test.duration_minutes,
            "is_supervisor_feedback": assignment.is_supervisor_feedback,
        },
        "questions": [_sanitize_question(q, privileged) for q in test.questions],
        "answers": answers,
        "start_time": assignment.start_time,
        "expires_at": assignment.expires_at,
        "current_page": assignment.current_page,
        "total_pages": assignment.total_pages,
        "organization": organization,
        "candidate": candidate_info,
    }


def _ensure_accepting_answers(assignment: TestAssignment) -> None:
    if assignment.status == AssignmentStatus.completed:
        raise ValidationException("Cannot submit answers to a completed test")
    if assignment.status not in OPEN_STATUSES or utc_now_naive() > assignment.expires_at:
        raise ValidationException("This test has expired and cannot accept answers")


def submit_answer(
    db: Session,
    assignment_id: int,
    question_id: int,
    user: User,
    response=None,
    raw_answer: Any = None,
) -> AssignmentAnswer:
    """Upsert the answer for ``question_id``; the latest submission wins."""
    assignment = get_assignment_or_404(db, assignment_id)
    ensure_access(assignment, user)
    _ensure_accepting_answers(assignment)

    question = db.get(Question, question_id)
    if question is None:
        raise NotFoundException(f"Question {question_id} not found")
    test = assignment.test
    if test is not None and test.question_links and question_id not in {link.question_id for link in test.question_links}:
        raise ValidationException(f"Question {question_id} is not part of this test")

    variant = response if response is not None else coerce_response(question, raw_answer)
    score_obtained, max_score = score_answer(question, variant)
    stored = variant.model_dump()

    for attempt in range(1, MAX_UPSERT_ATTEMPTS + 1):
        answer = (
            db.query(AssignmentAnswer)
            .filter(AssignmentAnswer.assignment_id == assignment_id,
                    AssignmentAnswer.question_id == question_id)
            .first()
        )
        if answer is None:
            answer = AssignmentAnswer(
                assignment_id=assignment_id,
                question_id=question_id,
                sequence=next_sequence(db, AssignmentAnswer, assignment_id),
            )
            db.add(answer)
        answer.response = stored
        answer.score_obtained = score_obtained
        answer.max_score = max_score
        answer.answered_at = utc_now_naive()
        try:
            db.commit()
        except IntegrityError:
            # another writer inserted this question (or took the sequence) first
            db.rollback()
            logger.warning(f"[answer] upsert race on assignment {assignment_id} question {question_id} (attempt {attempt})")
            continue
        db.refresh(answer)
        return answer
    raise ConflictException("Could not save answer; please retry")


def log_activity(db: Session, assignment_id: int, activity_type: str, user: User,
                 data: Optional[Dict[str, Any]] = None, timestamp=None):
    assignment = get_assignment_or_404(db, assignment_id)
    ensure_access(assignment, user)
    return record_event(db, assignment.id, activity_type, data, timestamp)


def save_progress(db: Session, assignment_id: int, current_page: int, total_pages: int, user: User) -> TestAssignment:
    assignment = get_assignment_or_404(db, assignment_id)
    ensure_access(assignment, user)
    if assignment.status == AssignmentStatus.completed:
        raise ValidationException("Cannot save progress on a completed test")
    if current_page > total_pages:
        raise ValidationException("current_page cannot exceed total_pages")
    assignment.current_page = current_page
    assignment.total_pages = total_pages
    assignment.page_completed = max(assignment.page_completed or 0, current_page)
    db.commit()
    db.refresh(assignment)
    return assignment


# ---------------- completion -----------------
def complete_simple(db: Session, assignment_id: int, score: float, user: User) -> TestAssignment:
    """Trusted shortcut: record a caller-computed score with no aggregation."""
    assignment = get_assignment_or_404(db, assignment_id)
    ensure_access(assignment, user)
    if assignment.status == AssignmentStatus.completed:
        raise ValidationException("Test already completed")
    assignment.status = AssignmentStatus.completed
    assignment.end_time = utc_now_naive()
    assignment.score = score
    db.commit()
    db.refresh(assignment)
    audit.log_assignment_completed(user.id, assignment.id, score, "simple")
    return assignment


def complete_with_aggregation(db: Session, assignment_id: int, user: User) -> TestAssignment:
    """Rescore every answer against current question definitions and aggregate.

    Re-running on a completed assignment regenerates identical scores for an
    unchanged answer set and keeps the original end time.
    """
    assignment = get_assignment_or_404(db, assignment_id)
    ensure_access(assignment, user)
    answers = list(assignment.answers)
    if not answers:
        raise ValidationException("No answers submitted for this test")
    already_completed = assignment.status == AssignmentStatus.completed
    if not already_completed:
        if assignment.status == AssignmentStatus.expired or utc_now_naive() > assignment.expires_at:
            raise ValidationException("This test has expired")

    try:
        question_ids = [a.question_id for a in answers]
        questions = {q.id: q for q in db.query(Question).filter(Question.id.in_(question_ids)).all()}
        domain_ids = {q.domain_id for q in questions.values() if q.domain_id}
        subdomain_ids = {q.subdomain_id for q in questions.values() if q.subdomain_id}
        domain_names = {
            d.id: d.name for d in db.query(Domain).filter(Domain.id.in_(domain_ids)).all()
        } if domain_ids else {}
        subdomains = {
            s.id: (s.name, s.domain_id)
            for s in db.query(Subdomain).filter(Subdomain.id.in_(subdomain_ids)).all()
        } if subdomain_ids else {}

        scored = []
        for answer in answers:
            question = questions.get(answer.question_id)
            if question is not None:
                variant = answer_response_adapter.validate_python(answer.response)
                answer.score_obtained, answer.max_score = score_answer(question, variant)
            scored.append(ScoredAnswer(answer.question_id, answer.score_obtained, answer.max_score))

        report = aggregate(scored, questions, domain_names, subdomains)

        assignment.score = report.overall_percentage
        assignment.domain_scores = report.domain_scores
        assignment.subdomain_scores = report.subdomain_scores
        if not already_completed:
            assignment.status = AssignmentStatus.completed
            assignment.end_time = utc_now_naive()
        db.commit()
    except Exception:
        db.rollback()
        logger.error(f"[complete] aggregation failed for assignment {assignment_id}", exc_info=True)
        raise

    db.refresh(assignment)
    audit.log_assignment_completed(user.id, assignment.id, assignment.score, "aggregated")
    return assignment


# ---------------- deletion & expiry -----------------
def delete_assignment(db: Session, assignment_id: int, user: User) -> None:
    assignment = get_assignment_or_404(db, assignment_id)
    if assignment.status != AssignmentStatus.pending:
        raise ValidationException("Only pending assignments can be deleted")

    # Drop the partner side of any link so navigation never dangles
    if assignment.linked_assignment_id is not None:
        partner = db.get(TestAssignment, assignment.linked_assignment_id)
        if partner is not None and assignment.id in (partner.linked_assignment_ids or []):
            partner.linked_assignment_ids = [i for i in partner.linked_assignment_ids if i != assignment.id]
    for linked_id in assignment.linked_assignment_ids or []:
        partner = db.get(TestAssignment, linked_id)
        if partner is not None and partner.linked_assignment_id == assignment.id:
            partner.linked_assignment_id = None

    db.delete(assignment)
    db.commit()
    audit.log_assignment_deleted(user.id, assignment_id)


def expire_overdue(db: Session, now=None) -> List[int]:
    """Mark pending/started assignments past their window as expired."""
    now = to_naive_utc(now) or utc_now_naive()
    overdue = (
        db.query(TestAssignment)
        .filter(TestAssignment.status.in_(OPEN_STATUSES), TestAssignment.expires_at < now)
        .all()
    )
    for assignment in overdue:
        assignment.status = AssignmentStatus.expired
    db.commit()
    expired_ids = [a.id for a in overdue]
    if expired_ids:
        audit.log_assignments_expired(len(expired_ids), expired_ids)
    logger.info(f"[expire] {len(expired_ids)} assignment(s) expired")
    return expired_ids


# ---------------- reads -----------------
def get_assignment(db: Session, assignment_id: int, user: User) -> TestAssignment:
    assignment = get_assignment_or_404(db, assignment_id)
    ensure_access(assignment, user)
    return assignment


def summarize(assignment: TestAssignment) -> Dict[str, Any]:
    """List-view row: assignment fields plus display names that degrade to placeholders."""
    row = AssignmentOut.model_validate(assignment).model_dump()
    candidate = assignment.candidate
    row["test_name"] = _test_name(assignment)
    row["candidate_name"] = assignment.candidate_name or (candidate.name if candidate else None)
    row["candidate_email"] = candidate.email if candidate else None
    return row


def list_assignments(db: Session, page: int = 1, limit: Optional[int] = None) -> Dict[str, Any]:
    limit = limit or settings.assignments_page_size
    query = db.query(TestAssignment).order_by(TestAssignment.created_at.desc(), TestAssignment.id.desc())
    total = query.count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return {
        "items": [summarize(a) for a in rows],
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if total else 0,
    }


def list_candidate_assignments(db: Session, candidate_id: int, user: User) -> List[Dict[str, Any]]:
    if user.role == UserRole.candidate and user.candidate_id != candidate_id:
        raise ForbiddenException("You can only view your own assignments")
    if user.role == UserRole.supervisor:
        raise ForbiddenException("Supervisors cannot list candidate assignments")
    rows = (
        db.query(TestAssignment)
        .filter(TestAssignment.candidate_id == candidate_id,
                TestAssignment.is_supervisor_feedback == False)  # noqa: E712
        .order_by(TestAssignment.scheduled_at.desc())
        .all()
    )
    return [summarize(a) for a in rows]


def list_supervisor_assignments(db: Session, user: User) -> List[Dict[str, Any]]:
    if user.role == UserRole.candidate:
        raise ForbiddenException("Supervisor access required")
    query = db.query(TestAssignment).filter(TestAssignment.is_supervisor_feedback == True)  # noqa: E712
    if user.role != UserRole.admin:
        query = query.filter(TestAssignment.supervisor_id == user.id)
    return [summarize(a) for a in query.order_by(TestAssignment.created_at.desc()).all()]


def _domain_key(name: Optional[str]) -> str:
    if not name:
        return "unknown"
    return "_".join(name.lower().split())


def get_detailed_scores(db: Session, assignment_id: int, user: User) -> Dict[str, Any]:
    assignment = get_assignment_or_404(db, assignment_id)
    ensure_access(assignment, user)
    if assignment.status != AssignmentStatus.completed:
        raise ValidationException("Test is not completed yet. Scores are only available for completed tests.")

    domain_scores = {
        _domain_key(d.get("domain_name")): d.get("percentage", 0)
        for d in assignment.domain_scores or []
    }
    subdomain_scores = [
        {
            "subdomain_id": s.get("subdomain_id"),
            "subdomain_name": s.get("subdomain_name") or "Unknown Subdomain",
            "domain_id": s.get("domain_id"),
            "percentage": s.get("percentage", 0),
        }
        for s in assignment.subdomain_scores or []
    ]
    answers = list(assignment.answers)
    return {
        "assignment_id": assignment.id,
        "overall_score": assignment.score or 0,
        "total_questions": len(answers),
        "total_answered": sum(1 for a in answers if _is_answered(a.response)),
        "status": assignment.status.value,
        "start_time": assignment.start_time,
        "end_time": assignment.end_time,
        "domain_scores": domain_scores,
        "subdomain_scores": subdomain_scores,
        "domain_breakdown": assignment.domain_scores or [],
        "activity_analytics": report_for_assignment(assignment),
    }


def _is_answered(response: Optional[Dict[str, Any]]) -> bool:
    if not response:
        return False
    if response.get("kind") == "text":
        return bool((response.get("text") or "").strip())
    return True
