"""Navigation and repair of candidate <-> supervisor-feedback links.

A candidate assignment lists its feedback forms in ``linked_assignment_ids``;
each feedback form points back through ``linked_assignment_id``. The two
sides must agree.
"""
import logging
from typing import Dict, List

from sqlalchemy.orm import Session

from assessment_portal.models.test_assignment import TestAssignment
from assessment_portal.models.user import User
from assessment_portal.services.assignment_lifecycle import ensure_access, get_assignment_or_404
from assessment_portal.services.audit import log_links_repaired

logger = logging.getLogger("assessment_portal.links")


def resolve_linked(db: Session, assignment: TestAssignment) -> List[TestAssignment]:
    """Feedback form -> its candidate assignment; candidate assignment -> its feedback forms.

    Ids that no longer resolve are skipped.
    """
    if assignment.is_supervisor_feedback:
        if assignment.linked_assignment_id is None:
            return []
        partner = db.get(TestAssignment, assignment.linked_assignment_id)
        return [partner] if partner is not None else []

    linked = []
    for linked_id in assignment.linked_assignment_ids or []:
        partner = db.get(TestAssignment, linked_id)
        if partner is None:
            logger.debug(f"[links] assignment {assignment.id} references missing assignment {linked_id}")
            continue
        linked.append(partner)
    return linked


def get_linked(db: Session, assignment_id: int, user: User) -> Dict[str, object]:
    assignment = get_assignment_or_404(db, assignment_id)
    ensure_access(assignment, user)
    return {"assignment": assignment, "linked": resolve_linked(db, assignment)}


def find_link_asymmetries(db: Session) -> List[Dict[str, object]]:
    """List every one-sided link without modifying anything."""
    problems: List[Dict[str, object]] = []
    feedback_forms = (
        db.query(TestAssignment)
        .filter(TestAssignment.is_supervisor_feedback == True,  # noqa: E712
                TestAssignment.linked_assignment_id.isnot(None))
        .all()
    )
    for form in feedback_forms:
        candidate_side = db.get(TestAssignment, form.linked_assignment_id)
        if candidate_side is not None and form.id not in (candidate_side.linked_assignment_ids or []):
            problems.append({
                "kind": "missing_forward_link",
                "candidate_assignment_id": candidate_side.id,
                "feedback_assignment_id": form.id,
            })

    candidate_side_rows = (
        db.query(TestAssignment)
        .filter(TestAssignment.is_supervisor_feedback == False)  # noqa: E712
        .all()
    )
    for row in candidate_side_rows:
        for linked_id in row.linked_assignment_ids or []:
            form = db.get(TestAssignment, linked_id)
            if form is not None and form.linked_assignment_id != row.id:
                problems.append({
                    "kind": "missing_back_reference",
                    "candidate_assignment_id": row.id,
                    "feedback_assignment_id": form.id,
                })
    return problems


def repair_links(db: Session) -> List[Dict[str, object]]:
    """Make every link symmetric.

    A back-reference with no forward entry gains the forward entry. A forward
    entry whose target has no back-reference sets it when the target is free;
    otherwise the forward entry is dropped, since a form belongs to one
    candidate assignment.
    """
    problems = find_link_asymmetries(db)
    for problem in problems:
        candidate_side = db.get(TestAssignment, problem["candidate_assignment_id"])
        form = db.get(TestAssignment, problem["feedback_assignment_id"])
        if problem["kind"] == "missing_forward_link":
            candidate_side.linked_assignment_ids = [*(candidate_side.linked_assignment_ids or []), form.id]
        elif form.linked_assignment_id is None and form.is_supervisor_feedback:
            form.linked_assignment_id = candidate_side.id
        else:
            candidate_side.linked_assignment_ids = [
                i for i in candidate_side.linked_assignment_ids if i != form.id
            ]
    db.commit()
    if problems:
        touched = sorted({p["candidate_assignment_id"] for p in problems})
        log_links_repaired(len(problems), touched)
    logger.info(f"[links] repaired {len(problems)} asymmetric link(s)")
    return problems
