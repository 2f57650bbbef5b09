"""Audit logging helper functions for key assignment events.

Standard single-line key=value logs so they are easy to index.
"""
from __future__ import annotations
import logging
from typing import Optional, Any

from assessment_portal.utils.datetime import utc_now

_logger = logging.getLogger("assessment_portal.audit")


def _emit(event: str, user_id: Optional[str] = None, **data: Any):
    payload = {"ts": utc_now().isoformat(), "event": event}
    if user_id:
        payload["user_id"] = user_id
    payload.update(data)
    parts = [f"{k}={repr(v)}" for k, v in payload.items()]
    _logger.info("AUDIT " + " ".join(parts))

# Public convenience wrappers

def log_assignment_created(user_id: Optional[str], assignment_id: int, test_id: int, candidate_id: int,
                           is_supervisor_feedback: bool, linked_assignment_id: Optional[int] = None):
    _emit(
        "assignment.create",
        user_id=user_id,
        assignment_id=assignment_id,
        test_id=test_id,
        candidate_id=candidate_id,
        is_supervisor_feedback=is_supervisor_feedback,
        linked_assignment_id=linked_assignment_id,
    )

def log_assignment_deleted(user_id: Optional[str], assignment_id: int):
    _emit("assignment.delete", user_id=user_id, assignment_id=assignment_id)

def log_assignment_started(user_id: Optional[str], assignment_id: int, trigger: str):
    _emit("assignment.start", user_id=user_id, assignment_id=assignment_id, trigger=trigger)

def log_assignment_completed(user_id: Optional[str], assignment_id: int, score: float, path: str):
    _emit("assignment.complete", user_id=user_id, assignment_id=assignment_id, score=score, path=path)

def log_assignments_expired(count: int, assignment_ids: list[int]):
    _emit("assignment.expire", count=count, assignment_ids=assignment_ids)

def log_links_repaired(count: int, assignment_ids: list[int]):
    _emit("assignment.links_repair", count=count, assignment_ids=assignment_ids)

def log_analysis_generated(user_id: Optional[str], assignment_id: int, domains: int, questions: int):
    _emit("analysis.generate", user_id=user_id, assignment_id=assignment_id, domains=domains, questions=questions)

def log_analysis_failed(user_id: Optional[str], assignment_id: int, error_code: str, remote_status: Optional[int]):
    _emit("analysis.fail", user_id=user_id, assignment_id=assignment_id, error_code=error_code, remote_status=remote_status)

def log_email_send(target_email: str, assignment_id: Optional[int], purpose: str, sent: bool):
    _emit("email.send", assignment_id=assignment_id, target=target_email, purpose=purpose, sent=sent)
