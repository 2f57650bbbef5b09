"""Fire-and-forget notification on assignment creation.

Runs as a FastAPI background task after the response is sent, on its own
session. Any failure is logged and dropped; it must never surface to the
caller that created the assignment.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from assessment_portal.models.notification import Notification
from assessment_portal.models.test_assignment import TestAssignment
from assessment_portal.models.user import User
from assessment_portal.services import email as email_service
from assessment_portal.services.audit import log_email_send

logger = logging.getLogger("assessment_portal.notifications")

TEST_ASSIGNED_TITLE = "New Test Assigned"


def build_assignment_message(test_name: str, due: Optional[datetime]) -> str:
    return (
        f"You have been assigned a new test: {test_name}. "
        f"Please complete it by {email_service.format_due(due)}"
    )


def _recipients(db: Session, assignment: TestAssignment) -> List[User]:
    if assignment.is_supervisor_feedback:
        if not assignment.supervisor_id:
            return []
        supervisor = db.get(User, assignment.supervisor_id)
        return [supervisor] if supervisor else []
    return db.query(User).filter(User.candidate_id == assignment.candidate_id).all()


def notify_test_assigned(bind, assignment_id: int) -> None:
    db = Session(bind=bind)
    try:
        assignment = db.get(TestAssignment, assignment_id)
        if assignment is None:
            logger.warning(f"[notify] assignment {assignment_id} vanished before notification")
            return
        test_name = assignment.test.name if assignment.test else f"Test #{assignment.test_id}"
        message = build_assignment_message(test_name, assignment.expires_at)

        users = _recipients(db, assignment)
        for user in users:
            db.add(Notification(
                user_id=user.id,
                title=TEST_ASSIGNED_TITLE,
                message=message,
                notification_type="test_assignment",
                link=f"/test-assignments/{assignment.id}",
            ))
        db.commit()

        if assignment.is_supervisor_feedback:
            to_email = users[0].email if users else None
            display_name = assignment.supervisor_name or (users[0].name if users else "Supervisor")
        else:
            candidate = assignment.candidate
            to_email = candidate.email if candidate else None
            display_name = candidate.name if candidate else "Candidate"
        if not to_email:
            logger.info(f"[notify] no email recipient for assignment {assignment_id}")
            return

        html, plain = email_service.render_test_assigned_email(display_name, test_name, assignment.expires_at)
        sent = email_service.send_email(to_email, TEST_ASSIGNED_TITLE, html, plain)
        log_email_send(to_email, assignment_id, "test_assigned", sent)
    except Exception as e:
        db.rollback()
        logger.error(f"[notify] failed for assignment {assignment_id}: {e}", exc_info=True)
    finally:
        db.close()
