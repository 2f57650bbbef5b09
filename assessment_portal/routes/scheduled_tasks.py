"""Scheduled tasks endpoint for cron jobs (Cloud Scheduler).

These endpoints are meant to be called by Cloud Scheduler or similar cron
services. Both are idempotent and safe to re-run.
"""

from fastapi import APIRouter, Depends, HTTPException, Header
from sqlalchemy.orm import Session
from typing import Optional
import logging

from assessment_portal.core.settings import settings
from assessment_portal.db import get_db
from assessment_portal.services.assignment_lifecycle import expire_overdue
from assessment_portal.services.linked_assignments import repair_links

logger = logging.getLogger("assessment_portal.scheduled")
router = APIRouter()


def verify_cron_secret(x_cron_secret: Optional[str] = Header(None)):
    """Verify the cron secret header for scheduled job authentication."""
    if x_cron_secret != settings.cron_secret:
        raise HTTPException(status_code=403, detail="Invalid cron secret")
    return True


@router.post("/expire-assignments")
def trigger_expire_assignments(
    db: Session = Depends(get_db),
    _verified: bool = Depends(verify_cron_secret)
):
    """Move pending/started assignments past their expiry to ``expired``.

    Example Cloud Scheduler config:
    - Schedule: */15 * * * * (every 15 minutes)
    - Target: POST https://api.example.com/scheduled/expire-assignments
    - Headers: X-Cron-Secret: <your-secret>
    """
    expired_ids = expire_overdue(db)
    return {
        "message": "Expiry sweep complete",
        "expired_count": len(expired_ids),
        "assignment_ids": expired_ids,
    }


@router.post("/repair-links")
def trigger_repair_links(
    db: Session = Depends(get_db),
    _verified: bool = Depends(verify_cron_secret)
):
    """Reconcile one-sided candidate/feedback links."""
    repaired = repair_links(db)
    logger.info(f"Link repair finished: {len(repaired)} fix(es)")
    return {
        "message": "Link repair complete",
        "repaired_count": len(repaired),
        "repairs": repaired,
    }
