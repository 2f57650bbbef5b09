"""Behavioral analytics over the per-assignment activity stream.

Two counters are kept on the assignment row and bumped in SQL as events
arrive (``fullscreen_violations``, ``total_offscreen_time``). Per-question
dwell time is derived on demand by ``build_activity_report``.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from assessment_portal.exceptions import ConflictException
from assessment_portal.models.test_assignment import ActivityEvent, TestAssignment
from assessment_portal.utils.datetime import to_naive_utc, utc_now_naive
from assessment_portal.utils.sequence import next_sequence

logger = logging.getLogger("assessment_portal.analytics")

ACTIVITY_TYPES = (
    "test_start",
    "page_change",
    "question_start",
    "question_end",
    "question_time",
    "option_select",
    "fullscreen_exit",
    "fullscreen_enter",
    "test_submit",
)

NAV_UNKNOWN = "unknown"
NAV_ANSWER_FALLBACK = "answer_selection_fallback"
NAV_TEST_COMPLETION = "test_completion"

MAX_APPEND_ATTEMPTS = 3


def record_event(
    db: Session,
    assignment_id: int,
    activity_type: str,
    data: Optional[Dict[str, Any]] = None,
    timestamp: Optional[datetime] = None,
) -> ActivityEvent:
    """Append one event and bump the counters it affects, in one commit.

    A concurrent writer taking the same sequence number makes the insert fail
    the unique constraint; the append is retried with a fresh number.
    """
    data = data or {}
    stamp = to_naive_utc(timestamp) or utc_now_naive()
    for attempt in range(1, MAX_APPEND_ATTEMPTS + 1):
        event = ActivityEvent(
            assignment_id=assignment_id,
            sequence=next_sequence(db, ActivityEvent, assignment_id),
            activity_type=activity_type,
            data=data,
            timestamp=stamp,
        )
        db.add(event)
        try:
            apply_counters(db, assignment_id, activity_type, data)
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning(
                f"[activity] sequence collision on assignment {assignment_id} (attempt {attempt})"
            )
            continue
        db.refresh(event)
        return event
    raise ConflictException("Could not append activity event; please retry")


def apply_counters(db: Session, assignment_id: int, activity_type: str, data: Dict[str, Any]) -> None:
    if activity_type == "fullscreen_exit":
        values = {TestAssignment.fullscreen_violations: TestAssignment.fullscreen_violations + 1}
    elif activity_type == "fullscreen_enter":
        duration = _as_ms(data.get("offscreen_duration"))
        if not duration or duration <= 0:
            return
        values = {TestAssignment.total_offscreen_time: TestAssignment.total_offscreen_time + duration}
    else:
        return
    db.query(TestAssignment).filter(TestAssignment.id == assignment_id).update(
        values, synchronize_session=False
    )


def _as_ms(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return None


def _question_key(value: Any):
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return str(value)


def _ms_between(earlier: datetime, later: datetime) -> int:
    return int(round((later - earlier).total_seconds() * 1000))


def _iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts else None


def _serialize_event(event) -> Dict[str, Any]:
    return {
        "sequence": event.sequence,
        "activity_type": event.activity_type,
        "data": event.data or {},
        "timestamp": _iso(event.timestamp),
    }


def compute_question_times(events: Iterable[Any]) -> Dict[Any, Dict[str, Any]]:
    """Per-question dwell time with a three-tier fallback.

    1. ``question_time`` events carrying ``time_spent`` (ms), summed across
       revisits, each contribution tagged with its ``navigation_type``.
    2. For questions with no such event: gap between the latest
       ``question_start`` and the first later ``option_select`` for it.
    3. On ``test_submit``: the most recent ``question_start`` before it whose
       question still has no timing gets ``submit - start``.
    """
    ordered = sorted(events, key=lambda e: (e.timestamp, e.sequence or 0))
    timings: Dict[Any, Dict[str, Any]] = {}

    for event in ordered:
        if event.activity_type != "question_time":
            continue
        data = event.data or {}
        question_id = _question_key(data.get("question_id"))
        spent = _as_ms(data.get("time_spent"))
        if question_id is None or not spent:
            continue
        entry = timings.setdefault(question_id, {"total": 0, "views": 0, "events": []})
        entry["total"] += spent
        entry["views"] += 1
        entry["events"].append({
            "time_spent": spent,
            "navigation_type": data.get("navigation_type") or NAV_UNKNOWN,
            "timestamp": _iso(event.timestamp),
        })

    starts: Dict[Any, datetime] = {}
    for event in ordered:
        data = event.data or {}
        question_id = _question_key(data.get("question_id"))
        if question_id is None:
            continue
        if event.activity_type == "question_start":
            starts[question_id] = event.timestamp
        elif event.activity_type == "option_select" and question_id not in timings and question_id in starts:
            spent = _ms_between(starts[question_id], event.timestamp)
            timings[question_id] = {
                "total": spent,
                "views": 1,
                "events": [{
                    "time_spent": spent,
                    "navigation_type": NAV_ANSWER_FALLBACK,
                    "timestamp": _iso(event.timestamp),
                    "answer": data.get("answer"),
                }],
            }

    submit_index = next(
        (idx for idx, event in enumerate(ordered) if event.activity_type == "test_submit"), None
    )
    if submit_index is not None:
        submit = ordered[submit_index]
        for event in reversed(ordered[:submit_index]):
            if event.activity_type != "question_start":
                continue
            question_id = _question_key((event.data or {}).get("question_id"))
            if question_id is None or question_id in timings:
                continue
            spent = _ms_between(event.timestamp, submit.timestamp)
            timings[question_id] = {
                "total": spent,
                "views": 1,
                "events": [{
                    "time_spent": spent,
                    "navigation_type": NAV_TEST_COMPLETION,
                    "timestamp": _iso(submit.timestamp),
                }],
            }
            break

    return {
        question_id: {
            "time_spent": entry["total"],
            "time_spent_seconds": int(round(entry["total"] / 1000)),
            "view_count": entry["views"],
            "average_time": int(round(entry["total"] / entry["views"])) if entry["views"] else 0,
            "navigation_events": entry["events"],
        }
        for question_id, entry in timings.items()
    }


def build_activity_report(
    events: Iterable[Any],
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    fullscreen_violations: int = 0,
    offscreen_time: int = 0,
    total_pages: int = 1,
) -> Dict[str, Any]:
    events = list(events)
    total_duration = _ms_between(start_time, end_time) if start_time and end_time else 0
    activity_log: List[Dict[str, Any]] = [
        _serialize_event(e) for e in sorted(events, key=lambda e: (e.timestamp, e.sequence or 0))
    ]
    return {
        "total_duration": total_duration,
        "fullscreen_violations": fullscreen_violations or 0,
        "offscreen_time": offscreen_time or 0,
        "total_pages": total_pages or 1,
        "activity_log": activity_log,
        "question_times": compute_question_times(events),
    }


def report_for_assignment(assignment: TestAssignment) -> Dict[str, Any]:
    return build_activity_report(
        assignment.events,
        start_time=assignment.start_time,
        end_time=assignment.end_time,
        fullscreen_violations=assignment.fullscreen_violations,
        offscreen_time=assignment.total_offscreen_time,
        total_pages=assignment.total_pages,
    )
