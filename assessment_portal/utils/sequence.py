from sqlalchemy import func
from sqlalchemy.orm import Session


def next_sequence(db: Session, model, assignment_id: int) -> int:
    """Next per-assignment sequence number for an append-only child table."""
    current = (
        db.query(func.max(model.sequence))
        .filter(model.assignment_id == assignment_id)
        .scalar()
    )
    return (current or 0) + 1
