from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from datetime import datetime
from assessment_portal.db import Base


class PsychometricAnalysis(Base):
    """Last successful analysis for an assignment; replaced wholesale on regeneration."""
    __tablename__ = "psychometric_analyses"

    assignment_id = Column(
        Integer, ForeignKey("test_assignments.id", ondelete="CASCADE"), primary_key=True
    )
    analysis_data = Column(JSON, nullable=False)
    generated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    api_version = Column(String, nullable=False, default="1.0")
    # Nullable for rows written before the payload was kept
    request_payload = Column(JSON, nullable=True)
