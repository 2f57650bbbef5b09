from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
from assessment_portal.db import Base


class Organization(Base):
    """Organization reference data; only the terms text is read by the assessment flow."""
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String, nullable=False)
    terms_and_conditions = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Candidate(Base):
    __tablename__ = "candidates"

    id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, index=True)
    employee_id = Column(String, nullable=True)
    org_id = Column(Integer, ForeignKey("organizations.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    organization = relationship("Organization")
