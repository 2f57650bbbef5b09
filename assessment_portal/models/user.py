from sqlalchemy import Column, String, DateTime, Enum, Integer, ForeignKey
import enum
from datetime import datetime
from assessment_portal.db import Base
import uuid

class UserRole(enum.Enum):
    admin = "admin"
    candidate = "candidate"
    supervisor = "supervisor"

class User(Base):
    __tablename__ = "users"
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    role = Column(Enum(UserRole), nullable=False)
    # Set for candidate accounts; ties the login to the candidate record
    candidate_id = Column(Integer, ForeignKey("candidates.id"), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin

    @property
    def is_candidate(self) -> bool:
        return self.role == UserRole.candidate
