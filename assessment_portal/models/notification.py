from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Text
from datetime import datetime
from assessment_portal.db import Base
import uuid

class Notification(Base):
    __tablename__ = "notifications"

    # use a callable for default so new UUIDs are generated per-row
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    notification_type = Column(String, nullable=False, default="test_assignment")
    link = Column(String, nullable=True)  # URL or route path
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
