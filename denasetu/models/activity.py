from sqlalchemy import Column, String, Float, DateTime, Text, Boolean

from denasetu.models.base import Base, new_id, utcnow


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class VolunteerLocationLog(Base):
    """Single device position sample reported by a volunteer"""
    __tablename__ = "volunteer_location_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    assignment_id = Column(String(36), nullable=False, index=True)
    volunteer_id = Column(String(36), nullable=False, index=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    accuracy = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
