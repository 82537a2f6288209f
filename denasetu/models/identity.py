from sqlalchemy import Column, String, DateTime, Boolean

from denasetu.models.base import Base, new_id, utcnow


class Donor(Base):
    """Registered donor profile"""
    __tablename__ = "donors"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, index=True)
    image_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<Donor(id={self.id}, name='{self.name}')>"


class NGO(Base):
    """NGO profile"""
    __tablename__ = "ngos"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False, index=True)
    email = Column(String(255), nullable=True)
    city = Column(String(120), nullable=True)
    state = Column(String(120), nullable=True)
    verified = Column(Boolean, nullable=False, default=False)
    image_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<NGO(id={self.id}, name='{self.name}', verified={self.verified})>"


class Volunteer(Base):
    """Volunteer profile, optionally attached to an NGO"""
    __tablename__ = "volunteers"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    ngo_id = Column(String(36), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
