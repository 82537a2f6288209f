from sqlalchemy import Column, Integer, String, Numeric, DateTime, Text
import enum

from denasetu.models.base import Base, new_id, utcnow


# Category stored for monetary donations
MONEY_CATEGORY = "Money"


class DonationStatus(str, enum.Enum):
    """Donation status; Cancelled and Completed are terminal"""
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class Donation(Base):
    """Item or money donation from a donor to an NGO"""
    __tablename__ = "donations"

    id = Column(String(36), primary_key=True, default=new_id)
    donor_id = Column(String(36), nullable=False, index=True)
    ngo_id = Column(String(36), nullable=False, index=True)
    campaign_id = Column(String(36), nullable=True, index=True)
    category = Column(String(80), nullable=False)
    description = Column(Text, nullable=True)
    quantity = Column(Integer, nullable=True)
    amount = Column(Numeric(12, 2), nullable=True)
    image_url = Column(String, nullable=True)
    status = Column(String(20), nullable=False, default=DonationStatus.PENDING.value, index=True)
    version = Column(Integer, nullable=False, default=1)
    payment_id = Column(String(64), nullable=True, unique=True)
    order_id = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<Donation(id={self.id}, ngo_id={self.ngo_id}, status='{self.status}', version={self.version})>"


class DonationEvent(Base):
    """Timeline entry for a donation"""
    __tablename__ = "donation_events"

    id = Column(String(36), primary_key=True, default=new_id)
    donation_id = Column(String(36), nullable=False, index=True)
    event = Column(String(120), nullable=False)
    note = Column(Text, nullable=True)
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
