from sqlalchemy import Column, String, Numeric, DateTime, Text
import enum

from denasetu.models.base import Base, new_id, utcnow


class CampaignStatus(str, enum.Enum):
    ACTIVE = "Active"
    CLOSED = "Closed"


class Campaign(Base):
    """NGO fundraising campaign"""
    __tablename__ = "ngo_campaigns"

    id = Column(String(36), primary_key=True, default=new_id)
    ngo_id = Column(String(36), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    goal_amount = Column(Numeric(12, 2), nullable=False)
    raised_amount = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default=CampaignStatus.ACTIVE.value, index=True)
    image_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<Campaign(id={self.id}, title='{self.title}', status='{self.status}')>"


class CampaignDonation(Base):
    """Confirmed payment towards a campaign. Written once, never updated."""
    __tablename__ = "campaign_donations"

    id = Column(String(36), primary_key=True, default=new_id)
    campaign_id = Column(String(36), nullable=False, index=True)
    donor_id = Column(String(36), nullable=True, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    payment_id = Column(String(64), nullable=False, unique=True)
    order_id = Column(String(64), nullable=False)
    status = Column(String(20), nullable=False, default="SUCCESS")
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
