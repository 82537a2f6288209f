from denasetu.models.base import Base
from denasetu.models.identity import Donor, NGO, Volunteer
from denasetu.models.donation import Donation, DonationEvent, DonationStatus, MONEY_CATEGORY
from denasetu.models.campaign import Campaign, CampaignDonation, CampaignStatus
from denasetu.models.payment import PaymentOrder, PaymentOrderStatus
from denasetu.models.activity import Notification, VolunteerLocationLog

# Relation name -> mapped class, used by the generic data store
RELATIONS = {
    model.__tablename__: model
    for model in (
        Donor, NGO, Volunteer,
        Donation, DonationEvent,
        Campaign, CampaignDonation,
        PaymentOrder,
        Notification, VolunteerLocationLog,
    )
}

__all__ = [
    "Base", "RELATIONS",
    "Donor", "NGO", "Volunteer",
    "Donation", "DonationEvent", "DonationStatus", "MONEY_CATEGORY",
    "Campaign", "CampaignDonation", "CampaignStatus",
    "PaymentOrder", "PaymentOrderStatus",
    "Notification", "VolunteerLocationLog",
]
