from decimal import Decimal
from typing import List

import structlog

from denasetu.core.exceptions import Forbidden, NotFound, InvalidTransition
from denasetu.models import CampaignStatus, DonationStatus, MONEY_CATEGORY
from denasetu.schemas.campaign import (
    CreateCampaignRequest,
    CampaignResponse,
    CampaignDonationResponse,
    MoneyReceivedEntry,
    MoneyReceivedResponse,
)
from denasetu.schemas.donation import DonorSummary
from denasetu.schemas.session import SessionContext, Role
from denasetu.store.data_store import DataStore, money

logger = structlog.get_logger(__name__)


class CampaignService:
    """Business logic for campaign operations"""

    @staticmethod
    def _with_ngo_names(store: DataStore, campaigns) -> List[CampaignResponse]:
        ngos = store.select_by_ids("ngos", (c.ngo_id for c in campaigns))
        responses = []
        for campaign in campaigns:
            response = CampaignResponse.model_validate(campaign)
            ngo = ngos.get(campaign.ngo_id)
            if ngo is not None:
                response.ngo_name = ngo.name
            responses.append(response)
        return responses

    @staticmethod
    def create_campaign(store: DataStore, session: SessionContext,
                        campaign_data: CreateCampaignRequest) -> CampaignResponse:
        """Create a new Active campaign for the signed-in NGO"""
        if not session.is_role(Role.NGO):
            raise Forbidden("Only NGOs can create campaigns")

        campaign = store.insert("ngo_campaigns", {
            "ngo_id": session.user_id,
            "title": campaign_data.title,
            "description": campaign_data.description,
            "goal_amount": campaign_data.goal_amount,
            "raised_amount": Decimal("0"),
            "status": CampaignStatus.ACTIVE.value,
            "image_url": campaign_data.image_url,
        })
        logger.info("Campaign created successfully",
                    campaign_id=campaign.id,
                    ngo_id=session.user_id,
                    goal_amount=str(campaign.goal_amount))
        return CampaignService._with_ngo_names(store, [campaign])[0]

    @staticmethod
    def get_campaign(store: DataStore, campaign_id: str) -> CampaignResponse:
        campaign = store.get("ngo_campaigns", campaign_id, refresh=True)
        if campaign is None:
            logger.warning("Campaign not found", campaign_id=campaign_id)
            raise NotFound(f"Campaign {campaign_id} not found")
        return CampaignService._with_ngo_names(store, [campaign])[0]

    @staticmethod
    def list_active(store: DataStore, skip: int = 0, limit: int = 100) -> List[CampaignResponse]:
        """Active campaigns, newest first"""
        campaigns = store.select("ngo_campaigns", {"status": CampaignStatus.ACTIVE.value},
                                 limit=limit, offset=skip)
        logger.info("Active campaigns retrieved", count=len(campaigns))
        return CampaignService._with_ngo_names(store, campaigns)

    @staticmethod
    def list_for_ngo(store: DataStore, ngo_id: str) -> List[CampaignResponse]:
        campaigns = store.select("ngo_campaigns", {"ngo_id": ngo_id})
        return CampaignService._with_ngo_names(store, campaigns)

    @staticmethod
    def close_campaign(store: DataStore, session: SessionContext, campaign_id: str) -> CampaignResponse:
        campaign = store.get("ngo_campaigns", campaign_id, refresh=True)
        if campaign is None:
            raise NotFound(f"Campaign {campaign_id} not found")
        if not session.is_role(Role.NGO) or session.user_id != campaign.ngo_id:
            raise Forbidden("Only the owning NGO can close this campaign")

        changed = store.update(
            "ngo_campaigns",
            campaign_id,
            {"status": CampaignStatus.CLOSED.value},
            expected={"status": CampaignStatus.ACTIVE.value},
        )
        if not changed:
            raise InvalidTransition(f"Campaign {campaign_id} is already closed")

        logger.info("Campaign closed", campaign_id=campaign_id, ngo_id=session.user_id)
        return CampaignService.get_campaign(store, campaign_id)

    @staticmethod
    def list_campaign_donations(store: DataStore, campaign_id: str) -> List[CampaignDonationResponse]:
        """
        Confirmed payments for a campaign, newest first, with the donor's
        name, email and image joined on.
        """
        rows = store.select("campaign_donations", {"campaign_id": campaign_id})
        donors = store.select_by_ids("donors", (r.donor_id for r in rows))
        donations = []
        for row in rows:
            response = CampaignDonationResponse.model_validate(row)
            donor = donors.get(row.donor_id)
            if donor is not None:
                response.donor = DonorSummary.model_validate(donor)
            donations.append(response)
        logger.debug("Campaign donations queried", campaign_id=campaign_id, count=len(donations))
        return donations

    @staticmethod
    def money_received(store: DataStore, ngo_id: str) -> MoneyReceivedResponse:
        """Confirmed money for an NGO: campaign payments plus completed direct money donations"""
        campaigns = store.select("ngo_campaigns", {"ngo_id": ngo_id}, order_by=None)
        entries = []

        if campaigns:
            rows = store.select("campaign_donations", {"campaign_id": [c.id for c in campaigns]})
            entries.extend(
                MoneyReceivedEntry(
                    source="campaign",
                    record_id=row.id,
                    campaign_id=row.campaign_id,
                    donor_id=row.donor_id,
                    amount=row.amount,
                    payment_id=row.payment_id,
                    created_at=row.created_at,
                )
                for row in rows
            )

        direct = store.select("donations", {
            "ngo_id": ngo_id,
            "category": MONEY_CATEGORY,
            "status": DonationStatus.COMPLETED.value,
        })
        entries.extend(
            MoneyReceivedEntry(
                source="donation",
                record_id=row.id,
                campaign_id=row.campaign_id,
                donor_id=row.donor_id,
                amount=row.amount or Decimal("0"),
                payment_id=row.payment_id,
                created_at=row.created_at,
            )
            for row in direct
        )

        entries.sort(key=lambda e: e.created_at, reverse=True)
        total = money(sum((e.amount for e in entries), Decimal("0")))
        logger.info("Money received computed", ngo_id=ngo_id, entries=len(entries), total=str(total))
        return MoneyReceivedResponse(ngo_id=ngo_id, entries=entries, total_amount=total)
