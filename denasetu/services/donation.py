from typing import List, Optional

import structlog

from denasetu.core.exceptions import (
    ConcurrencyConflict,
    Forbidden,
    InvalidTransition,
    NotFound,
    ValidationFailed,
)
from denasetu.middleware.metrics import donation_transitions_total
from denasetu.models import Donation, DonationStatus, MONEY_CATEGORY
from denasetu.schemas.donation import (
    CreateDonationRequest,
    DonationResponse,
    DonationEventResponse,
    DonorSummary,
)
from denasetu.schemas.session import SessionContext, Role
from denasetu.store.data_store import DataStore

logger = structlog.get_logger(__name__)

# Edges of the status state machine; states missing here are terminal
ALLOWED_TRANSITIONS = {
    DonationStatus.PENDING: {DonationStatus.ACCEPTED, DonationStatus.CANCELLED},
    DonationStatus.ACCEPTED: {DonationStatus.COMPLETED},
}

TIMELINE_EVENTS = {
    DonationStatus.ACCEPTED: "Donation Accepted",
    DonationStatus.CANCELLED: "Donation Rejected",
    DonationStatus.COMPLETED: "Donation Completed",
}

DONOR_MESSAGES = {
    DonationStatus.ACCEPTED: "Your donation has been accepted by the NGO.",
    DonationStatus.CANCELLED: "Your donation was declined by the NGO.",
    DonationStatus.COMPLETED: "Your donation has been marked as received. Thank you!",
}


def can_transition(current: DonationStatus, target: DonationStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


class DonationService:
    """Business logic for donation operations"""

    @staticmethod
    def _to_response(donation, donors=None) -> DonationResponse:
        response = DonationResponse.model_validate(donation)
        donor = (donors or {}).get(donation.donor_id)
        if donor is not None:
            response.donor = DonorSummary.model_validate(donor)
        return response

    @staticmethod
    def _with_donors(store: DataStore, donations) -> List[DonationResponse]:
        donors = store.select_by_ids("donors", (d.donor_id for d in donations))
        return [DonationService._to_response(d, donors) for d in donations]

    @staticmethod
    def create_donation(store: DataStore, session: SessionContext,
                        donation_data: CreateDonationRequest) -> DonationResponse:
        """Create a new donation with Pending status"""
        if not session.is_role(Role.DONOR):
            raise Forbidden("Only donors can create donations")
        if store.get("ngos", donation_data.ngo_id) is None:
            raise NotFound(f"NGO {donation_data.ngo_id} not found")
        if donation_data.category == MONEY_CATEGORY and donation_data.amount is None:
            raise ValidationFailed("Money donations need an amount")

        with store.transaction():
            donation = store.insert("donations", {
                "donor_id": session.user_id,
                "ngo_id": donation_data.ngo_id,
                "campaign_id": donation_data.campaign_id,
                "category": donation_data.category,
                "description": donation_data.description,
                "quantity": donation_data.quantity,
                "amount": donation_data.amount,
                "image_url": donation_data.image_url,
                "status": DonationStatus.PENDING.value,
                "version": 1,
            })
            store.insert("donation_events", {
                "donation_id": donation.id,
                "event": "Donation Created",
                "created_by": session.user_id,
            })
            store.insert("notifications", {
                "user_id": donation_data.ngo_id,
                "title": "New donation offer",
                "message": f"A donor offered a {donation_data.category} donation.",
            })

        logger.info("Donation created successfully",
                    donation_id=donation.id,
                    donor_id=session.user_id,
                    ngo_id=donation_data.ngo_id,
                    category=donation_data.category)
        return DonationService._to_response(donation)

    @staticmethod
    def get_donation(store: DataStore, donation_id: str) -> DonationResponse:
        donation = store.get("donations", donation_id, refresh=True)
        if donation is None:
            logger.warning("Donation not found", donation_id=donation_id)
            raise NotFound(f"Donation {donation_id} not found")
        return DonationService._with_donors(store, [donation])[0]

    @staticmethod
    def list_pending(store: DataStore, ngo_id: str) -> List[DonationResponse]:
        """Pending donations for an NGO, newest first, with donor display fields"""
        donations = store.select("donations", {"ngo_id": ngo_id, "status": DonationStatus.PENDING.value})
        logger.info("Pending donations retrieved", ngo_id=ngo_id, count=len(donations))
        return DonationService._with_donors(store, donations)

    @staticmethod
    def list_for_donor(store: DataStore, donor_id: str, skip: int = 0, limit: int = 100) -> List[DonationResponse]:
        donations = store.select("donations", {"donor_id": donor_id}, limit=limit, offset=skip)
        logger.info("Donor donations retrieved", donor_id=donor_id, count=len(donations))
        return [DonationService._to_response(d) for d in donations]

    @staticmethod
    def list_for_ngo(store: DataStore, ngo_id: str, status: Optional[DonationStatus] = None,
                     skip: int = 0, limit: int = 100) -> List[DonationResponse]:
        filters = {"ngo_id": ngo_id}
        if status is not None:
            filters["status"] = DonationStatus(status).value
        donations = store.select("donations", filters, limit=limit, offset=skip)
        return DonationService._with_donors(store, donations)

    @staticmethod
    def get_timeline(store: DataStore, donation_id: str) -> List[DonationEventResponse]:
        if store.get("donations", donation_id) is None:
            raise NotFound(f"Donation {donation_id} not found")
        events = store.select("donation_events", {"donation_id": donation_id}, descending=False)
        return [DonationEventResponse.model_validate(e) for e in events]

    @staticmethod
    def transition(store: DataStore, session: SessionContext, donation_id: str,
                   target: DonationStatus, expected_version: Optional[int] = None) -> DonationResponse:
        """
        Move a donation along the status state machine.

        Only the NGO that owns the donation may do this. The write is a
        compare-and-set on the observed status and version, so of two racing
        callers exactly one wins and the other gets ConcurrencyConflict.
        """
        target = DonationStatus(target)
        donation = store.get("donations", donation_id, refresh=True)
        if donation is None:
            raise NotFound(f"Donation {donation_id} not found")

        if not session.is_role(Role.NGO) or session.user_id != donation.ngo_id:
            logger.warning("Status change refused for non-owner",
                           donation_id=donation_id,
                           user_id=session.user_id,
                           role=session.role.value)
            raise Forbidden("Only the NGO that received this donation can change its status")

        current = DonationStatus(donation.status)
        observed_version = donation.version

        # A stale client view is reported as a conflict even if the move is now invalid
        if expected_version is not None and expected_version != observed_version:
            donation_transitions_total.labels(
                from_status=current.value, to_status=target.value, outcome="conflict"
            ).inc()
            raise ConcurrencyConflict(
                f"Donation {donation_id} is at version {observed_version}, not {expected_version}"
            )

        if not can_transition(current, target):
            donation_transitions_total.labels(
                from_status=current.value, to_status=target.value, outcome="invalid"
            ).inc()
            raise InvalidTransition(f"Cannot move donation from {current.value} to {target.value}")

        with store.transaction():
            changed = store.update(
                "donations",
                donation_id,
                {"status": target.value, "version": Donation.version + 1},
                expected={"status": current.value, "version": observed_version},
            )
            if not changed:
                donation_transitions_total.labels(
                    from_status=current.value, to_status=target.value, outcome="conflict"
                ).inc()
                logger.warning("Concurrent status change detected",
                               donation_id=donation_id,
                               observed_status=current.value,
                               observed_version=observed_version)
                raise ConcurrencyConflict(f"Donation {donation_id} was changed by another request")

            store.insert("donation_events", {
                "donation_id": donation_id,
                "event": TIMELINE_EVENTS[target],
                "created_by": session.user_id,
            })
            store.insert("notifications", {
                "user_id": donation.donor_id,
                "title": TIMELINE_EVENTS[target],
                "message": DONOR_MESSAGES[target],
            })

        donation_transitions_total.labels(
            from_status=current.value, to_status=target.value, outcome="ok"
        ).inc()
        logger.info("Donation status changed",
                    donation_id=donation_id,
                    from_status=current.value,
                    to_status=target.value,
                    version=observed_version + 1,
                    ngo_id=session.user_id)

        updated = store.get("donations", donation_id, refresh=True)
        return DonationService._with_donors(store, [updated])[0]

    @staticmethod
    def accept(store: DataStore, session: SessionContext, donation_id: str,
               expected_version: Optional[int] = None) -> DonationResponse:
        return DonationService.transition(store, session, donation_id, DonationStatus.ACCEPTED, expected_version)

    @staticmethod
    def reject(store: DataStore, session: SessionContext, donation_id: str,
               expected_version: Optional[int] = None) -> DonationResponse:
        return DonationService.transition(store, session, donation_id, DonationStatus.CANCELLED, expected_version)

    @staticmethod
    def complete(store: DataStore, session: SessionContext, donation_id: str,
                 expected_version: Optional[int] = None) -> DonationResponse:
        return DonationService.transition(store, session, donation_id, DonationStatus.COMPLETED, expected_version)
