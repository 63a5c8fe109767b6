"""Resolves Otodom transaction ids into durable advert ids from webhooks."""

import logging
from enum import Enum

from rental_sync.models.domain import Platform, SyncFailure
from rental_sync.partners.webhook_models import WebhookNotification
from rental_sync.storage.base import StorageInterface

logger = logging.getLogger(__name__)


class ReconcileOutcome(str, Enum):
    """What a notification did to the stored references."""

    CONFIRMED = "confirmed"
    UNMATCHED = "unmatched"
    AMBIGUOUS = "ambiguous"
    REJECTED = "rejected"
    IGNORED = "ignored"


class Reconciler:
    """Applies publish notifications to apartment external references.

    State transitions per apartment and platform:
    - PENDING(transaction_id) -> CONFIRMED(object_id) on a success event
    - PENDING stays PENDING on an error event; the failure is logged for operators
    Unmatched notifications are logged and dropped.
    """

    def __init__(self, storage: StorageInterface, platform: Platform = Platform.OTODOM):
        self._storage = storage
        self._platform = platform

    @property
    def platform(self) -> Platform:
        return self._platform

    async def handle_notification(self, notification: WebhookNotification) -> ReconcileOutcome:
        """Apply one notification.

        Args:
            notification: Verified (or accepted unverified) webhook payload

        Returns:
            Outcome of the notification
        """
        if notification.is_error:
            logger.error(
                f"Publish failed for transaction {notification.transaction_id}: "
                f"{notification.error_details}"
            )
            await self._storage.record_sync_failure(
                SyncFailure(
                    platform=self._platform,
                    transaction_id=notification.transaction_id,
                    object_id=notification.object_id,
                    event_type=notification.event_type,
                    error=notification.error_details,
                )
            )
            return ReconcileOutcome.REJECTED

        if not notification.is_success:
            logger.info(
                f"Ignoring {notification.flow} event {notification.event_type} "
                f"for transaction {notification.transaction_id}"
            )
            return ReconcileOutcome.IGNORED

        matches = await self._storage.find_apartments_by_pending_ref(
            self._platform, notification.transaction_id
        )
        if not matches:
            logger.warning(
                f"No apartment pending on transaction {notification.transaction_id} "
                f"(object {notification.object_id}), dropping notification"
            )
            return ReconcileOutcome.UNMATCHED

        if len(matches) > 1:
            apartment_ids = ", ".join(str(apartment.id) for apartment in matches)
            logger.error(
                f"Transaction {notification.transaction_id} is pending on {len(matches)} "
                f"apartments ({apartment_ids}), leaving them unchanged"
            )
            return ReconcileOutcome.AMBIGUOUS

        apartment_id = await self._storage.confirm_pending_ref(
            self._platform,
            notification.transaction_id,
            notification.object_id,
            url=notification.url,
        )
        if apartment_id is None:
            # Reference changed between lookup and update (deleted or republished)
            logger.warning(
                f"Transaction {notification.transaction_id} no longer pending, dropping notification"
            )
            return ReconcileOutcome.UNMATCHED

        logger.info(
            f"Apartment {apartment_id} confirmed on {self._platform.value}: "
            f"transaction {notification.transaction_id} -> advert {notification.object_id}"
        )
        return ReconcileOutcome.CONFIRMED
