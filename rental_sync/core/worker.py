"""Background queue that runs webhook reconciliation off the request path."""

import asyncio
import logging
from typing import Optional

from rental_sync.core.reconciler import ReconcileOutcome, Reconciler
from rental_sync.models.domain import SyncFailure
from rental_sync.partners.webhook_models import WebhookNotification
from rental_sync.storage.base import StorageInterface

logger = logging.getLogger(__name__)


class ReconciliationWorker:
    """Consumes queued notifications one at a time.

    Failures are logged and appended to the sync failure log; they never
    reach the webhook sender, which has already been acknowledged.
    """

    def __init__(self, reconciler: Reconciler, storage: StorageInterface):
        self._reconciler = reconciler
        self._storage = storage
        self._queue: asyncio.Queue[WebhookNotification] = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start consuming the queue in a background task."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("Reconciliation worker started")

    async def stop(self) -> None:
        """Cancel the consumer task. Queued notifications are dropped."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"Reconciliation worker stopped ({self._queue.qsize()} queued dropped)")

    def submit(self, notification: WebhookNotification) -> None:
        """Queue a notification; returns immediately."""
        self._queue.put_nowait(notification)
        logger.debug(f"Queued notification for transaction {notification.transaction_id}")

    async def join(self) -> None:
        """Wait until every queued notification has been processed."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            notification = await self._queue.get()
            try:
                await self.process(notification)
            finally:
                self._queue.task_done()

    async def process(self, notification: WebhookNotification) -> Optional[ReconcileOutcome]:
        """Reconcile one notification, absorbing and recording any error."""
        try:
            return await self._reconciler.handle_notification(notification)
        except Exception as e:
            logger.error(
                f"Error reconciling transaction {notification.transaction_id}: {e}", exc_info=True
            )
            await self._record_failure(notification, str(e))
            return None

    async def _record_failure(self, notification: WebhookNotification, error: str) -> None:
        try:
            await self._storage.record_sync_failure(
                SyncFailure(
                    platform=self._reconciler.platform,
                    transaction_id=notification.transaction_id,
                    object_id=notification.object_id,
                    event_type=notification.event_type,
                    error=error,
                )
            )
        except Exception as e:
            logger.error(f"Could not record sync failure: {e}", exc_info=True)
