"""Webhook delivery queue - post messages to Slack and retry transient failures."""

import asyncio
from typing import Optional

import httpx

from gerrit_notifier.models.delivery import PendingDelivery
from gerrit_notifier.utils.logging import get_structured_logger, redact

logger = get_structured_logger(__name__)

DEFAULT_RETRY_INTERVAL = 60.0  # seconds
DEFAULT_QUEUE_SIZE = 10
MAX_ERROR_BODY = 250

# Slack answers these for a missing or archived channel; retrying cannot help.
PERMANENT_FAILURE_STATUSES = {
    404: "Slack channel does not exist",
    410: "Slack channel is archived",
}


class DeliveryQueue:
    """
    Buffers outbound messages and posts them to their webhooks.

    Failed posts land in an in-memory pending list that is swept once per
    retry interval. There is no retry ceiling, no backoff growth and no
    expiry; pending items live until they succeed or the process exits.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        timeout: float = 10.0,
    ):
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self.retry_interval = retry_interval
        self.intake: asyncio.Queue[PendingDelivery] = asyncio.Queue(maxsize=queue_size)
        self.pending: list[PendingDelivery] = []
        self._pending_lock = asyncio.Lock()
        logger.info(
            "DeliveryQueue initialized",
            retry_interval_seconds=retry_interval,
            queue_size=queue_size
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def submit(self, delivery: PendingDelivery) -> None:
        """Hand a delivery to the consumer; waits while the intake is full."""
        await self.intake.put(delivery)

    async def publish(self, delivery: PendingDelivery) -> bool:
        """
        Attempt one post.

        Returns True when the delivery is finished (accepted, permanently
        rejected, or nothing to do) and False when it should be retried.
        """
        if not delivery.webhook_url:
            return True

        fields = delivery.log_fields()
        try:
            response = await self._client.post(delivery.webhook_url, json=delivery.message.to_payload())
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            # A malformed webhookurl in project.config never becomes postable.
            logger.error("Invalid Slack webhook URL", error=redact(str(e)), webhook=redact(delivery.webhook_url), **fields)
            return True
        except httpx.HTTPError as e:
            logger.error("Error posting to Slack webhook", error=redact(str(e)), webhook=redact(delivery.webhook_url), **fields)
            return False

        if response.status_code == 200:
            logger.info("Posted to Slack channel", **fields)
            return True

        if response.status_code in PERMANENT_FAILURE_STATUSES:
            logger.error(
                PERMANENT_FAILURE_STATUSES[response.status_code],
                status=response.status_code,
                **fields
            )
            return True

        logger.error(
            "Unknown error posting to Slack",
            status=response.status_code,
            body=response.text[:MAX_ERROR_BODY],
            **fields
        )
        return False

    async def deliver(self, delivery: PendingDelivery) -> None:
        """Live path: post once, park the delivery on failure."""
        if not await self.publish(delivery):
            async with self._pending_lock:
                self.pending.append(delivery)
            logger.warning("Delivery queued for retry", pending_count=len(self.pending), **delivery.log_fields())

    async def sweep(self) -> int:
        """
        Retry every pending delivery once, keeping failures in order.

        Deliveries that failed on the live path while the sweep ran are
        kept after the survivors. A delivery that fails unexpectedly is
        logged and dropped without losing the rest of the batch. Returns the
        number still pending.
        """
        async with self._pending_lock:
            batch, self.pending = self.pending, []
        if not batch:
            return 0

        survivors = []
        attempted = 0
        try:
            for delivery in batch:
                try:
                    if not await self.publish(delivery):
                        survivors.append(delivery)
                except Exception:
                    logger.exception("Dropping delivery after unexpected error", **delivery.log_fields())
                attempted += 1
        finally:
            # Anything not yet attempted (sweep cancelled) stays pending.
            async with self._pending_lock:
                self.pending = survivors + batch[attempted:] + self.pending
                remaining = len(self.pending)

        logger.info(
            "Retry sweep completed",
            attempted=len(batch),
            delivered=len(batch) - len(survivors),
            pending_count=remaining
        )
        return remaining

    async def run_sweeper(self) -> None:
        """Sweep the pending list every retry interval until cancelled."""
        while True:
            await asyncio.sleep(self.retry_interval)
            await self.sweep()

    async def run(self) -> None:
        """Consume the intake and run the retry sweeper until cancelled."""
        sweeper = asyncio.create_task(self.run_sweeper())
        try:
            while True:
                delivery = await self.intake.get()
                try:
                    await self.deliver(delivery)
                except Exception:
                    logger.exception("Dropping delivery after unexpected error", **delivery.log_fields())
                finally:
                    self.intake.task_done()
        finally:
            sweeper.cancel()
            await asyncio.gather(sweeper, return_exceptions=True)
