"""Offline queue: immediate send when online, durable FIFO retry otherwise.

The manager is the single owner of the list of undelivered drafts.  Every
mutation happens on the event loop thread, so ``enqueue`` and the removals
performed by ``drain`` never interleave mid-operation.

Delivery contract is at-least-once: a draft leaves the queue only after the
server confirmed it.  A draft that fails is left in place for the next drain.

Drain semantics
---------------
* FIFO over a snapshot taken when the drain starts; one send at a time.
* A failure does not stop the drain; the next draft is still attempted.
* Drafts enqueued while a drain runs wait for the next drain.
* A drain requested while another is running is dropped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from src.models.alert import AlertDraft
from src.models.enums import DeliveryState, SendStatus
from src.models.errors import ConnectivityLostError, FireAlertError, SubmissionError

if TYPE_CHECKING:
    from src.services.alert_client import AlertSubmissionClient, SubmissionReceipt
    from src.services.connectivity import ConnectivityMonitor
    from src.services.storage import QueueStore

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SendOutcome:
    """Result of :meth:`OfflineQueueManager.try_send_now`."""

    status: SendStatus
    draft: AlertDraft
    receipt: SubmissionReceipt | None = None
    error: FireAlertError | None = None

    @property
    def delivered(self) -> bool:
        return self.status == SendStatus.DELIVERED


@dataclass(slots=True)
class DrainReport:
    """Summary of one :meth:`OfflineQueueManager.drain` run."""

    skipped: bool = False
    attempted: list[str] = field(default_factory=list)
    delivered: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    remaining: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class OfflineQueueManager:
    """Owns the queue of undelivered drafts.

    Parameters
    ----------
    client:
        Performs the network exchange.
    connectivity:
        Consulted before every immediate send.
    store:
        Optional persistence; written through after every mutation.
    """

    def __init__(
        self,
        client: AlertSubmissionClient,
        connectivity: ConnectivityMonitor,
        *,
        store: QueueStore | None = None,
    ) -> None:
        self._client = client
        self._connectivity = connectivity
        self._store = store
        self._queue: list[AlertDraft] = []
        self._draining = False

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def pending(self) -> list[AlertDraft]:
        """Snapshot of the queue in retry order."""
        return list(self._queue)

    @property
    def is_draining(self) -> bool:
        return self._draining

    def __len__(self) -> int:
        return len(self._queue)

    def __contains__(self, draft: object) -> bool:
        return isinstance(draft, AlertDraft) and self._index_of(draft.id) is not None

    def _index_of(self, draft_id: str) -> int | None:
        for index, queued in enumerate(self._queue):
            if queued.id == draft_id:
                return index
        return None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def load(self) -> int:
        """Restore persisted drafts; returns how many were added."""
        if self._store is None:
            return 0
        added = 0
        for draft in await self._store.load():
            if draft.delivery_state != DeliveryState.QUEUED:
                continue
            if self._index_of(draft.id) is None:
                self._queue.append(draft)
                added += 1
        logger.info("queue.loaded", restored=added, size=len(self._queue))
        return added

    async def _persist(self) -> None:
        if self._store is None:
            return
        try:
            await self._store.save(list(self._queue))
        except Exception:
            logger.error("queue.persist_failed", size=len(self._queue), exc_info=True)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def enqueue(self, draft: AlertDraft) -> bool:
        """Append *draft* unless a draft with the same id is already queued.

        Returns ``True`` if the draft was added.
        """
        if self._index_of(draft.id) is not None:
            if draft.delivery_state == DeliveryState.FAILED:
                draft.transition_to(DeliveryState.QUEUED)
            logger.debug("queue.duplicate_ignored", draft_id=draft.id)
            return False
        if draft.delivery_state in (DeliveryState.SENDING, DeliveryState.DELIVERED):
            raise ValueError(f"Cannot queue a draft that is {draft.delivery_state}")
        draft.transition_to(DeliveryState.QUEUED)
        self._queue.append(draft)
        logger.info("queue.enqueued", draft_id=draft.id, size=len(self._queue))
        await self._persist()
        return True

    async def _remove(self, draft: AlertDraft) -> None:
        index = self._index_of(draft.id)
        if index is None:
            return
        del self._queue[index]
        await self._persist()

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def try_send_now(
        self, draft: AlertDraft, *, queue_on_failure: bool = True
    ) -> SendOutcome:
        """Send *draft* immediately, or queue it when offline.

        The same draft object can be passed again for a manual retry.  A
        draft that is already queued stays queued after a failed attempt,
        whatever *queue_on_failure* says, so a later drain still retries it.

        Raises
        ------
        InvalidDraftError
            Name, phone or location is missing.  Nothing is queued.
        """
        draft.ensure_submittable()
        if draft.delivery_state == DeliveryState.SENDING:
            raise ValueError(f"Draft {draft.id} is already being sent")

        if draft.delivery_state == DeliveryState.DELIVERED:
            logger.info("queue.already_delivered", draft_id=draft.id)
            return SendOutcome(status=SendStatus.DELIVERED, draft=draft)

        if not self._connectivity.is_reachable:
            await self.enqueue(draft)
            logger.info("queue.offline_queued", draft_id=draft.id)
            return SendOutcome(
                status=SendStatus.QUEUED_OFFLINE, draft=draft, error=ConnectivityLostError()
            )

        draft.transition_to(DeliveryState.SENDING)
        try:
            receipt = await self._client.submit(draft)
        except SubmissionError as exc:
            draft.transition_to(DeliveryState.FAILED)
            logger.warning(
                "queue.send_failed",
                draft_id=draft.id,
                error_code=exc.error_code,
                **exc.details,
            )
            if queue_on_failure or self._index_of(draft.id) is not None:
                await self.enqueue(draft)
            return SendOutcome(status=SendStatus.FAILED, draft=draft, error=exc)
        except BaseException:
            # Cancelled (e.g. panic cancel) or unexpected: never leave it "sending".
            draft.transition_to(DeliveryState.FAILED)
            if self._index_of(draft.id) is not None:
                draft.transition_to(DeliveryState.QUEUED)
            raise

        draft.transition_to(DeliveryState.DELIVERED)
        await self._remove(draft)
        return SendOutcome(status=SendStatus.DELIVERED, draft=draft, receipt=receipt)

    async def drain(self) -> DrainReport:
        """Attempt every queued draft once, oldest first."""
        if self._draining:
            logger.info("queue.drain_skipped", reason="already_running")
            return DrainReport(skipped=True, remaining=len(self._queue))

        self._draining = True
        report = DrainReport()
        snapshot = list(self._queue)
        logger.info("queue.drain_started", size=len(snapshot))
        try:
            for draft in snapshot:
                # Removed, or being sent by try_send_now, since the snapshot.
                if self._index_of(draft.id) is None or draft.delivery_state != DeliveryState.QUEUED:
                    continue
                report.attempted.append(draft.id)
                draft.transition_to(DeliveryState.SENDING)
                try:
                    await self._client.submit(draft)
                except SubmissionError as exc:
                    draft.transition_to(DeliveryState.QUEUED)
                    report.failed.append(draft.id)
                    logger.warning(
                        "queue.drain_item_failed",
                        draft_id=draft.id,
                        error_code=exc.error_code,
                    )
                    continue
                except BaseException:
                    draft.transition_to(DeliveryState.QUEUED)
                    raise
                draft.transition_to(DeliveryState.DELIVERED)
                await self._remove(draft)
                report.delivered.append(draft.id)
        finally:
            self._draining = False
            report.remaining = len(self._queue)

        logger.info(
            "queue.drain_complete",
            attempted=len(report.attempted),
            delivered=len(report.delivered),
            failed=len(report.failed),
            remaining=report.remaining,
        )
        return report
