import asyncio
import logging
from typing import List, Optional

from whatsapp_crm.config import settings
from whatsapp_crm.models.schemas import MessageStatus
from whatsapp_crm.providers.messaging import MessagingProvider, SendRequest
from whatsapp_crm.services import dispatch_queue
from whatsapp_crm.services.errors import DispatchError
from whatsapp_crm.services.messages import mark_status
from whatsapp_crm.utils.helpers import to_jid

logger = logging.getLogger(__name__)


async def process_send_job(payload: dict, provider: MessagingProvider) -> None:
    """Deliver one queued message. Raises DispatchError so the queue can retry."""
    company_id = payload["company_id"]
    message_id = payload["message_id"]
    request = SendRequest(
        session_name=payload["session_name"],
        destination=to_jid(payload["phone"]),
        text=payload["content"],
        media_url=payload.get("media_url"),
        media_type=payload.get("media_type"),
    )
    try:
        await provider.send(request)
    except DispatchError as e:
        logger.error("[c:%s, m:%s] Failed to send via %s: %s", company_id, message_id, request.session_name, e)
        await mark_status(company_id, message_id, MessageStatus.FAILED)
        raise
    except Exception:
        logger.exception("[c:%s, m:%s] Unexpected error sending via %s", company_id, message_id, request.session_name)
        await mark_status(company_id, message_id, MessageStatus.FAILED)
        raise

    await mark_status(company_id, message_id, MessageStatus.SENT)
    logger.info("[c:%s, m:%s] Sent via %s", company_id, message_id, request.session_name)


class DispatchWorker:
    """Pool of asyncio tasks draining the dispatch queue."""

    def __init__(
        self,
        provider: MessagingProvider,
        concurrency: Optional[int] = None,
        poll_interval: Optional[float] = None,
        reap_interval: Optional[float] = None,
    ):
        self.provider = provider
        self.concurrency = concurrency or settings.DISPATCH_CONCURRENCY
        self.poll_interval = poll_interval if poll_interval is not None else settings.DISPATCH_POLL_INTERVAL_SECONDS
        self._tasks: List[asyncio.Task] = []
        # Jobs left active by a crashed peer are swept back to waiting this often
        self.reap_interval = reap_interval if reap_interval is not None else settings.DISPATCH_STALLED_AFTER_SECONDS
        self._last_reap: Optional[float] = None
        self._stopping = asyncio.Event()

    async def run_once(self) -> bool:
        """Claim and run a single job. Returns False when nothing was due."""
        job = await dispatch_queue.claim_next()
        if job is None:
            return False

        try:
            if job["name"] != dispatch_queue.SEND_MESSAGE_JOB:
                raise DispatchError(f"Unknown job type {job['name']}")
            await process_send_job(job["payload"], self.provider)
        except DispatchError as e:
            await dispatch_queue.fail(job, str(e))
        except Exception as e:
            logger.exception("Unexpected error in dispatch job %s", job["_id"])
            await dispatch_queue.fail(job, repr(e))
        else:
            await dispatch_queue.complete(job)
        return True

    async def reap_stalled(self, force: bool = False) -> int:
        """Requeue stalled jobs when the reap interval has elapsed since the last sweep."""
        now = asyncio.get_running_loop().time()
        if not force and self._last_reap is not None and now - self._last_reap < self.reap_interval:
            return 0
        self._last_reap = now
        return await dispatch_queue.requeue_stalled()

    async def _loop(self, index: int) -> None:
        logger.info("Dispatch worker %s started", index)
        while not self._stopping.is_set():
            try:
                if index == 0:
                    await self.reap_stalled()
                worked = await self.run_once()
            except Exception:
                logger.exception("Dispatch worker %s failed to poll the queue", index)
                worked = False
            if not worked:
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
        logger.info("Dispatch worker %s stopped", index)

    async def start(self) -> None:
        await self.reap_stalled(force=True)
        self._stopping.clear()
        self._tasks = [asyncio.create_task(self._loop(i)) for i in range(self.concurrency)]

    async def stop(self) -> None:
        self._stopping.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
