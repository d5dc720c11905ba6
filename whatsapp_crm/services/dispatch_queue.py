"""Durable job queue stored in MongoDB.

Jobs survive restarts because they live in the ``dispatch_jobs`` collection.
A worker claims a due job with an atomic ``find_one_and_update``, so two
workers never run the same attempt. Failed attempts are rescheduled with
exponential backoff (``backoff_seconds * 2 ** (attempts_made - 1)``) until
``max_attempts`` is reached, after which the job stays ``failed``.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from pymongo import ReturnDocument

from whatsapp_crm.config import settings
from whatsapp_crm.db.mongo_connection import get_db
from whatsapp_crm.utils.helpers import utcnow

logger = logging.getLogger(__name__)

SEND_MESSAGE_JOB = "send"

WAITING = "waiting"
ACTIVE = "active"
COMPLETED = "completed"
FAILED = "failed"


async def enqueue(
    name: str,
    payload: Dict[str, Any],
    max_attempts: Optional[int] = None,
    backoff_seconds: Optional[float] = None,
):
    now = utcnow()
    job = {
        "name": name,
        "payload": payload,
        "status": WAITING,
        "attempts_made": 0,
        "max_attempts": max_attempts or settings.DISPATCH_MAX_ATTEMPTS,
        "backoff_seconds": backoff_seconds if backoff_seconds is not None else settings.DISPATCH_BACKOFF_SECONDS,
        "run_at": now,
        "locked_at": None,
        "last_error": None,
        "created_at": now,
        "updated_at": now,
    }
    res = await get_db().dispatch_jobs.insert_one(job)
    logger.info("Enqueued %s job %s", name, res.inserted_id)
    return res.inserted_id


async def claim_next():
    """Atomically take the oldest due waiting job, or None when nothing is due."""
    now = utcnow()
    return await get_db().dispatch_jobs.find_one_and_update(
        {"status": WAITING, "run_at": {"$lte": now}},
        {"$set": {"status": ACTIVE, "locked_at": now, "updated_at": now}},
        sort=[("run_at", 1)],
        return_document=ReturnDocument.AFTER,
    )


async def complete(job: dict) -> None:
    await get_db().dispatch_jobs.update_one(
        {"_id": job["_id"]},
        {
            "$set": {"status": COMPLETED, "locked_at": None, "updated_at": utcnow()},
            "$inc": {"attempts_made": 1},
        },
    )


def backoff_delay(job: dict, attempts_made: int) -> float:
    return job["backoff_seconds"] * (2 ** (attempts_made - 1))


async def fail(job: dict, error: str) -> str:
    """Record a failed attempt. Returns the job's new status."""
    attempts_made = job.get("attempts_made", 0) + 1
    now = utcnow()
    update = {
        "attempts_made": attempts_made,
        "last_error": error,
        "locked_at": None,
        "updated_at": now,
    }
    if attempts_made < job["max_attempts"]:
        delay = backoff_delay(job, attempts_made)
        update["status"] = WAITING
        update["run_at"] = now + timedelta(seconds=delay)
        logger.warning("Job %s attempt %s/%s failed, retrying in %.1fs: %s",
                       job["_id"], attempts_made, job["max_attempts"], delay, error)
    else:
        update["status"] = FAILED
        logger.error("Job %s failed permanently after %s attempts: %s", job["_id"], attempts_made, error)

    await get_db().dispatch_jobs.update_one({"_id": job["_id"]}, {"$set": update})
    return update["status"]


async def requeue_stalled(stalled_after_seconds: Optional[float] = None) -> int:
    """Return jobs whose worker died mid-attempt to the waiting state."""
    window = stalled_after_seconds if stalled_after_seconds is not None else settings.DISPATCH_STALLED_AFTER_SECONDS
    cutoff = utcnow() - timedelta(seconds=window)
    res = await get_db().dispatch_jobs.update_many(
        {"status": ACTIVE, "locked_at": {"$lt": cutoff}},
        {"$set": {"status": WAITING, "locked_at": None, "run_at": utcnow()}},
    )
    if res.modified_count:
        logger.warning("Requeued %s stalled dispatch jobs", res.modified_count)
    return res.modified_count
