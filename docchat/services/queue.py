import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, List, Optional

from bson import ObjectId
from pymongo import ASCENDING, ReturnDocument

from docchat.models.task import INGESTION_JOB, IngestionJob, QueuedJob

logger = logging.getLogger(__name__)

DeadLetterHandler = Callable[[QueuedJob], Awaitable[None]]


@dataclass
class RetryPolicy:
    """Exponential backoff with jitter.

    Attempt ``n`` (1-based) waits ``base_delay * 2**(n-1)`` seconds,
    shortened by a random fraction of at most ``jitter``.
    """

    max_attempts: int = 5
    base_delay: float = 3.0
    jitter: float = 0.3

    def delay_for(self, attempt: int, rand: Callable[[], float] = random.random) -> float:
        delay = self.base_delay * (2 ** max(attempt - 1, 0))
        return delay * (1 - self.jitter * rand())


class JobQueue(ABC):
    """Durable at-least-once transport for ingestion jobs.

    ``on_dead_letter`` is awaited with every job the queue gives up on.
    """

    on_dead_letter: Optional[DeadLetterHandler] = None

    @abstractmethod
    async def enqueue(self, job: IngestionJob) -> QueuedJob: ...

    @abstractmethod
    async def dequeue(self, worker_id: str) -> Optional[QueuedJob]: ...

    @abstractmethod
    async def ack(self, job: QueuedJob) -> bool: ...

    @abstractmethod
    async def nack(self, job: QueuedJob, error: str) -> Optional[float]:
        """Schedule a retry and return its delay.

        Returns ``None`` when the job was dead-lettered instead, or when
        the caller no longer holds the claim.
        """

    @abstractmethod
    async def extend_lease(self, job: QueuedJob) -> bool:
        """Push the claim's lease forward. ``False`` if the claim was lost."""

    @abstractmethod
    async def list_dead_letters(self, limit: int = 100) -> List[QueuedJob]: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MongoJobQueue(JobQueue):
    """Job queue on a MongoDB collection.

    Every write after the claim is fenced on ``(worker_id, attempts)``, so
    a consumer whose lease expired and whose job was reclaimed cannot ack,
    retry or dead-letter the newer claim.
    """

    def __init__(self, collection, retry_policy: RetryPolicy = None, lease_seconds: int = 900,
                 on_dead_letter: Optional[DeadLetterHandler] = None):
        self.collection = collection
        self.retry_policy = retry_policy or RetryPolicy()
        self.lease_seconds = lease_seconds
        self.on_dead_letter = on_dead_letter

    async def ensure_indexes(self):
        await self.collection.create_index([("status", ASCENDING), ("available_at", ASCENDING)])

    async def enqueue(self, job: IngestionJob) -> QueuedJob:
        now = _now()
        doc = {
            "type": INGESTION_JOB,
            "payload": job.model_dump(mode="json"),
            "status": "pending",
            "attempts": 0,
            "max_attempts": self.retry_policy.max_attempts,
            "created_at": now,
            "available_at": now,
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        logger.info(f"Enqueued {INGESTION_JOB} job {result.inserted_id} with {len(job.documents)} document(s)")
        return QueuedJob.from_mongo(doc)

    async def dequeue(self, worker_id: str) -> Optional[QueuedJob]:
        while True:
            now = _now()
            # Pending and due, or claimed by a worker whose lease ran out (crash redelivery)
            task_doc = await self.collection.find_one_and_update(
                {"$or": [
                    {"status": "pending", "available_at": {"$lte": now}},
                    {"status": "processing", "lease_expires_at": {"$lte": now}},
                ]},
                {
                    "$set": {
                        "status": "processing",
                        "worker_id": worker_id,
                        "started_at": now,
                        "lease_expires_at": now + timedelta(seconds=self.lease_seconds),
                    },
                    "$inc": {"attempts": 1},
                },
                sort=[("available_at", ASCENDING), ("created_at", ASCENDING)],
                return_document=ReturnDocument.AFTER,
            )
            if not task_doc:
                return None

            job = QueuedJob.from_mongo(task_doc)
            if job.attempts > job.max_attempts:
                await self._dead_letter(job, job.error_message or "lease expired on final attempt")
                continue
            return job

    async def ack(self, job: QueuedJob) -> bool:
        result = await self.collection.update_one(
            self._claim(job),
            {"$set": {"status": "completed", "completed_at": _now()}, "$unset": {"lease_expires_at": ""}},
        )
        if not result.matched_count:
            logger.warning(f"Job {job.id} was reclaimed by another worker, ack of attempt {job.attempts} ignored")
            return False
        return True

    async def nack(self, job: QueuedJob, error: str) -> Optional[float]:
        if job.attempts >= job.max_attempts:
            await self._dead_letter(job, error)
            return None

        delay = self.retry_policy.delay_for(job.attempts)
        result = await self.collection.update_one(
            self._claim(job),
            {
                "$set": {
                    "status": "pending",
                    "error_message": error,
                    "available_at": _now() + timedelta(seconds=delay),
                },
                "$unset": {"lease_expires_at": "", "worker_id": ""},
            },
        )
        if not result.matched_count:
            logger.warning(f"Job {job.id} was reclaimed by another worker, nack of attempt {job.attempts} ignored")
            return None
        logger.warning(f"Job {job.id} attempt {job.attempts}/{job.max_attempts} failed, retrying in {delay:.1f}s: {error}")
        return delay

    async def extend_lease(self, job: QueuedJob) -> bool:
        result = await self.collection.update_one(
            self._claim(job),
            {"$set": {"lease_expires_at": _now() + timedelta(seconds=self.lease_seconds)}},
        )
        return bool(result.matched_count)

    async def list_dead_letters(self, limit: int = 100) -> List[QueuedJob]:
        docs = await self.collection.find({"status": "dead"}).sort("completed_at", -1).to_list(length=limit)
        return [QueuedJob.from_mongo(d) for d in docs]

    async def _dead_letter(self, job: QueuedJob, error: str):
        result = await self.collection.update_one(
            self._claim(job),
            {"$set": {"status": "dead", "error_message": error, "completed_at": _now()}, "$unset": {"lease_expires_at": ""}},
        )
        if not result.matched_count:
            logger.warning(f"Job {job.id} was reclaimed by another worker, dead-letter of attempt {job.attempts} ignored")
            return
        logger.error(f"Job {job.id} moved to dead-letter after {job.attempts} attempt(s): {error}")

        if self.on_dead_letter is not None:
            try:
                await self.on_dead_letter(job)
            except Exception:
                logger.exception(f"Dead-letter handler failed for job {job.id}")

    def _claim(self, job: QueuedJob) -> dict:
        return {"_id": self._key(job), "worker_id": job.worker_id, "attempts": job.attempts, "status": "processing"}

    @staticmethod
    def _key(job: QueuedJob):
        return ObjectId(job.id) if ObjectId.is_valid(job.id) else job.id
