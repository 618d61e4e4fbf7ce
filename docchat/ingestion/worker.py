import asyncio
import logging
import os
import socket
from typing import Optional

from pydantic import ValidationError

from docchat.errors import describe
from docchat.ingestion.service import IngestionService
from docchat.models.task import INGESTION_JOB, IngestionJob, QueuedJob
from docchat.services.queue import JobQueue

logger = logging.getLogger(__name__)


class IngestionWorker:
    """Pulls ingestion jobs off the queue and runs them.

    Runs ``concurrency`` consumers in one process; each handles one job at
    a time. Successful jobs are acked, any exception (including a payload
    that does not validate) nacks the job so the queue can retry or
    dead-letter it. While a job runs its lease is renewed every
    ``lease_renewal_interval`` seconds. Documents of a dead-lettered job
    that are still PROCESSING are marked FAILED.
    """

    def __init__(
        self,
        queue: JobQueue,
        service: IngestionService,
        concurrency: int = 1,
        poll_interval: float = 2.0,
        worker_id: Optional[str] = None,
        lease_renewal_interval: Optional[float] = None,
    ):
        self.queue = queue
        self.service = service
        self.concurrency = max(1, concurrency)
        self.poll_interval = poll_interval
        self.worker_id = worker_id or f"{socket.gethostname()}-{os.getpid()}"
        self.lease_renewal_interval = lease_renewal_interval
        self._stopping = asyncio.Event()
        self.queue.on_dead_letter = self.fail_dead_letter

    async def handle(self, job: QueuedJob) -> bool:
        renewal = asyncio.create_task(self._renew_lease(job)) if self.lease_renewal_interval else None
        try:
            if job.type != INGESTION_JOB:
                raise ValueError(f"Unknown job type {job.type!r}")
            payload = IngestionJob.model_validate(job.payload)
            await self.service.process_job(payload)
        except Exception as e:
            logger.exception(f"Job {job.id} failed on attempt {job.attempts}")
            await self.queue.nack(job, describe(e))
            return False
        finally:
            if renewal is not None:
                renewal.cancel()

        await self.queue.ack(job)
        return True

    async def fail_dead_letter(self, job: QueuedJob):
        try:
            payload = IngestionJob.model_validate(job.payload)
        except ValidationError:
            logger.warning(f"Dead-lettered job {job.id} has no valid payload, no documents to fail")
            return
        await self.service.abandon_job(payload)

    async def run_once(self, consumer_id: str) -> bool:
        job = await self.queue.dequeue(consumer_id)
        if job is None:
            return False
        logger.info(f"Consumer {consumer_id} claimed job {job.id} (attempt {job.attempts}/{job.max_attempts})")
        await self.handle(job)
        return True

    async def _renew_lease(self, job: QueuedJob):
        while True:
            await asyncio.sleep(self.lease_renewal_interval)
            try:
                if not await self.queue.extend_lease(job):
                    logger.warning(f"Lost the claim on job {job.id}, another worker owns it now")
                    return
            except Exception:
                logger.exception(f"Could not renew the lease of job {job.id}")

    async def _consume(self, slot: int):
        consumer_id = f"{self.worker_id}:{slot}"
        while not self._stopping.is_set():
            try:
                handled = await self.run_once(consumer_id)
            except Exception:
                # Queue unreachable; keep the consumer alive and poll again later
                logger.exception(f"Consumer {consumer_id} could not reach the queue")
                handled = False
            if not handled:
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass

    async def start(self):
        logger.info(f"Worker {self.worker_id} started with {self.concurrency} consumer(s).")
        await asyncio.gather(*(self._consume(slot) for slot in range(self.concurrency)))
        logger.info(f"Worker {self.worker_id} stopped.")

    def stop(self):
        self._stopping.set()
