from fastapi import APIRouter, Depends
from typing import List

from docchat.dependencies import get_job_queue, require_admin
from docchat.models.task import QueuedJob
from docchat.services.queue import JobQueue

router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin)])

@router.get("/dead-letters", response_model=List[QueuedJob])
async def dead_letters(limit: int = 100, queue: JobQueue = Depends(get_job_queue)):
    return await queue.list_dead_letters(limit=limit)
