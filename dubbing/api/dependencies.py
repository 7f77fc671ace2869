from fastapi import Depends
from sqlalchemy.orm import Session

from dubbing.core.database import get_db
from dubbing.engines.base import ObjectStore
from dubbing.services.dubbing import DubbingService
from dubbing.services.queue import CeleryJobQueue, JobQueue
from dubbing.services.storage import get_object_store as get_gcs_object_store


def get_job_queue() -> JobQueue:
    """Queue adapter used to hand jobs to the workers"""
    return CeleryJobQueue()


def get_object_store() -> ObjectStore:
    """Object store holding published artifacts"""
    return get_gcs_object_store()


def get_dubbing_service(
    db: Session = Depends(get_db),
    queue: JobQueue = Depends(get_job_queue),
    object_store: ObjectStore = Depends(get_object_store),
) -> DubbingService:
    return DubbingService(db, queue, object_store)
