from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, Response, status

from dubbing.api.dependencies import get_dubbing_service
from dubbing.schemas.dubbing import (
    JobListResponse,
    ProcessVideoRequest,
    ProcessVideoResponse,
    VideoStatusResponse,
)
from dubbing.services.dubbing import DubbingService

router = APIRouter(prefix="/video-dubbing", tags=["Video Dubbing"])


@router.post("/process/{source_id}", response_model=ProcessVideoResponse, status_code=status.HTTP_202_ACCEPTED)
async def process_video(
    source_id: UUID,
    request: Optional[ProcessVideoRequest] = Body(None),
    service: DubbingService = Depends(get_dubbing_service),
):
    """Queue a source video for dubbing"""
    options = request.options if request else None
    return service.queue_video_processing(source_id, options)


@router.get("/status/{source_id}", response_model=VideoStatusResponse)
async def get_video_status(
    source_id: UUID,
    service: DubbingService = Depends(get_dubbing_service),
):
    """Get the latest dubbing job of a source video"""
    return service.get_video_status(source_id)


@router.get("/jobs/{job_id}", response_model=VideoStatusResponse)
async def get_job(
    job_id: UUID,
    service: DubbingService = Depends(get_dubbing_service),
):
    """Get a dubbing job"""
    return service.get_job_details(job_id)


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(20),
    offset: int = Query(0),
    service: DubbingService = Depends(get_dubbing_service),
):
    """List dubbing jobs, newest first"""
    return service.list_jobs(status=status_filter, limit=limit, offset=offset)


@router.delete("/{source_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_video(
    source_id: UUID,
    service: DubbingService = Depends(get_dubbing_service),
):
    """Cancel processing and delete the dubbed artifacts of a source video"""
    service.delete_video(source_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/regenerate/{source_id}", response_model=ProcessVideoResponse, status_code=status.HTTP_202_ACCEPTED)
async def regenerate_video(
    source_id: UUID,
    request: Optional[ProcessVideoRequest] = Body(None),
    service: DubbingService = Depends(get_dubbing_service),
):
    """Discard the current dub and queue a new one"""
    options = request.options if request else None
    return service.regenerate_video(source_id, options)


@router.post("/jobs/{job_id}/retry", response_model=ProcessVideoResponse, status_code=status.HTTP_202_ACCEPTED)
async def retry_job(
    job_id: UUID,
    service: DubbingService = Depends(get_dubbing_service),
):
    """Retry a failed dubbing job once"""
    return service.retry_job(job_id)
