import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status

from .errors import (
    ChannelInactiveError,
    ChannelNotFoundError,
    InvalidJobStateError,
    JobNotFoundError,
    OrchestratorError,
    QueueClosedError,
)
from .models import (
    ApprovalRequest,
    ChannelConfig,
    ChannelCreate,
    ChannelUpdate,
    JobEvent,
    JobRecord,
    Niche,
    NicheCreate,
    PromptTemplate,
    PromptTemplateCreate,
)
from .orchestrator import Orchestrator, get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_STATUS = {
    ChannelNotFoundError: status.HTTP_404_NOT_FOUND,
    JobNotFoundError: status.HTTP_404_NOT_FOUND,
    ChannelInactiveError: status.HTTP_400_BAD_REQUEST,
    InvalidJobStateError: status.HTTP_409_CONFLICT,
    QueueClosedError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _http_error(e: OrchestratorError) -> HTTPException:
    for error_type, status_code in ERROR_STATUS.items():
        if isinstance(e, error_type):
            return HTTPException(status_code=status_code, detail=str(e))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


def _require_channel(orchestrator: Orchestrator, channel_id: int) -> ChannelConfig:
    channel = orchestrator.db.get_channel(channel_id)
    if not channel:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Channel {channel_id} not found"
        )
    return channel


# ---------------------------------------------------------------- channels

@router.get("/channels", response_model=List[ChannelConfig])
async def list_channels(orchestrator: Orchestrator = Depends(get_orchestrator)):
    """List all channels"""
    return orchestrator.db.list_channels()


@router.get("/channels/active", response_model=List[ChannelConfig])
async def list_active_channels(orchestrator: Orchestrator = Depends(get_orchestrator)):
    """List channels that accept new jobs"""
    return orchestrator.db.list_active_channels()


@router.get("/channels/{channel_id}", response_model=ChannelConfig)
async def get_channel(channel_id: int, orchestrator: Orchestrator = Depends(get_orchestrator)):
    return _require_channel(orchestrator, channel_id)


@router.post("/channels", response_model=ChannelConfig, status_code=status.HTTP_201_CREATED)
async def create_channel(
    channel_create: ChannelCreate,
    orchestrator: Orchestrator = Depends(get_orchestrator)
):
    """Create a channel"""
    if channel_create.niche_id is not None and not orchestrator.db.get_niche(channel_create.niche_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Niche {channel_create.niche_id} not found"
        )
    channel = orchestrator.db.create_channel(ChannelConfig(**channel_create.model_dump()))
    logger.info(f"[api] Channel {channel.id} created ({channel.name})")
    return channel


@router.put("/channels/{channel_id}", response_model=ChannelConfig)
async def update_channel(
    channel_id: int,
    channel_update: ChannelUpdate,
    orchestrator: Orchestrator = Depends(get_orchestrator)
):
    """Update a channel; omitted fields keep their values"""
    channel = _require_channel(orchestrator, channel_id)
    changes = channel_update.model_dump(exclude_unset=True)
    if changes.get("niche_id") is not None and not orchestrator.db.get_niche(changes["niche_id"]):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Niche {changes['niche_id']} not found"
        )
    updated = channel.model_copy(update=changes)
    return orchestrator.db.update_channel(updated)


@router.delete("/channels/{channel_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_channel(channel_id: int, orchestrator: Orchestrator = Depends(get_orchestrator)):
    if not orchestrator.db.delete_channel(channel_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Channel {channel_id} not found"
        )


@router.get("/channels/{channel_id}/jobs", response_model=List[JobRecord])
async def list_channel_jobs(channel_id: int, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """List jobs for a channel, newest first"""
    _require_channel(orchestrator, channel_id)
    return orchestrator.db.list_jobs_by_channel(channel_id)


# ------------------------------------------------------------------ niches

@router.get("/niches", response_model=List[Niche])
async def list_niches(orchestrator: Orchestrator = Depends(get_orchestrator)):
    return orchestrator.db.list_niches()


@router.post("/niches", response_model=Niche, status_code=status.HTTP_201_CREATED)
async def create_niche(niche_create: NicheCreate, orchestrator: Orchestrator = Depends(get_orchestrator)):
    return orchestrator.db.create_niche(Niche(**niche_create.model_dump()))


@router.post("/niches/{niche_id}/templates", response_model=PromptTemplate, status_code=status.HTTP_201_CREATED)
async def add_prompt_template(
    niche_id: int,
    template_create: PromptTemplateCreate,
    orchestrator: Orchestrator = Depends(get_orchestrator)
):
    """Add or replace a niche's prompt template for a stage type"""
    if not orchestrator.db.get_niche(niche_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Niche {niche_id} not found"
        )
    return orchestrator.db.add_prompt_template(
        niche_id, template_create.stage_type, template_create.template_text
    )


# -------------------------------------------------------------------- jobs

@router.get("/jobs", response_model=List[JobRecord])
async def list_recent_jobs(count: int = 10, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """List the most recent jobs"""
    if count < 1:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="count must be at least 1"
        )
    return orchestrator.db.list_recent_jobs(count)


@router.get("/jobs/{job_id}", response_model=JobRecord)
async def get_job(job_id: int, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Get job details by ID"""
    job = orchestrator.db.get_job(job_id)
    if not job:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} not found"
        )
    return job


@router.get("/jobs/{job_id}/events", response_model=List[JobEvent])
async def get_job_events(job_id: int, limit: int = 100, orchestrator: Orchestrator = Depends(get_orchestrator)):
    if not orchestrator.db.get_job(job_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} not found"
        )
    return orchestrator.events.get_job_events(job_id, limit=limit)


@router.get("/jobs/{job_id}/artifacts", response_model=List[str])
async def get_job_artifacts(job_id: int, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """File names written to the job's artifacts directory"""
    if not orchestrator.db.get_job(job_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} not found"
        )
    storage = orchestrator.events.storage
    if storage is None:
        return []
    return [path.name for path in storage.list_job_artifacts(job_id)]


@router.post("/jobs/trigger/{channel_id}", response_model=JobRecord, status_code=status.HTTP_201_CREATED)
async def trigger_job(channel_id: int, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Create and enqueue a job for a channel"""
    try:
        job_id = await orchestrator.submit(channel_id)
    except OrchestratorError as e:
        logger.warning(f"[api] Trigger for channel {channel_id} rejected: {e}")
        raise _http_error(e)
    return orchestrator.db.get_job(job_id)


@router.post("/jobs/{job_id}/approve", response_model=JobRecord)
async def approve_job(
    job_id: int,
    approval: Optional[ApprovalRequest] = None,
    orchestrator: Orchestrator = Depends(get_orchestrator)
):
    """Approve a job waiting for approval, optionally replacing its script"""
    edited_script = approval.script if approval else None
    try:
        job = await orchestrator.resume(job_id, edited_script)
    except OrchestratorError as e:
        logger.warning(f"[api] Approval for job {job_id} rejected: {e}")
        raise _http_error(e)
    logger.info(f"[api] Job {job_id} approved")
    return job
