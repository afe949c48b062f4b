from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import InvalidTransitionError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    """Job status enumeration"""
    PENDING = "Pending"
    PROCESSING = "Processing"
    PROCESSING_FAN_OUT = "Processing_ParallelFanOut"
    WAITING_FOR_APPROVAL = "WaitingForApproval"
    COMPLETED = "Completed"
    FAILED = "Failed"


class Stage(str, Enum):
    """Pipeline stage enumeration, in execution order"""
    RESEARCH = "research"
    SCRIPT = "script"
    APPROVAL = "approval"
    FAN_OUT = "fan_out"
    ASSEMBLY = "assembly"


TERMINAL_STATUSES = {JobStatus.COMPLETED, JobStatus.FAILED}

ALLOWED_TRANSITIONS: Dict[JobStatus, set] = {
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {
        JobStatus.PROCESSING_FAN_OUT,
        JobStatus.WAITING_FOR_APPROVAL,
        JobStatus.FAILED,
    },
    JobStatus.WAITING_FOR_APPROVAL: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING_FAN_OUT: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


class PromptTemplate(BaseModel):
    """Prompt template owned by a niche, one per stage type"""
    id: Optional[int] = None
    niche_id: Optional[int] = None
    stage_type: str
    template_text: str


class Niche(BaseModel):
    id: Optional[int] = None
    name: str
    description: str = ""
    templates: List[PromptTemplate] = Field(default_factory=list)

    def template_for(self, stage_type: str) -> Optional[PromptTemplate]:
        for template in self.templates:
            if template.stage_type.lower() == stage_type.lower():
                return template
        return None


class ChannelConfig(BaseModel):
    """Channel configuration, read once when a job is dequeued"""
    id: Optional[int] = None
    name: str
    platform: str = "YouTube"
    niche_id: Optional[int] = None
    niche: Optional[Niche] = None
    require_approval: bool = False
    is_active: bool = True
    tone: Optional[str] = None
    description: str = ""
    created_at: datetime = Field(default_factory=utcnow)


class ChannelCreate(BaseModel):
    """Channel creation request"""
    name: str
    platform: str = "YouTube"
    niche_id: Optional[int] = None
    require_approval: bool = False
    is_active: bool = True
    tone: Optional[str] = None
    description: str = ""

    @field_validator("name", "platform")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


class ChannelUpdate(BaseModel):
    """Partial channel update request"""
    name: Optional[str] = None
    platform: Optional[str] = None
    niche_id: Optional[int] = None
    require_approval: Optional[bool] = None
    is_active: Optional[bool] = None
    tone: Optional[str] = None
    description: Optional[str] = None


class NicheCreate(BaseModel):
    name: str
    description: str = ""


class PromptTemplateCreate(BaseModel):
    stage_type: str
    template_text: str


class JobRecord(BaseModel):
    """Persisted job state; mutated only by the worker that owns the job"""
    model_config = ConfigDict(validate_assignment=True)

    id: Optional[int] = None
    channel_id: int
    status: JobStatus = JobStatus.PENDING
    current_stage: str = "Queued"
    progress: int = Field(default=0, ge=0, le=100)
    script: Optional[str] = None
    video_url: Optional[str] = None
    log_output: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_transition_to(self, target: JobStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self.status]

    def transition_to(self, target: JobStatus) -> None:
        """Move to a new status along the allowed graph"""
        if not self.can_transition_to(target):
            raise InvalidTransitionError(self.status.value, target.value)
        self.status = target

    def advance(self, stage_name: str, progress: int) -> None:
        """Record a checkpoint; progress never moves backwards"""
        self.current_stage = stage_name
        self.progress = max(self.progress, progress)

    def append_log(self, line: str) -> None:
        stamp = utcnow().isoformat()
        entry = f"[{stamp}] {line}"
        self.log_output = f"{self.log_output}\n{entry}" if self.log_output else entry


class NewsItem(BaseModel):
    title: str
    summary: str = ""
    source: str = ""
    url: str = ""
    published_at: datetime = Field(default_factory=utcnow)
    category: str = ""
    tags: List[str] = Field(default_factory=list)


class SeoMetadata(BaseModel):
    title: str
    description: str
    tags: List[str] = Field(default_factory=list)
    thumbnail_suggestion: str = ""


class VisualPrompt(BaseModel):
    """Image prompt for one script segment"""
    sequence_number: int
    segment_text: str
    image_prompt: str
    duration_seconds: float


class AudioArtifact(BaseModel):
    """Handle to synthesized narration"""
    path: str
    duration_seconds: float = 0.0
    provider: str = ""
    meta: Dict[str, Any] = Field(default_factory=dict)


class JobEvent(BaseModel):
    """Job lifecycle event for logging and the events mirror"""
    job_id: int
    event_type: str
    timestamp: datetime = Field(default_factory=utcnow)
    stage: Optional[str] = None
    message: str = ""
    payload: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("event_type")
    @classmethod
    def validate_event_type(cls, v: str) -> str:
        """Validate event type is not empty"""
        if not v or not v.strip():
            raise ValueError("Event type cannot be empty")
        return v.strip()

    @field_validator("payload", mode="before")
    @classmethod
    def validate_payload(cls, v):
        if v is None:
            return {}
        return v


class ApprovalRequest(BaseModel):
    """Body for approving a suspended job, optionally with an edited script"""
    script: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response"""
    ok: bool = True
    timestamp: datetime = Field(default_factory=utcnow)
    version: str = "0.1.0"
    services: Dict[str, Any] = Field(default_factory=dict)
