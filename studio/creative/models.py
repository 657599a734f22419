"""
Pydantic models and enums for the creative session orchestrator.
"""

from enum import Enum, IntEnum
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field


# ── Workflow Steps ───────────────────────────────────────────────────────────

class Step(IntEnum):
    AUDIENCE = 0
    CHARACTER = 1
    PRODUCT_SHOT = 2
    SCENES = 3
    GENERATE = 4


STEP_NAMES = {
    Step.AUDIENCE: "Target Audience",
    Step.CHARACTER: "Character",
    Step.PRODUCT_SHOT: "Product Shot",
    Step.SCENES: "Scenes",
    Step.GENERATE: "Generate",
}


# ── Status Enums ─────────────────────────────────────────────────────────────

class SessionStatus(str, Enum):
    DRAFT = "draft"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class JobStatus(str, Enum):
    QUEUED = "queued"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


PENDING_JOB_STATUSES = {JobStatus.QUEUED, JobStatus.GENERATING}
INTERRUPTED_JOB_MESSAGE = "Generation was interrupted. Please try again."


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class AssemblyStage(str, Enum):
    DOWNLOADING = "downloading"
    PROCESSING = "processing"
    STITCHING = "stitching"
    UPLOADING = "uploading"
    COMPLETE = "complete"
    ERROR = "error"


ASSEMBLY_STAGE_ORDER = [
    AssemblyStage.DOWNLOADING,
    AssemblyStage.PROCESSING,
    AssemblyStage.STITCHING,
    AssemblyStage.UPLOADING,
]


class TransitionType(str, Enum):
    FADE = "fade"
    DISSOLVE = "dissolve"
    WIPE_LEFT = "wipeleft"
    WIPE_RIGHT = "wiperight"
    SLIDE_UP = "slideup"
    CIRCLE_OPEN = "circleopen"
    NONE = "none"

    @classmethod
    def _missing_(cls, value):
        # "wipe-left", "Wipe_Left", "slide up" all name the same transition
        if isinstance(value, str):
            key = value.lower().replace("-", "").replace("_", "").replace(" ", "")
            for member in cls:
                if member.value == key:
                    return member
        return None


# ── Media Variants ───────────────────────────────────────────────────────────

class MediaVariant(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    is_new: bool = False
    created_at: str  # ISO timestamp


class FinalVideo(MediaVariant):
    scene_count: int = 0


class GenerationState(BaseModel):
    """Transient state of the latest generation job for one scene/kind."""

    model_config = ConfigDict(frozen=True)

    status: Optional[JobStatus] = None
    progress: int = Field(default=0, ge=0, le=100)
    error: Optional[str] = None
    job_id: Optional[str] = None

    @property
    def pending(self) -> bool:
        return self.status in PENDING_JOB_STATUSES


# ── Scene ────────────────────────────────────────────────────────────────────

class Scene(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    title: str = ""
    prompt: str = ""        # visuals
    dialogue: str = ""
    motion: str = ""
    transitions: str = ""   # free-text notes from the ad plan
    transition_type: TransitionType = TransitionType.FADE
    included: bool = True
    duration: float = Field(default=4.0, gt=0)

    image_url: Optional[str] = None  # legacy single-URL projection
    images: list[MediaVariant] = Field(default_factory=list)
    selected_image_index: int = 0
    image_state: GenerationState = Field(default_factory=GenerationState)

    video_url: Optional[str] = None  # legacy single-URL projection
    videos: list[MediaVariant] = Field(default_factory=list)
    selected_video_index: int = 0
    video_state: GenerationState = Field(default_factory=GenerationState)

    @property
    def has_pending_job(self) -> bool:
        return self.image_state.pending or self.video_state.pending


# ── Audience & Ad Plan ───────────────────────────────────────────────────────

class AudienceProfile(BaseModel):
    age_group: Optional[str] = None
    gender: Optional[str] = None
    interests: list[str] = Field(default_factory=list)
    tone: Optional[str] = None
    countries: list[str] = Field(default_factory=list)
    extra: dict[str, Any] = Field(default_factory=dict)


class CustomerAvatar(BaseModel):
    name: Optional[str] = None
    demographics: Optional[str] = None
    backstory: Optional[str] = None
    visual_description: str = ""


class AdPlan(BaseModel):
    """Structured form of the LLM's video ad production plan."""

    product_name: str = ""
    ad_format: Optional[str] = None
    target_platform: Optional[str] = None
    customer_avatar: CustomerAvatar = Field(default_factory=CustomerAvatar)
    overall_tone: Optional[str] = None
    extra: dict[str, Any] = Field(default_factory=dict)


class CandidateImage(BaseModel):
    id: int
    url: str


# ── Session ──────────────────────────────────────────────────────────────────

class Session(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    product_id: str
    title: str = "New Session"

    current_step: int = Field(default=0, ge=0, le=4)
    furthest_step: int = Field(default=0, ge=0, le=4)

    target_audience: Optional[AudienceProfile] = None
    ad_plan: Optional[AdPlan] = None
    product_prompt: str = ""
    product_breakdown: str = ""
    character_prompt: str = ""

    scene_scripts: list[Scene] = Field(default_factory=list)
    scenes: list[Scene] = Field(default_factory=list)

    generated_characters: list[CandidateImage] = Field(default_factory=list)
    selected_character: Optional[str] = None
    generated_product_images: list[CandidateImage] = Field(default_factory=list)
    selected_product_image: Optional[str] = None

    status: SessionStatus = SessionStatus.DRAFT
    video_url: Optional[str] = None
    final_videos: list[FinalVideo] = Field(default_factory=list)
    video_progress: int = 0
    assembly_stage: Optional[AssemblyStage] = None
    assembly_message: Optional[str] = None
    assembly_error: Optional[str] = None

    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def has_pending_jobs(self) -> bool:
        return any(scene.has_pending_job for scene in self.scenes)


# ── Generation Job (owned by the job backend) ────────────────────────────────

class GenerationJob(BaseModel):
    id: str
    session_id: str
    scene_index: int                # position when submitted; used for asset names
    scene_id: Optional[int] = None  # Scene.id; rows without it predate reordering support
    kind: MediaKind
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    result_url: Optional[str] = None
    error_message: Optional[str] = None
    provider_task_id: Optional[str] = None
    prompt: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# ── Assembly ─────────────────────────────────────────────────────────────────

class AssemblyInput(BaseModel):
    video_url: str
    transition: TransitionType = TransitionType.FADE
    duration: float = 4.0
    include_in_final: bool = True


class AssemblyProgress(BaseModel):
    progress: int = 0
    status: SessionStatus = SessionStatus.DRAFT
    stage: Optional[AssemblyStage] = None
    message: Optional[str] = None
    video_url: Optional[str] = None


# ── API Request Models ───────────────────────────────────────────────────────

class SessionCreateRequest(BaseModel):
    product_id: str


class SessionRenameRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)


class NavigateRequest(BaseModel):
    step: int = Field(..., ge=0, le=4)


class AudienceRequest(BaseModel):
    target_audience: AudienceProfile


class SelectCharacterRequest(BaseModel):
    character_url: str


class SelectProductImageRequest(BaseModel):
    image_url: str


class SceneEdit(BaseModel):
    """Editable fields of a scene; media lists are never taken from the client."""

    id: int
    title: Optional[str] = None
    prompt: Optional[str] = None
    dialogue: Optional[str] = None
    motion: Optional[str] = None
    transitions: Optional[str] = None
    transition_type: Optional[TransitionType] = None
    included: Optional[bool] = None
    duration: Optional[float] = Field(default=None, gt=0)


class ScenesUpdateRequest(BaseModel):
    scenes: list[SceneEdit]


class SelectMediaRequest(BaseModel):
    kind: MediaKind
    variant_index: int


# ── API Response Models ──────────────────────────────────────────────────────

class MutationResponse(BaseModel):
    status: str = "ok"
    pending_edit_id: Optional[str] = None
    target_step: Optional[int] = None
    furthest_step: Optional[int] = None
    session: Optional[Session] = None


class DispatchResponse(BaseModel):
    scene_index: int
    kind: MediaKind
    job_id: str


class BatchDispatchResponse(BaseModel):
    jobs: list[DispatchResponse] = Field(default_factory=list)
    failed: dict[int, str] = Field(default_factory=dict)
