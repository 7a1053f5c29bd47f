from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import List, Literal, Optional

SceneState = Literal["pending", "running", "succeeded", "failed"]
TERMINAL_STATES = ("succeeded", "failed")


class CamelModel(BaseModel):
    # The web client sends and expects camelCase field names
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SceneTask(BaseModel):
    scene_number: int
    scene_text: str
    state: SceneState = "pending"
    image_url: Optional[str] = None
    error_reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


class BatchJob(BaseModel):
    batch_id: str
    character_image_url: str
    character_name: str
    scenes: List[SceneTask]
    created_at: float
    expires_at: Optional[float] = None

    @property
    def status(self) -> str:
        """pending while any scene is pending/running, complete once all are terminal."""
        if all(s.is_terminal for s in self.scenes):
            return "complete"
        return "pending"

    @property
    def completed_count(self) -> int:
        return sum(1 for s in self.scenes if s.is_terminal)

    @property
    def failed_count(self) -> int:
        return sum(1 for s in self.scenes if s.state == "failed")

    def scene(self, scene_number: int) -> Optional[SceneTask]:
        if 1 <= scene_number <= len(self.scenes):
            return self.scenes[scene_number - 1]
        return None


# --- HTTP payloads ---

class BatchRequest(CamelModel):
    personalized_story_text: str = ""
    main_character_image: str = ""
    main_character_name: str = ""


class BatchStarted(CamelModel):
    batch_id: str
    total_scenes: int
    status: str = "pending"
    message: str = "Batch generation started. Use the batch ID to poll for progress."


class SceneStatus(CamelModel):
    scene_number: int
    scene_text: str
    state: SceneState
    image_url: Optional[str] = None
    failed: bool = False
    error: Optional[str] = None


class BatchStatus(CamelModel):
    batch_id: str
    status: Literal["pending", "complete"]
    scenes: List[SceneStatus] = Field(default_factory=list)
    completed_count: int = 0
    total_count: int = 0
    failed_count: int = 0
    progress: int = 0
    degraded: bool = False

    @classmethod
    def from_job(cls, job: BatchJob) -> "BatchStatus":
        scenes = [
            SceneStatus(
                scene_number=s.scene_number,
                scene_text=s.scene_text,
                state=s.state,
                image_url=s.image_url if s.state == "succeeded" else None,
                failed=s.state == "failed",
                error=s.error_reason,
            )
            for s in sorted(job.scenes, key=lambda s: s.scene_number)
        ]
        total = len(scenes)
        completed = job.completed_count
        status = job.status
        return cls(
            batch_id=job.batch_id,
            status=status,
            scenes=scenes,
            completed_count=completed,
            total_count=total,
            failed_count=job.failed_count,
            progress=round(completed * 100 / total) if total else 0,
            degraded=status == "complete" and job.failed_count > 0,
        )


class SceneRequest(CamelModel):
    scene_text: str = ""
    main_character_image: str = ""
    main_character_name: str = ""
    scene_id: Optional[int] = None


class SceneImageResult(BaseModel):
    scene_number: int
    image_url: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.image_url is not None
