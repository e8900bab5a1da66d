import json
from enum import Enum
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from .settings import VIDEO_WIDTH, VIDEO_HEIGHT, FPS, VIDEO_BACKGROUND_COLOR

AgeGroup = Literal["toddler", "preschool", "elementary"]
ArtStyle = Literal["cartoon", "anime", "realistic", "comic"]
TargetLength = Literal["short", "medium", "long"]

# scenes per target length
LENGTH_GUIDE = {
    "short": {"scenes": 3, "description": "2-3 minutes"},
    "medium": {"scenes": 5, "description": "4-6 minutes"},
    "long": {"scenes": 8, "description": "7-10 minutes"},
}

class StoryRequest(BaseModel):
    prompt: str
    style: ArtStyle = "cartoon"
    target_length: TargetLength = "short"
    age_group: AgeGroup = "preschool"

    @property
    def scene_count(self) -> int:
        return LENGTH_GUIDE[self.target_length]["scenes"]

class Character(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    personality: str = ""

class DialogueLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    character: str
    text: str

class SceneDraft(BaseModel):
    model_config = ConfigDict(frozen=True)

    number: int
    title: str
    setting: str = ""
    narration: str = ""
    dialogue: List[DialogueLine] = Field(default_factory=list)
    actions: List[str] = Field(default_factory=list)

class StoryDraft(BaseModel):
    """A structured story before it is persisted.

    Produced either by an AI provider or by the template synthesizer and
    never changed afterwards.
    """
    model_config = ConfigDict(frozen=True)

    title: str
    characters: List[Character] = Field(default_factory=list)
    scenes: List[SceneDraft]

    @model_validator(mode="after")
    def _check_structure(self):
        if not self.scenes:
            raise ValueError("story has no scenes")
        for expected, scene in enumerate(self.scenes, start=1):
            if scene.number != expected:
                raise ValueError(f"scene numbers must run 1..{len(self.scenes)}, got {scene.number} at position {expected}")
        names = [c.name for c in self.characters]
        if len(names) != len(set(names)):
            raise ValueError("character names must be unique")
        return self

    def unknown_speakers(self) -> List[str]:
        known = {c.name for c in self.characters}
        unknown = []
        for scene in self.scenes:
            for line in scene.dialogue:
                if line.character not in known and line.character not in unknown:
                    unknown.append(line.character)
        return unknown

    def to_script(self) -> str:
        """JSON text stored in the stories.script column."""
        return json.dumps(self.model_dump(), ensure_ascii=False)

class VideoScene(BaseModel):
    image_url: str
    duration: float = Field(gt=0)
    audio_url: Optional[str] = None

class VideoOptions(BaseModel):
    width: int = Field(default=VIDEO_WIDTH, gt=0)
    height: int = Field(default=VIDEO_HEIGHT, gt=0)
    fps: int = Field(default=FPS, gt=0)
    background_color: str = VIDEO_BACKGROUND_COLOR

    @field_validator("background_color")
    @classmethod
    def _no_filter_syntax(cls, v: str) -> str:
        # the colour is spliced into an ffmpeg filter graph
        if not v or any(ch in v for ch in ",;:[]'"):
            raise ValueError(f"invalid background color: {v!r}")
        return v

class Stage(str, Enum):
    LOADING = "loading"
    PREPARING = "preparing"
    ENCODING = "encoding"
    FINALIZING = "finalizing"
    COMPLETE = "complete"

    @property
    def order(self) -> int:
        return list(Stage).index(self)

class VideoGenerationProgress(BaseModel):
    stage: Stage
    progress: int = Field(ge=0, le=100)
    message: str

class AudioOutcome(str, Enum):
    NONE = "none"
    MUXED = "muxed"
    SILENT_FALLBACK = "silent_fallback"

class AssemblyResult(BaseModel):
    data: bytes
    audio: AudioOutcome = AudioOutcome.NONE
    fallback_reason: Optional[str] = None

class SceneRecord(BaseModel):
    scene_number: int
    title: str
    script_text: str
    background_description: str = ""
    background_url: Optional[str] = None
    audio_url: Optional[str] = None
    duration: float = 5.0
    transition_type: Literal["fade", "slide", "zoom", "none"] = "fade"

class CharacterPlacement(BaseModel):
    scene_number: int
    character: str
    x: float
    y: float = 0.7
    scale: float = 1.0
    z_index: int = 0

class OrchestrationState(BaseModel):
    job_id: str
    tmp_dir: str
    request: StoryRequest
    draft: Optional[StoryDraft] = None
    source: Optional[str] = None
    scenes: List[SceneRecord] = Field(default_factory=list)
    image_paths: List[str] = Field(default_factory=list)
    audio_paths: List[str] = Field(default_factory=list)
    audio_outcome: Optional[AudioOutcome] = None
    final_path: Optional[str] = None
