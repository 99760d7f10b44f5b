from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


class Verdict(str, Enum):
    AUTHENTIC = "AUTHENTIC"
    INCONCLUSIVE = "INCONCLUSIVE"
    SYNTHETIC = "SYNTHETIC"


class GateDecision(str, Enum):
    PROCEED = "proceed"
    PROCEED_FLAGGED = "proceed_flagged"   # passes the hard gate, shown as INCONCLUSIVE
    BLOCK = "block"


class MediaItem(BaseModel):
    """One user submission. Frozen once a pipeline run starts."""

    model_config = ConfigDict(frozen=True)

    raw_bytes: bytes = Field(repr=False)
    display_name: str
    media_kind: MediaKind
    description: str = ""
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.raw_bytes)


class Reasoning(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    content_analysis: str = ""
    synthetic_indicators: str = ""
    authentic_indicators: str = ""
    overall: str = ""


class DetectionResult(BaseModel):
    """Detector response. Wire format is camelCase; probabilities are integers 0-100."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    media_kind: MediaKind
    synthetic_probability: int = Field(ge=0, le=100)
    natural_probability: int = Field(ge=0, le=100)
    reasoning: Reasoning = Field(default_factory=Reasoning)
    storage_ref: Optional[str] = None
    storage_ref_id: Optional[str] = None

    @model_validator(mode="after")
    def _probabilities_sum_to_100(self):
        if self.synthetic_probability + self.natural_probability != 100:
            raise ValueError(
                f"synthetic ({self.synthetic_probability}) + natural "
                f"({self.natural_probability}) must equal 100"
            )
        return self
