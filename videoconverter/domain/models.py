from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class Quality(int, Enum):
    Q1080 = 1080
    Q720 = 720
    Q480 = 480
    Q360 = 360
    PREVIEW = 3333

    @classmethod
    def ordered(cls) -> List["Quality"]:
        return [cls.Q1080, cls.Q720, cls.Q480, cls.Q360, cls.PREVIEW]

    @property
    def is_preview(self) -> bool:
        return self is Quality.PREVIEW

    @property
    def tag(self) -> str:
        """Short label used in produced file names and log lines."""
        return "preview" if self.is_preview else str(self.value)


def format_file_name(name: str) -> str:
    return name.strip().replace(" ", "-")


class Slot(BaseModel):
    """A (property ID, URL) pair stored in the catalog for one file."""

    property_id: Optional[int] = None
    url: Optional[str] = None

    @property
    def present(self) -> bool:
        return bool(self.url)


def _empty_slots() -> Dict[Quality, Slot]:
    return {q: Slot() for q in Quality.ordered()}


class VideoRecord(BaseModel):
    id: int
    original: Slot = Field(default_factory=Slot)
    slots: Dict[Quality, Slot] = Field(default_factory=_empty_slots)

    # Working state, never persisted
    original_filename: Optional[str] = None
    original_object: Optional[str] = None
    local_original_path: Optional[Path] = None
    work_dir: Optional[Path] = None
    remote_dir: str = ""

    def slot(self, quality: Quality) -> Slot:
        if quality not in self.slots:
            self.slots[quality] = Slot()
        return self.slots[quality]

    def missing_qualities(self) -> List[Quality]:
        return [q for q in Quality.ordered() if not self.slot(q).present]

    def is_complete(self) -> bool:
        return not self.missing_qualities()

    def is_partially_populated(self) -> bool:
        missing = len(self.missing_qualities())
        return 0 < missing < len(Quality.ordered())


class QualityPropertyMap(BaseModel):
    """Catalog property IDs for every derivative kind."""

    id_1080: int
    id_720: int
    id_480: int
    id_360: int
    id_preview: int

    def property_id_for(self, quality: Quality) -> int:
        return {
            Quality.Q1080: self.id_1080,
            Quality.Q720: self.id_720,
            Quality.Q480: self.id_480,
            Quality.Q360: self.id_360,
            Quality.PREVIEW: self.id_preview,
        }[quality]


class RunCounters(BaseModel):
    discovered: int = Field(default=0, ge=0)
    converted: int = Field(default=0, ge=0)
    convert_failed: int = Field(default=0, ge=0)
    uploaded: int = Field(default=0, ge=0)
    upload_failed: int = Field(default=0, ge=0)
    completed: bool = False

    def has_failures(self) -> bool:
        return self.convert_failed > 0 or self.upload_failed > 0
