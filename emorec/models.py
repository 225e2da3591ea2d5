"""
Pydantic data models shared by the pipeline and the API.
"""
from __future__ import annotations
from pydantic import BaseModel, Field
from typing import List, Optional


class Region(BaseModel):
    x: int
    y: int
    w: int
    h: int

    def fits_within(self, width: int, height: int) -> bool:
        """True when the rectangle is non-empty and lies inside a width x height frame."""
        return (
            self.x >= 0 and self.y >= 0
            and self.w > 0 and self.h > 0
            and self.x + self.w <= width
            and self.y + self.h <= height
        )


class Detection(BaseModel):
    region: Region
    label: Optional[str] = None


class FrameResult(BaseModel):
    index: int
    detections: List[Detection] = Field(default_factory=list)
    label: Optional[str] = None


class CameraInfo(BaseModel):
    index: int
    name: str


class LiveStatus(BaseModel):
    running: bool
    source_id: int | str | None = None
    started_at: float | None = None
    frames_processed: int = 0
    last_label: str | None = None
