"""Frame annotation helpers.

- annotate: draw one region rectangle and (optionally) its emotion label, in place
- draw_detections: annotate every detection of a frame, in order
"""
from __future__ import annotations
import cv2
import numpy as np
from typing import Iterable, Optional, Tuple

from emorec.models import Detection, Region

BOX_COLOR: Tuple[int, int, int] = (255, 0, 0)      # BGR blue
LABEL_COLOR: Tuple[int, int, int] = (0, 255, 0)    # BGR green
BOX_THICKNESS = 2
FONT = cv2.FONT_HERSHEY_SIMPLEX
FONT_SCALE = 1.0
FONT_THICKNESS = 2


def annotate(frame: np.ndarray,
             region: Region,
             label: Optional[str] = None) -> np.ndarray:
    """Draw a rectangle at region and the label above its top-left corner.

    The frame is modified in place and returned, so repeated calls on the
    same frame compose. Pixels inside the region are never moved or resized;
    only the outline and text are painted over them.

    Args:
        frame: BGR image owned by the current loop iteration
        region: rectangle in frame coordinates
        label: emotion label; None or "" draws the rectangle only

    Returns:
        The same frame object.
    """
    x, y, w, h = region.x, region.y, region.w, region.h
    cv2.rectangle(frame, (x, y), (x + w, y + h), BOX_COLOR, BOX_THICKNESS)
    if label:
        (_, th), _ = cv2.getTextSize(label, FONT, FONT_SCALE, FONT_THICKNESS)
        # keep the text on-screen for faces touching the top edge
        baseline_y = y - 10 if y - 10 >= th else y + th + 5
        cv2.putText(frame, label, (x, baseline_y), FONT, FONT_SCALE, LABEL_COLOR, FONT_THICKNESS, cv2.LINE_AA)
    return frame


def draw_detections(frame: np.ndarray, detections: Iterable[Detection]) -> np.ndarray:
    for det in detections:
        annotate(frame, det.region, det.label)
    return frame
