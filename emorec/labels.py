"""
Class-label table and winner selection.
"""
from __future__ import annotations
from typing import Sequence

import numpy as np

from emorec.errors import EmptyScoreVector, LabelMismatch

CLASS_LABELS = ("Angry", "Disgust", "Fear", "Happy", "Neutral", "Sad", "Surprised")


def select_label(scores: Sequence[float], labels: Sequence[str] = CLASS_LABELS) -> str:
    """
    Pick the label at the index of the highest score.

    Ties go to the lowest index (np.argmax returns the first maximum).
    """
    arr = np.asarray(scores, dtype=np.float64).reshape(-1)
    if arr.size == 0:
        raise EmptyScoreVector("score vector is empty")
    if arr.size != len(labels):
        raise LabelMismatch(f"{arr.size} scores for {len(labels)} labels")
    return labels[int(np.argmax(arr))]
