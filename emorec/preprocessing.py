"""
Face-region -> classifier tensor.

The steps and their order match the classifier's training-time preprocessing:
crop, resize to INPUT_SIZE x INPUT_SIZE with a pinned interpolation, float32,
divide by 255.0, lay out as (1, H, W, 1) row-major.
"""
from __future__ import annotations

import cv2
import numpy as np

from emorec.errors import InvalidRegion
from emorec.models import Region

INPUT_SIZE = 48


def crop_region(gray: np.ndarray, region: Region) -> np.ndarray:
    """Slice the region out of a 2D frame. Out-of-bounds regions are rejected, not clamped."""
    if gray.ndim != 2:
        raise InvalidRegion(f"expected a 2D grayscale frame, got shape {gray.shape}")
    H, W = gray.shape
    if not region.fits_within(W, H):
        raise InvalidRegion(
            f"region ({region.x},{region.y},{region.w},{region.h}) outside frame {W}x{H}"
        )
    return gray[region.y:region.y + region.h, region.x:region.x + region.w]


def preprocess(gray: np.ndarray,
               region: Region,
               size: int = INPUT_SIZE,
               interpolation: int = cv2.INTER_LINEAR) -> np.ndarray:
    """
    Build the classifier input for one detected face.

    Args:
        gray: 2D uint8 grayscale frame
        region: face rectangle in frame coordinates
        size: output side length
        interpolation: OpenCV resize flag (see Settings.RESIZE_INTERPOLATION)

    Returns:
        float32 array of shape (1, size, size, 1) with values in [0.0, 1.0]

    Raises:
        InvalidRegion: region bounds fall outside the frame
    """
    chip = crop_region(gray, region)
    resized = cv2.resize(chip, (size, size), interpolation=interpolation)
    tensor = resized.astype(np.float32) / np.float32(255.0)
    return np.ascontiguousarray(tensor.reshape(1, size, size, 1))
