"""
REST endpoints for the live emotion pipeline.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import Response

from emorec.camera import list_cameras
from emorec.config import Settings
from emorec.display import LatestFrameDisplay
from emorec.errors import DeviceUnavailable, ModelLoadError, NoSourceSelected
from emorec.models import CameraInfo, LiveStatus
from emorec.pipeline import PipelineLoop

router = APIRouter()
settings = Settings()
logger = logging.getLogger(__name__)

display = LatestFrameDisplay()
_pipeline: Optional[PipelineLoop] = None


def get_pipeline() -> PipelineLoop:
    # Built lazily so importing the app does not touch model files
    global _pipeline
    if _pipeline is None:
        _pipeline = PipelineLoop(settings, display)
    return _pipeline


@router.get("/cameras", response_model=List[CameraInfo])
def cameras():
    """
    Enumerate usable capture devices.

    Returns:
        list[CameraInfo]: probed indices in ascending order.
    """
    found = list_cameras(settings.PROBE_MAX_INDEX)
    logger.debug(f"[api] /cameras found={[c.index for c in found]}")
    return found


@router.post("/live/start")
def live_start(camera_index: Optional[int] = Query(None)):
    """
    Start (or restart on another camera) the live pipeline.

    Args:
        camera_index: device index; defaults to CAMERA_INDEX.
    """
    pipeline = get_pipeline()
    idx = settings.CAMERA_INDEX if camera_index is None else camera_index
    restarted = pipeline.running
    try:
        pipeline.start(idx)
    except NoSourceSelected as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DeviceUnavailable as e:
        logger.warning(f"[api] /live/start device unavailable: {e}")
        raise HTTPException(status_code=409, detail=str(e))
    except ModelLoadError as e:
        logger.exception("[api] /live/start model load failed")
        raise HTTPException(status_code=500, detail=str(e))
    return {"status": "restarted" if restarted else "started", "camera_index": idx}


@router.get("/live/status", response_model=LiveStatus)
def live_status():
    return get_pipeline().status()


@router.post("/live/stop")
def live_stop():
    pipeline = get_pipeline()
    if not pipeline.running:
        display.clear()
        return {"status": "not_running"}
    pipeline.stop()
    return {"status": "stopped"}


@router.get("/live/frame")
def live_frame():
    """Latest annotated frame as JPEG; 404 when nothing is being displayed."""
    data = display.jpeg()
    if data is None:
        raise HTTPException(status_code=404, detail="No frame available")
    return Response(content=data, media_type="image/jpeg")
