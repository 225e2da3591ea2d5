"""
CLI for the emotion pipeline: list cameras, run the live window, annotate a video.
"""
from __future__ import annotations
import argparse, json, logging, sys
from emorec.camera import list_cameras
from emorec.config import Settings
from emorec.errors import EmotionPipelineError
from emorec.pipeline import annotate_video, run_live_overlay


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Live facial emotion recognition")
    p.add_argument("--model", help="Path to the ONNX emotion model")
    p.add_argument("--cascade", help="Path to the Haar face cascade")
    p.add_argument("--verbose", "-v", action="store_true")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("cameras", help="List usable camera indices")

    live = sub.add_parser("live", help="Open a camera and show the annotated stream")
    live.add_argument("--camera", type=int, default=None, help="Camera index")

    ann = sub.add_parser("annotate", help="Annotate a video file")
    ann.add_argument("--video", required=True, help="Path to input video")
    ann.add_argument("--out", default="output/annotated.avi", help="Path to output video")

    args = p.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    overrides = {}
    if args.model:
        overrides["EMOTION_MODEL_PATH"] = args.model
    if args.cascade:
        overrides["FACE_CASCADE_PATH"] = args.cascade
    settings = Settings(**overrides)

    if args.cmd == "cameras":
        cams = list_cameras(settings.PROBE_MAX_INDEX)
        print(json.dumps([c.model_dump() for c in cams], indent=2))
        return 0

    try:
        if args.cmd == "live":
            cam = settings.CAMERA_INDEX if args.camera is None else args.camera
            run_live_overlay(settings, cam)
        else:
            import os
            os.makedirs(os.path.dirname(args.out) or ".", exist_ok=True)
            out = annotate_video(args.video, args.out, settings)
            print(f"✅ Annotated video written to {out}")
    except (EmotionPipelineError, FileNotFoundError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
