import argparse
import dataclasses
import logging
from pathlib import Path

import cv2

from yolo_onnx import ColorTable, DetectorConfig, FrameStride, draw_detections, load_detector_config, load_pipeline
from yolo_onnx.config import FRAME_STRIDE_OPTIONS, MODEL_SIZE_OPTIONS
from yolo_onnx.metadata import load_class_catalog

logger = logging.getLogger("run_detector")


def build_config(args: argparse.Namespace) -> DetectorConfig:
    cfg = load_detector_config(Path(args.config)) if args.config else DetectorConfig()
    overrides = {}
    if args.model is not None:
        overrides["model_path"] = args.model
    if args.imgsz is not None:
        overrides["model_size"] = args.imgsz
    if args.conf is not None:
        overrides["conf_threshold"] = args.conf
    if args.iou is not None:
        overrides["iou_threshold"] = args.iou
    if args.every is not None:
        overrides["frame_stride"] = args.every
    if args.per_class_nms:
        overrides["class_agnostic_nms"] = False
    if args.classes is not None:
        overrides["class_names"] = load_class_catalog(args.classes).names
    if args.onnx_providers:
        overrides["providers"] = tuple(p.strip() for p in str(args.onnx_providers).split(",") if p.strip())
    return dataclasses.replace(cfg, **overrides) if overrides else cfg


def report(result) -> None:
    for det in result.detections:
        print(det.class_index, f"{det.confidence:.3f}", tuple(round(v, 1) for v in (det.x, det.y, det.w, det.h)))
    if result.counts:
        print(", ".join(f"{name}: {count}" for name, count in result.counts.items()))
    else:
        print("no detections")


def main() -> int:
    parser = argparse.ArgumentParser(description="Run a YOLO ONNX detector on an image, video or webcam.")
    src = parser.add_mutually_exclusive_group(required=True)
    src.add_argument("--image", default=None, help="Path to an input image.")
    src.add_argument("--video", default=None, help="Path to an input video file.")
    src.add_argument("--webcam", type=int, default=None, help="Webcam index (e.g., 0).")
    parser.add_argument("--config", default=None, help="Detector config JSON.")
    parser.add_argument("--model", default=None, help="Path to the .onnx model (overrides config).")
    parser.add_argument("--classes", default=None, help="metadata.yaml or one-name-per-line class list.")
    parser.add_argument("--imgsz", type=int, default=None, choices=MODEL_SIZE_OPTIONS, help="Model input size.")
    parser.add_argument("--conf", type=float, default=None, help="Confidence threshold (0.1 - 0.9).")
    parser.add_argument("--iou", type=float, default=None, help="IoU threshold for NMS.")
    parser.add_argument("--per-class-nms", action="store_true", help="Only suppress overlaps within the same class.")
    parser.add_argument(
        "--every", type=int, default=None, choices=FRAME_STRIDE_OPTIONS, help="Process every Nth frame for video/webcam."
    )
    parser.add_argument(
        "--onnx-providers",
        default=None,
        help='Comma-separated ORT providers, e.g. "CUDAExecutionProvider,CPUExecutionProvider".',
    )
    parser.add_argument("--show", action="store_true", help="Show a window with visualized detections.")
    parser.add_argument("--out", default=None, help="Optional output path (image or video) to save the visualization.")
    parser.add_argument("--max-frames", type=int, default=0, help="Stop after N processed frames (0 = no limit).")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.max_frames < 0:
        raise ValueError("--max-frames must be >= 0")

    cfg = build_config(args)
    pipeline = load_pipeline(cfg)
    colors = ColorTable()

    if args.image is not None:
        img = cv2.imread(args.image)
        if img is None:
            raise FileNotFoundError(f"Could not read image at path: {args.image}")

        result = pipeline(cv2.cvtColor(img, cv2.COLOR_BGR2RGB))
        report(result)

        vis = draw_detections(img, result.detections, catalog=pipeline.catalog, colors=colors)
        if args.out:
            ok = cv2.imwrite(args.out, vis)
            if not ok:
                raise RuntimeError(f"Failed to write output image: {args.out}")

        if args.show:
            cv2.imshow("detections", vis)
            cv2.waitKey(0)
            cv2.destroyAllWindows()
        return 0

    # Video/webcam path
    if args.video is not None:
        cap = cv2.VideoCapture(args.video)
        if not cap.isOpened():
            raise FileNotFoundError(f"Could not open video: {args.video}")
    else:
        cap = cv2.VideoCapture(int(args.webcam))
        if not cap.isOpened():
            raise RuntimeError(f"Could not open webcam index: {args.webcam}")

    stride = FrameStride(cfg.frame_stride)
    writer = None
    processed = 0

    try:
        while True:
            ok, frame = cap.read()
            if not ok or frame is None:
                break
            if not stride.should_process():
                continue

            result = pipeline(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))
            vis = draw_detections(frame, result.detections, catalog=pipeline.catalog, colors=colors)
            logger.info("frame %d: %s", processed, result.counts or "no detections")

            if args.out and writer is None:
                fps = cap.get(cv2.CAP_PROP_FPS)
                if fps is None or fps <= 0:
                    fps = 30.0
                h, w = vis.shape[:2]
                fourcc = cv2.VideoWriter_fourcc(*"mp4v")
                writer = cv2.VideoWriter(args.out, fourcc, fps / cfg.frame_stride, (w, h))
                if not writer.isOpened():
                    raise RuntimeError(f"Failed to open video writer: {args.out}")

            if writer is not None:
                writer.write(vis)

            if args.show:
                cv2.imshow("detections", vis)
                key = cv2.waitKey(1) & 0xFF
                if key in (27, ord("q")):
                    break

            processed += 1
            if args.max_frames and processed >= args.max_frames:
                break

    finally:
        cap.release()
        if writer is not None:
            writer.release()
        if args.show:
            cv2.destroyAllWindows()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
