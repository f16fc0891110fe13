import unittest

import numpy as np

from yolo_onnx.decode import DecoderConfig
from yolo_onnx.errors import DecodeError
from yolo_onnx.letterbox import compute_letterbox
from yolo_onnx.runtime import DetectionPipeline, FrameStride, class_counts, pipeline_from_config, to_raw_output
from yolo_onnx.config import DetectorConfig
from yolo_onnx.types import ClassCatalog, Detection, RawOutput

CLASSES = ClassCatalog(["cpu", "ram_slot", "cmos_battery"])


def _to_model_space(box_xywh, geometry):
    """Place a source-pixel box onto the letterboxed canvas as (cx, cy, w, h)."""
    x, y, w, h = box_xywh
    s = geometry.scale
    return [(x + w / 2) * s + geometry.pad_x, (y + h / 2) * s + geometry.pad_y, w * s, h * s]


class FakeModel:
    """Returns a fixed attribute-major output and records what it was fed."""

    def __init__(self, rows):
        self.table = np.asarray(rows, dtype=np.float32)
        self.blobs = []

    def __call__(self, blob):
        self.blobs.append(blob.copy())
        data = np.ascontiguousarray(self.table.T)
        return data.reshape(-1), (1, self.table.shape[1], self.table.shape[0])


class TestDetectionPipeline(unittest.TestCase):
    def test_end_to_end(self) -> None:
        image = np.full((480, 640, 3), 90, dtype=np.uint8)
        geometry = compute_letterbox(640, 480, 320)
        rows = [
            _to_model_space((100, 100, 80, 60), geometry) + [0.9, 0.95, 0.05, 0.0],
            _to_model_space((104, 102, 80, 60), geometry) + [0.8, 0.90, 0.10, 0.0],  # duplicate
            _to_model_space((400, 300, 120, 90), geometry) + [0.7, 0.1, 0.8, 0.1],
            _to_model_space((10, 10, 50, 50), geometry) + [0.2, 0.1, 0.1, 0.5],  # weak
        ]
        model = FakeModel(rows)
        pipe = DetectionPipeline(model, CLASSES, model_size=320, decoder_cfg=DecoderConfig(conf_threshold=0.3))

        result = pipe(image)

        self.assertEqual(len(model.blobs), 1)
        blob = model.blobs[0]
        self.assertEqual(blob.shape, (1, 3, 320, 320))
        self.assertEqual(blob.dtype, np.float32)
        # 640x480 -> 320x240, 40 rows of padding above and below.
        self.assertTrue(np.all(blob[:, :, :40] == 0.0))
        self.assertTrue(np.all(blob[:, :, 280:] == 0.0))
        self.assertTrue(np.allclose(blob[:, :, 40:280], 90 / 255))

        self.assertEqual(len(result), 2)
        self.assertEqual([d.class_index for d in result.detections], [0, 1])
        self.assertEqual(result.counts, {"cpu": 1, "ram_slot": 1})
        self.assertEqual(result.geometry, geometry)

        first = result.detections[0]
        self.assertAlmostEqual(first.x, 100.0, delta=1.0)
        self.assertAlmostEqual(first.y, 100.0, delta=1.0)
        self.assertAlmostEqual(first.w, 80.0, delta=1.0)
        self.assertAlmostEqual(first.h, 60.0, delta=1.0)

    def test_round_trip_recovers_source_boxes(self) -> None:
        cases = [((1920, 1080), 640), ((480, 640), 416), ((333, 517), 512), ((640, 640), 320)]
        for (w, h), n in cases:
            geometry = compute_letterbox(w, h, n)
            box = (w * 0.2, h * 0.3, w * 0.25, h * 0.4)
            row = _to_model_space(box, geometry) + [1.0, 0.9, 0.0, 0.0]
            pipe = DetectionPipeline(FakeModel([row]), CLASSES, model_size=n)
            (det,) = pipe(np.zeros((h, w, 3), dtype=np.uint8)).detections
            for got, want in zip((det.x, det.y, det.w, det.h), box):
                self.assertAlmostEqual(got, want, delta=1.0)

    def test_per_class_nms_option(self) -> None:
        geometry = compute_letterbox(200, 200, 320)
        rows = [
            _to_model_space((20, 20, 100, 100), geometry) + [0.9, 0.9, 0.0, 0.0],
            _to_model_space((22, 22, 100, 100), geometry) + [0.9, 0.0, 0.8, 0.0],
        ]
        image = np.zeros((200, 200, 3), dtype=np.uint8)
        agnostic = DetectionPipeline(FakeModel(rows), CLASSES, model_size=320)
        per_class = DetectionPipeline(FakeModel(rows), CLASSES, model_size=320, class_agnostic_nms=False)
        self.assertEqual(len(agnostic(image)), 1)
        self.assertEqual(len(per_class(image)), 2)

    def test_empty_output(self) -> None:
        def infer(blob):
            return RawOutput(np.zeros(0, dtype=np.float32), shape=(1, 0, 8))

        result = DetectionPipeline(infer, CLASSES, model_size=320)(np.zeros((10, 10, 3), dtype=np.uint8))
        self.assertEqual(result.detections, [])
        self.assertEqual(result.counts, {})

    def test_decode_error_propagates(self) -> None:
        def infer(blob):
            return np.zeros((1, 5, 3), dtype=np.float32)

        pipe = DetectionPipeline(infer, CLASSES, model_size=320)
        with self.assertRaises(DecodeError):
            pipe(np.zeros((10, 10, 3), dtype=np.uint8))

    def test_one_pixel_high_image(self) -> None:
        def infer(blob):
            self.assertEqual(blob.shape, (1, 3, 320, 320))
            return RawOutput(np.zeros(0, dtype=np.float32), shape=(1, 0, 8))

        result = DetectionPipeline(infer, CLASSES, model_size=320)(np.zeros((1, 2000, 3), dtype=np.uint8))
        self.assertEqual(result.detections, [])
        self.assertEqual(result.geometry.padded_height, 1)

    def test_zero_sized_image_rejected(self) -> None:
        pipe = DetectionPipeline(FakeModel([]), CLASSES, model_size=320)
        with self.assertRaises(ValueError):
            pipe(np.zeros((0, 10, 3), dtype=np.uint8))

    def test_pipeline_from_config(self) -> None:
        cfg = DetectorConfig(model_size=416, conf_threshold=0.5, class_names=("a", "b"), class_agnostic_nms=False)
        pipe = pipeline_from_config(cfg, FakeModel([]))
        self.assertEqual(pipe.model_size, 416)
        self.assertEqual(pipe.conf_threshold, 0.5)
        self.assertEqual(pipe.catalog, ClassCatalog(["a", "b"]))
        self.assertFalse(pipe.class_agnostic_nms)


class TestHelpers(unittest.TestCase):
    def test_to_raw_output_variants(self) -> None:
        arr = np.zeros((1, 2, 8), dtype=np.float32)
        self.assertEqual(to_raw_output(arr).shape, (1, 2, 8))
        self.assertEqual(to_raw_output((arr.reshape(-1), [1, 2, 8])).shape, (1, 2, 8))
        self.assertEqual(to_raw_output([arr]).shape, (1, 2, 8))
        raw = RawOutput(arr)
        self.assertIs(to_raw_output(raw), raw)
        self.assertIsNone(raw.shape)

    def test_class_counts(self) -> None:
        dets = [
            Detection(0, 0, 5, 5, 2, 0.9),
            Detection(0, 0, 5, 5, 0, 0.8),
            Detection(0, 0, 5, 5, 2, 0.7),
        ]
        counts = class_counts(dets, CLASSES)
        self.assertEqual(counts, {"cpu": 1, "cmos_battery": 2})
        self.assertEqual(list(counts), ["cpu", "cmos_battery"])

    def test_frame_stride(self) -> None:
        every = FrameStride(1)
        self.assertEqual([every.should_process() for _ in range(3)], [True, True, True])
        third = FrameStride(3)
        self.assertEqual([third.should_process() for _ in range(6)], [False, False, True, False, False, True])
        third.reset()
        self.assertFalse(third.should_process())
        with self.assertRaises(ValueError):
            FrameStride(0)


if __name__ == "__main__":
    unittest.main()
