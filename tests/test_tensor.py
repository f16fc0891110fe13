import unittest

import numpy as np

from yolo_onnx.letterbox import compute_letterbox
from yolo_onnx.tensor import TensorPacker, pack_image


class TestTensorPacker(unittest.TestCase):
    def test_planar_layout_and_padding(self) -> None:
        n = 64
        img = np.zeros((50, 100, 3), dtype=np.uint8)
        img[:, :, 0] = 255  # pure red
        buf = pack_image(img, n)

        self.assertEqual(buf.shape, (3 * n * n,))
        self.assertEqual(buf.dtype, np.float32)
        planes = buf.reshape(3, n, n)
        # Content rows 16..47, padding above/below.
        self.assertTrue(np.all(planes[0, 16:48] == 1.0))
        self.assertTrue(np.all(planes[1:, 16:48] == 0.0))
        self.assertTrue(np.all(planes[:, :16] == 0.0))
        self.assertTrue(np.all(planes[:, 48:] == 0.0))

    def test_offsets_follow_row_major_pixel_index(self) -> None:
        n = 32
        img = np.zeros((n, n, 3), dtype=np.uint8)
        img[3, 5] = (51, 102, 204)
        buf = pack_image(img, n)
        i = 3 * n + 5
        plane = n * n
        self.assertAlmostEqual(float(buf[i]), 51 / 255, places=6)
        self.assertAlmostEqual(float(buf[i + plane]), 102 / 255, places=6)
        self.assertAlmostEqual(float(buf[i + 2 * plane]), 204 / 255, places=6)

    def test_values_within_unit_range(self) -> None:
        rng = np.random.default_rng(7)
        for n in (320, 416):
            img = rng.integers(0, 256, size=(123, 457, 3), dtype=np.uint8)
            buf = pack_image(img, n)
            self.assertGreaterEqual(float(buf.min()), 0.0)
            self.assertLessEqual(float(buf.max()), 1.0)

    def test_alpha_discarded(self) -> None:
        img = np.zeros((8, 8, 4), dtype=np.uint8)
        img[:, :, :3] = 255
        img[:, :, 3] = 0
        buf = pack_image(img, 8)
        self.assertTrue(np.all(buf == 1.0))

    def test_grayscale_replicated(self) -> None:
        img = np.full((8, 8), 51, dtype=np.uint8)
        planes = pack_image(img, 8).reshape(3, 8, 8)
        self.assertTrue(np.allclose(planes, 0.2))

    def test_buffer_reused_and_padding_cleared(self) -> None:
        packer = TensorPacker(16)
        first = packer.pack(np.full((16, 16, 3), 255, dtype=np.uint8))
        self.assertTrue(np.all(first == 1.0))

        second = packer.pack(np.full((8, 16, 3), 255, dtype=np.uint8))
        self.assertIs(first, second)
        planes = second.reshape(3, 16, 16)
        self.assertTrue(np.all(planes[:, :4] == 0.0))
        self.assertTrue(np.all(planes[:, 12:] == 0.0))
        self.assertTrue(np.all(planes[:, 4:12] == 1.0))
        self.assertEqual(packer.as_nchw().shape, (1, 3, 16, 16))

    def test_deterministic(self) -> None:
        rng = np.random.default_rng(3)
        img = rng.integers(0, 256, size=(97, 211, 3), dtype=np.uint8)
        self.assertTrue(np.array_equal(pack_image(img, 320), pack_image(img, 320)))

    def test_explicit_geometry_must_match_size(self) -> None:
        img = np.zeros((10, 20, 3), dtype=np.uint8)
        packer = TensorPacker(64)
        with self.assertRaises(ValueError):
            packer.pack(img, compute_letterbox(20, 10, 32))

    def test_thin_source_keeps_one_pixel_column(self) -> None:
        # 1 x 3000 at 320 scales to 0.1 px wide; it still occupies one column.
        buf = pack_image(np.full((3000, 1, 3), 255, dtype=np.uint8), 320)
        planes = buf.reshape(3, 320, 320)
        self.assertTrue(np.all(planes[:, :, 159] == 1.0))
        self.assertTrue(np.all(planes[:, :, :159] == 0.0))
        self.assertTrue(np.all(planes[:, :, 160:] == 0.0))

    def test_wide_source_keeps_one_pixel_row(self) -> None:
        buf = pack_image(np.full((1, 2000, 3), 255, dtype=np.uint8), 320)
        planes = buf.reshape(3, 320, 320)
        self.assertTrue(np.all(planes[:, 159, :] == 1.0))
        self.assertEqual(int(np.count_nonzero(planes)), 3 * 320)

    def test_rejects_non_uint8(self) -> None:
        with self.assertRaises(ValueError):
            pack_image(np.zeros((4, 4, 3), dtype=np.float32), 8)


if __name__ == "__main__":
    unittest.main()
