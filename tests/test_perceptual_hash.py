import unittest

from helpers import make_png

from perceptual_hash import compute_phash, hamming_distance, is_duplicate


class PerceptualHashTests(unittest.TestCase):
    def test_identical_frames_have_zero_distance(self) -> None:
        frame = make_png("vertical")
        self.assertEqual(hamming_distance(compute_phash(frame), compute_phash(frame)), 0)

    def test_different_layouts_are_far_apart(self) -> None:
        vertical = compute_phash(make_png("vertical"))
        horizontal = compute_phash(make_png("horizontal"))
        self.assertGreaterEqual(hamming_distance(vertical, horizontal), 4)

    def test_hash_survives_rescaling(self) -> None:
        small = compute_phash(make_png("vertical", size=(64, 64)))
        large = compute_phash(make_png("vertical", size=(256, 256)))
        self.assertLess(hamming_distance(small, large), 4)

    def test_is_duplicate(self) -> None:
        frame = compute_phash(make_png("vertical"))
        other = compute_phash(make_png("horizontal"))
        self.assertFalse(is_duplicate(None, frame, 4))
        self.assertTrue(is_duplicate(frame, frame, 4))
        self.assertFalse(is_duplicate(frame, other, 4))
        # A zero threshold disables deduplication entirely.
        self.assertFalse(is_duplicate(frame, frame, 0))


if __name__ == "__main__":
    unittest.main()
