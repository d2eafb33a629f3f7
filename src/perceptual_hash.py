import io
from typing import Optional

import imagehash
from PIL import Image

# imagehash.phash: 32x32 DCT, top-left 8x8 block, 64 bits.
PHASH_SIZE = 8


def compute_phash(png_data: bytes) -> imagehash.ImageHash:
    with Image.open(io.BytesIO(png_data)) as img:
        return imagehash.phash(img, hash_size=PHASH_SIZE)


def hamming_distance(first: imagehash.ImageHash, second: imagehash.ImageHash) -> int:
    return int(first - second)


def is_duplicate(
    previous: Optional[imagehash.ImageHash],
    current: imagehash.ImageHash,
    threshold: int,
) -> bool:
    """True when ``current`` is within ``threshold`` bits of ``previous``."""
    if previous is None:
        return False
    return hamming_distance(previous, current) < threshold
