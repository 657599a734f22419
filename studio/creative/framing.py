"""
Vertical framing for scene stills.

Scene images are the reference frame for 9:16 scene videos. Prompts ask the
image model to leave room for a vertical crop; this performs that crop so the
video provider never letterboxes or guesses the framing.
"""

import logging
from io import BytesIO

from PIL import Image

logger = logging.getLogger(__name__)

VERTICAL_RATIO = 9 / 16
# ratios this close to 9:16 are left alone
RATIO_TOLERANCE = 0.01


def fit_vertical(image_bytes: bytes, mime_type: str = "image/png") -> tuple[bytes, str]:
    """
    Center-crop an image to 9:16.

    Returns the input unchanged when it is already vertical enough;
    otherwise a PNG of the cropped region.
    """
    img = Image.open(BytesIO(image_bytes))
    width, height = img.size
    ratio = width / height

    if abs(ratio - VERTICAL_RATIO) <= RATIO_TOLERANCE:
        return image_bytes, mime_type

    if ratio > VERTICAL_RATIO:
        new_width = int(round(height * VERTICAL_RATIO))
        left = (width - new_width) // 2
        box = (left, 0, left + new_width, height)
    else:
        new_height = int(round(width / VERTICAL_RATIO))
        top = (height - new_height) // 2
        box = (0, top, width, top + new_height)

    cropped = img.crop(box)
    if cropped.mode not in ("RGB", "RGBA"):
        cropped = cropped.convert("RGBA")

    out = BytesIO()
    cropped.save(out, format="PNG")
    logger.info(f"Cropped {width}x{height} scene image to {cropped.size[0]}x{cropped.size[1]}")
    return out.getvalue(), "image/png"
