from __future__ import annotations

import base64
import logging

import cv2
import numpy as np

from .input_loader import ImageInput, load_image

logger = logging.getLogger(__name__)

_ROTATIONS = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


def rotate_image(image: np.ndarray, degrees: int) -> np.ndarray:
    angle = int(degrees) % 360
    if angle == 0:
        return image
    if angle not in _ROTATIONS:
        raise ValueError(f"Rotation must be a multiple of 90 degrees, got {degrees}.")
    return cv2.rotate(image, _ROTATIONS[angle])


def enhance_for_ocr(
    image_bgr: np.ndarray,
    contrast_factor: float = 1.3,
    threshold_low: int = 100,
    threshold_high: int = 140,
) -> np.ndarray:
    """Luminance grayscale, contrast stretch around 128, then push to black/white outside the band.

    Pixels inside ``[threshold_low, threshold_high]`` keep their stretched
    value, so thin strokes are not lost to a hard binarization. The output has
    the same shape as the input (three identical channels).
    """
    pixels = image_bgr.astype(np.float64)
    blue, green, red = pixels[..., 0], pixels[..., 1], pixels[..., 2]
    gray = 0.299 * red + 0.587 * green + 0.114 * blue

    adjusted = np.clip(contrast_factor * (gray - 128.0) + 128.0, 0.0, 255.0)
    banded = np.where(adjusted > threshold_high, 255.0, np.where(adjusted < threshold_low, 0.0, adjusted))

    out = np.rint(banded).astype(np.uint8)
    return cv2.cvtColor(out, cv2.COLOR_GRAY2BGR)


def encode_data_url(image_bgr: np.ndarray, ext: str = ".png") -> str:
    ok, buf = cv2.imencode(ext, image_bgr)
    if not ok:
        raise ValueError(f"Could not encode image as {ext}.")
    mime = "image/png" if ext == ".png" else f"image/{ext.lstrip('.').replace('jpg', 'jpeg')}"
    return f"data:{mime};base64,{base64.b64encode(buf.tobytes()).decode('ascii')}"


def preprocess_image(
    source: ImageInput,
    contrast_factor: float = 1.3,
    threshold_low: int = 100,
    threshold_high: int = 140,
) -> ImageInput:
    """Return a PNG data URL of the enhanced image, or ``source`` untouched if it cannot be decoded."""
    try:
        loaded = load_image(source)
        enhanced = enhance_for_ocr(
            loaded.image,
            contrast_factor=contrast_factor,
            threshold_low=threshold_low,
            threshold_high=threshold_high,
        )
        return encode_data_url(enhanced)
    except Exception as exc:  # noqa: BLE001 - preprocessing is best-effort
        logger.warning("Preprocessing failed, using original image: %s", exc)
        return source
