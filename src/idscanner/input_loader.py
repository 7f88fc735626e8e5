from __future__ import annotations

import base64
import binascii
import io
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Union

import cv2
import numpy as np
from PIL import Image, ImageOps

SUPPORTED_IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".bmp", ".tif", ".tiff", ".webp", ".heic", ".heif"}

_DATA_URL_RE = re.compile(r"^data:(?P<meta>[^,]*?)(?P<b64>;base64)?,(?P<payload>.*)$", re.S)

ImageInput = Union[str, Path, bytes, bytearray, np.ndarray]


@dataclass(slots=True)
class LoadedImage:
    image: np.ndarray
    from_data_url: bool


def is_data_url(value: object) -> bool:
    return isinstance(value, str) and value.startswith("data:")


def _check_size(size_bytes: int, max_file_size_mb: int) -> None:
    size_mb = size_bytes / (1024 * 1024)
    if size_mb > max_file_size_mb:
        raise ValueError(f"File is too large ({size_mb:.2f} MB). Max allowed: {max_file_size_mb} MB.")


def _register_heif() -> None:
    try:
        import pillow_heif
    except ImportError as exc:
        raise RuntimeError("HEIC support requires pillow-heif. Install extra: [heic]") from exc
    pillow_heif.register_heif_opener()


def _pil_to_bgr(im: Image.Image) -> np.ndarray:
    # Exif transpose neutralizes orientation metadata so OCR sees the real orientation.
    im = ImageOps.exif_transpose(im).convert("RGB")
    return cv2.cvtColor(np.array(im), cv2.COLOR_RGB2BGR)


def decode_image_bytes(data: bytes) -> np.ndarray:
    if not data:
        raise ValueError("Image data is empty.")
    try:
        with Image.open(io.BytesIO(data)) as im:
            return _pil_to_bgr(im)
    except OSError as exc:
        raise ValueError(f"Could not decode image data: {exc}") from exc


def decode_data_url(value: str) -> bytes:
    match = _DATA_URL_RE.match(value.strip())
    if not match:
        raise ValueError("Malformed data URL.")
    payload = match.group("payload")
    if not match.group("b64"):
        raise ValueError("Only base64 data URLs are supported.")
    try:
        return base64.b64decode(payload, validate=False)
    except binascii.Error as exc:
        raise ValueError(f"Invalid base64 payload in data URL: {exc}") from exc


def _load_path(path: Path, max_file_size_mb: int) -> np.ndarray:
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    _check_size(path.stat().st_size, max_file_size_mb=max_file_size_mb)
    ext = path.suffix.lower()
    if ext not in SUPPORTED_IMAGE_EXTS:
        raise ValueError(f"Unsupported file extension: {ext}")
    if ext in {".heic", ".heif"}:
        _register_heif()

    with Image.open(path) as im:
        return _pil_to_bgr(im)


def load_image(source: ImageInput, max_file_size_mb: int = 12) -> LoadedImage:
    """Decode any supported image input into a BGR array.

    Paths, encoded bytes and arrays count as original files; a ``data:`` URL
    string is flagged so the caller can tell the two apart.
    """
    if isinstance(source, np.ndarray):
        if source.size == 0:
            raise ValueError("Image array is empty.")
        image = source
        if image.ndim == 2:
            image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
        elif image.shape[2] == 4:
            image = cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
        return LoadedImage(image=image, from_data_url=False)

    if isinstance(source, (bytes, bytearray)):
        _check_size(len(source), max_file_size_mb=max_file_size_mb)
        return LoadedImage(image=decode_image_bytes(bytes(source)), from_data_url=False)

    if is_data_url(source):
        raw = decode_data_url(str(source))
        _check_size(len(raw), max_file_size_mb=max_file_size_mb)
        return LoadedImage(image=decode_image_bytes(raw), from_data_url=True)

    return LoadedImage(image=_load_path(Path(source), max_file_size_mb), from_data_url=False)
