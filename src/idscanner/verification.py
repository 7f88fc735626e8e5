from __future__ import annotations

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any

import cv2
import numpy as np

from .api_client import ApiClient
from .config import Settings, load_settings
from .errors import IdentityMismatchError, VerificationError
from .input_loader import ImageInput, decode_data_url, is_data_url
from .models import IdentityCheck, ScanErr, ScanResult
from .ocr_backends import OCRBackend, ProgressCallback
from .pipeline import scan_id_card
from .preprocessing import encode_data_url
from .validation import cross_check_identity

logger = logging.getLogger(__name__)

FACE_IMAGES_KEY = "verification_face_images"
USER_TYPES = ("INDIVIDUAL", "AGENT", "COMPANY")

_SCANNED_FIELDS = (
    ("scannedIdNumber", "id_number"),
    ("scannedSerialNumber", "serial_number"),
    ("scannedDateOfBirth", "date_of_birth"),
    ("scannedFullNames", "full_names"),
    ("scannedFirstName", "first_name"),
    ("scannedMiddleName", "middle_name"),
    ("scannedLastName", "last_name"),
    ("scannedSex", "sex"),
    ("scannedDistrictOfBirth", "district_of_birth"),
    ("scannedPlaceOfIssue", "place_of_issue"),
    ("scannedDateOfIssue", "date_of_issue"),
)


def mismatch_message(first_name: str | None, last_name: str | None, result: ScanResult) -> str:
    return (
        f"Name mismatch! Your account name ({first_name or ''} {last_name or ''}) does not match "
        f"the name on the ID ({result.display_name}). Please update your account name in Settings "
        "or use an ID that matches your account."
    )


def require_identity_match(
    result: ScanResult,
    expected_first_name: str | None,
    expected_last_name: str | None,
) -> IdentityCheck:
    """Turn the advisory name cross-check into a hard gate."""
    check = cross_check_identity(
        expected_first_name,
        expected_last_name,
        result.first_name,
        result.last_name,
        result.full_names,
    )
    if not check.names_match:
        raise IdentityMismatchError(mismatch_message(expected_first_name, expected_last_name, result))
    return check


class FaceStep(str, Enum):
    IDLE = "idle"
    READY = "ready"
    LEFT = "left"
    RIGHT = "right"
    DONE = "done"


_CAPTURE_ORDER = (FaceStep.READY, FaceStep.LEFT, FaceStep.RIGHT)


class FaceCaptureStore:
    """JSON file holding in-progress face captures, one entry per key."""

    def __init__(self, path: str | Path, key: str = FACE_IMAGES_KEY) -> None:
        self.path = Path(path).expanduser()
        self.key = key

    def _read_all(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.error("Error loading saved face images from %s: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data), encoding="utf-8")

    def load(self) -> list[str]:
        images = self._read_all().get(self.key)
        if not isinstance(images, list):
            return []
        return [img for img in images if isinstance(img, str)]

    def save(self, images: list[str]) -> None:
        data = self._read_all()
        data[self.key] = list(images)
        self._write_all(data)

    def clear(self) -> None:
        data = self._read_all()
        if self.key in data:
            del data[self.key]
            self._write_all(data)


class FaceCaptureSession:
    """Front, left and right captures taken in order: idle -> ready -> left -> right -> done."""

    def __init__(self, store: FaceCaptureStore | None = None) -> None:
        self.store = store
        self.images: list[str] = []
        self.step = FaceStep.IDLE
        if store is not None:
            saved = store.load()
            if len(saved) >= len(_CAPTURE_ORDER):
                self.images = saved[: len(_CAPTURE_ORDER)]
                self.step = FaceStep.DONE
            else:
                self.images = saved

    @property
    def complete(self) -> bool:
        return self.step is FaceStep.DONE

    def start(self) -> FaceStep:
        if self.step is FaceStep.IDLE:
            self.step = _CAPTURE_ORDER[len(self.images)]
        return self.step

    def capture(self, image: str | np.ndarray) -> FaceStep:
        if self.step not in _CAPTURE_ORDER:
            raise VerificationError("Face capture is not in progress.")
        data_url = image if isinstance(image, str) else encode_data_url(image, ext=".jpg")
        self.images.append(data_url)
        if self.store is not None:
            self.store.save(self.images)

        idx = _CAPTURE_ORDER.index(self.step)
        self.step = _CAPTURE_ORDER[idx + 1] if idx + 1 < len(_CAPTURE_ORDER) else FaceStep.DONE
        return self.step

    def reset(self) -> None:
        self.images = []
        self.step = FaceStep.IDLE
        if self.store is not None:
            self.store.clear()


def build_verification_payload(
    result: ScanResult,
    national_id_image_url: str,
    phone: str,
    face_images: list[str],
    user_type: str | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "nationalIdImageUrl": national_id_image_url,
        "phone": phone,
        "faceImageUrl": face_images[0],
        "faceImageLeftUrl": face_images[1],
        "faceImageRightUrl": face_images[2],
    }
    if user_type:
        payload["userType"] = user_type
    for key, attr in _SCANNED_FIELDS:
        value = getattr(result, attr)
        if value:
            payload[key] = value
    return payload


def _image_bytes(image: ImageInput) -> tuple[bytes, str]:
    if isinstance(image, np.ndarray):
        ok, buf = cv2.imencode(".png", image)
        if not ok:
            raise VerificationError("Could not encode the ID card image.")
        return buf.tobytes(), "national-id.png"
    if isinstance(image, (bytes, bytearray)):
        return bytes(image), "national-id.png"
    if is_data_url(image):
        return decode_data_url(str(image)), "national-id.png"
    path = Path(image)
    return path.read_bytes(), path.name


class VerificationFlow:
    """Authenticated identity verification: scan, name gate, face captures, submission for review."""

    def __init__(
        self,
        client: ApiClient,
        first_name: str | None,
        last_name: str | None,
        settings: Settings | None = None,
        backend: OCRBackend | None = None,
        store: FaceCaptureStore | None = None,
    ) -> None:
        self.client = client
        self.first_name = first_name
        self.last_name = last_name
        self.settings = settings or load_settings()
        self.backend = backend
        self.faces = FaceCaptureSession(store)
        self.id_image: ImageInput | None = None
        self.scan_result: ScanResult | None = None
        self.id_verified = False
        self.name_verified = False

    def scan(
        self,
        image: ImageInput,
        on_progress: ProgressCallback | None = None,
        rotation: int = 0,
    ) -> ScanResult:
        self.id_image = image
        self.id_verified = False
        self.name_verified = False

        result = scan_id_card(
            image,
            self.first_name,
            self.last_name,
            on_progress,
            settings=self.settings,
            backend=self.backend,
            rotation=rotation,
        )
        self.scan_result = result

        outcome = result.outcome()
        if isinstance(outcome, ScanErr):
            raise VerificationError(outcome.reason)

        require_identity_match(result, self.first_name, self.last_name)
        self.id_verified = True
        self.name_verified = True
        return result

    def success_message(self) -> str:
        result = self.scan_result
        if result is None or not self.id_verified:
            return ""
        message = f"Kenyan ID verified! ID: {result.id_number}"
        if result.display_name:
            message += f", Name: {result.display_name}"
        if result.date_of_birth:
            message += f", DOB: {result.date_of_birth}"
        if result.warnings:
            message += f" (Note: {'; '.join(result.warnings)})"
        return message

    def submit(self, phone: str, user_type: str = "INDIVIDUAL") -> dict[str, Any]:
        if self.id_image is None:
            raise VerificationError("Please upload your ID card image")
        result = self.scan_result
        if result is None or not self.id_verified or not result.success:
            raise VerificationError(
                "ID verification failed. Please upload a clear photo of your ID card where all details are visible."
            )
        if not self.name_verified:
            raise IdentityMismatchError(mismatch_message(self.first_name, self.last_name, result))
        if not phone or not phone.strip():
            raise VerificationError("Phone number is required")
        if not self.faces.complete:
            raise VerificationError("Face verification is required. Please complete the face scan.")
        if user_type not in USER_TYPES:
            raise ValueError(f"Unsupported user type: {user_type}")

        content, filename = _image_bytes(self.id_image)
        uploaded = self.client.upload_file(content, filename=filename)
        id_url = self.client.file_url(uploaded.get("filename")) or uploaded.get("url", "")

        payload = build_verification_payload(result, id_url, phone.strip(), self.faces.images, user_type)
        response = self.client.submit_verification(payload)

        if self.faces.store is not None:
            self.faces.store.clear()
        logger.info("Verification submitted for review")
        return response
