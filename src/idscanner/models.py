from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

SCAN_FAILED_MESSAGE = "Failed to scan ID card. Please try again with a clearer image."


@dataclass(slots=True)
class OCRLine:
    text: str
    confidence: float
    bbox: list[tuple[float, float]] = field(default_factory=list)


@dataclass(slots=True)
class OCRResult:
    lines: list[OCRLine]
    full_text: str
    # 0-100, whatever the engine's native scale is.
    mean_confidence: float


@dataclass(frozen=True, slots=True)
class NameParts:
    full_names: str | None = None
    first_name: str | None = None
    middle_name: str | None = None
    last_name: str | None = None


@dataclass(frozen=True, slots=True)
class FieldCandidate:
    value: Any
    score: float
    strategy: str


@dataclass(slots=True)
class ExtractedFields:
    id_number: str | None = None
    serial_number: str | None = None
    full_names: str | None = None
    first_name: str | None = None
    middle_name: str | None = None
    last_name: str | None = None
    date_of_birth: str | None = None
    date_of_issue: str | None = None
    sex: str | None = None
    district_of_birth: str | None = None
    place_of_issue: str | None = None
    document_type: str | None = None
    sources: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class IdentityCheck:
    first_name_match: bool | None = None
    last_name_match: bool | None = None
    similarity: float | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def names_match(self) -> bool:
        return self.first_name_match is not False and self.last_name_match is not False


@dataclass(slots=True)
class ScanResult:
    success: bool = False
    id_number: str | None = None
    serial_number: str | None = None
    full_names: str | None = None
    first_name: str | None = None
    middle_name: str | None = None
    last_name: str | None = None
    date_of_birth: str | None = None
    date_of_issue: str | None = None
    sex: str | None = None
    district_of_birth: str | None = None
    place_of_issue: str | None = None
    full_text: str = ""
    confidence: float = 0.0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    document_type: str | None = None
    ocr_engine: str | None = None
    ocr_source: str | None = None
    identity: IdentityCheck | None = None

    @classmethod
    def failed(cls, message: str = SCAN_FAILED_MESSAGE) -> ScanResult:
        return cls(success=False, errors=[message])

    @property
    def display_name(self) -> str:
        if self.full_names:
            return self.full_names
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    def outcome(self) -> ScanOk | ScanErr:
        if self.id_number is not None:
            return ScanOk(result=self, warnings=tuple(self.warnings))
        reason = " ".join(self.errors) or SCAN_FAILED_MESSAGE
        return ScanErr(reason=reason, result=self)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class ScanOk:
    result: ScanResult
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ScanErr:
    reason: str
    result: ScanResult
