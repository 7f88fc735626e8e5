from __future__ import annotations

import re
import unicodedata

from rapidfuzz import fuzz

from .models import ExtractedFields, IdentityCheck, ScanResult

MISSING_ID_ERROR = (
    "Could not detect ID number. Please ensure the ID number (next to 'ID NUMBER:') is clearly visible."
)
MISSING_DOB_WARNING = "Could not detect date of birth. You may need to enter it manually."
MISSING_NAME_WARNING = "Could not detect name fields. You may need to verify manually."
LOW_QUALITY_WARNING = "Image quality is low. Consider retaking the photo in better lighting."
SCAN_OK_MESSAGE = "Kenyan ID card scanned successfully!"


def _normalize_name(name: str) -> str:
    text = unicodedata.normalize("NFKC", name).strip().casefold()
    text = re.sub(r"[^\w\s]", " ", text)
    text = re.sub(r"\s+", " ", text).strip()
    return text


def name_similarity(expected_name: str, extracted_name: str) -> float:
    left = _normalize_name(expected_name)
    right = _normalize_name(extracted_name)
    if not left or not right:
        return 0.0

    score = max(
        fuzz.ratio(left, right),
        fuzz.token_set_ratio(left, right),
        fuzz.partial_ratio(left, right),
    )
    return round(float(score) / 100.0, 4)


def name_matches(expected: str, found: str | None, full_names: str | None) -> bool:
    """Case-insensitive containment either way, or the expected name inside the full names."""
    wanted = expected.upper().strip()
    if not wanted:
        return True
    got = (found or "").upper().strip()
    if got and (wanted in got or got in wanted):
        return True
    return wanted in (full_names or "").upper()


def cross_check_identity(
    expected_first_name: str | None,
    expected_last_name: str | None,
    first_name: str | None,
    last_name: str | None,
    full_names: str | None,
) -> IdentityCheck:
    check = IdentityCheck()

    if expected_first_name and expected_first_name.strip():
        check.first_name_match = name_matches(expected_first_name, first_name, full_names)
        if first_name and not check.first_name_match:
            check.warnings.append(
                f"First name on ID ({first_name}) may not match your account name ({expected_first_name})."
            )

    if expected_last_name and expected_last_name.strip():
        check.last_name_match = name_matches(expected_last_name, last_name, full_names)
        if last_name and not check.last_name_match:
            check.warnings.append(
                f"Last name on ID ({last_name}) may not match your account name ({expected_last_name})."
            )

    expected = " ".join(x.strip() for x in (expected_first_name, expected_last_name) if x and x.strip())
    extracted = full_names or " ".join(x for x in (first_name, last_name) if x)
    if expected and extracted:
        check.similarity = name_similarity(expected, extracted)
    return check


def assemble_result(
    fields: ExtractedFields,
    full_text: str,
    confidence: float,
    expected_first_name: str | None = None,
    expected_last_name: str | None = None,
    low_conf_threshold: float = 50.0,
) -> ScanResult:
    errors: list[str] = []
    warnings: list[str] = []

    if not fields.id_number:
        errors.append(MISSING_ID_ERROR)
    if not fields.date_of_birth:
        warnings.append(MISSING_DOB_WARNING)
    if not (fields.full_names or fields.first_name or fields.last_name):
        warnings.append(MISSING_NAME_WARNING)

    identity = None
    if expected_first_name or expected_last_name:
        identity = cross_check_identity(
            expected_first_name,
            expected_last_name,
            fields.first_name,
            fields.last_name,
            fields.full_names,
        )
        warnings.extend(identity.warnings)

    if confidence < low_conf_threshold:
        warnings.append(LOW_QUALITY_WARNING)

    return ScanResult(
        success=fields.id_number is not None,
        id_number=fields.id_number,
        serial_number=fields.serial_number,
        full_names=fields.full_names,
        first_name=fields.first_name,
        middle_name=fields.middle_name,
        last_name=fields.last_name,
        date_of_birth=fields.date_of_birth,
        date_of_issue=fields.date_of_issue,
        sex=fields.sex,
        district_of_birth=fields.district_of_birth,
        place_of_issue=fields.place_of_issue,
        full_text=full_text,
        confidence=float(confidence),
        errors=errors,
        warnings=warnings,
        document_type=fields.document_type,
        identity=identity,
    )


def summarize_scan(result: ScanResult) -> tuple[bool, str, list[str]]:
    if result.id_number:
        notes = list(result.warnings)
        if not result.date_of_birth:
            notes.append("Date of birth not detected")
        if not (result.full_names or result.first_name):
            notes.append("Name not detected")
        return True, SCAN_OK_MESSAGE, notes
    message = " ".join(result.errors) or "Could not detect ID number. Please upload a clearer image of your Kenyan ID."
    return False, message, []


def validate_user_details(
    result: ScanResult,
    entered_id_number: str,
    entered_name: str,
    entered_date_of_birth: str,
) -> tuple[bool, list[str]]:
    errors: list[str] = []

    if result.id_number:
        scanned = re.sub(r"\s", "", result.id_number)
        entered = re.sub(r"\s", "", entered_id_number)
        if scanned != entered:
            errors.append(
                f"ID number mismatch: You entered {entered_id_number} but the ID shows {result.id_number}"
            )

    if result.full_names and entered_name.strip():
        scanned_upper = result.full_names.upper()
        parts = entered_name.upper().split()
        if not any(part in scanned_upper for part in parts):
            errors.append(f'Name mismatch: "{entered_name}" does not match "{result.full_names}" on the ID')

    if result.date_of_birth and entered_date_of_birth and result.date_of_birth != entered_date_of_birth:
        errors.append(
            f"Date of birth mismatch: You entered {entered_date_of_birth} but the ID shows {result.date_of_birth}"
        )

    return not errors, errors
