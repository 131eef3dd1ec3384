"""Portable JSON envelope for moving wizard progress between people.

Uploaded files cannot travel in the envelope: every file-bearing value is
nulled on export and must be re-attached by whoever imports it.
"""

from __future__ import annotations

import io
import re
from datetime import UTC, datetime
from typing import Any

FORM_VERSION = 1
EXPORT_MARKER = "_exportMarker"
LEGACY_MARKERS = ("_townshipToolsExport",)
MAX_IMPORT_BYTES = 5 * 1024 * 1024


class ImportRejected(ValueError):
    pass


def _is_file_value(value: Any) -> bool:
    if isinstance(value, (bytes, bytearray, memoryview, io.IOBase)):
        return True
    if callable(getattr(value, "read", None)):
        return True
    # FileUpload-style wrapper: {"file": <file>, "preview": ...}
    return isinstance(value, dict) and value.get("file") is not None


def strip_file_objects(value: Any) -> Any:
    if isinstance(value, list):
        return [strip_file_objects(v) for v in value]
    if isinstance(value, dict):
        return {k: None if _is_file_value(v) else strip_file_objects(v) for k, v in value.items()}
    if _is_file_value(value):
        return None
    return value


def build_export_payload(form_data: dict[str, Any], source: str = "asset-collection") -> dict[str, Any]:
    stripped = strip_file_objects(form_data)
    cover = stripped.get("cover") or {}
    return {
        EXPORT_MARKER: True,
        "formVersion": FORM_VERSION,
        "source": source,
        "exportedAt": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "organizationName": cover.get("organizationName") or "",
        "reportName": cover.get("reportName") or "",
        "data": stripped,
    }


def _slug(value: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]+", "-", value).strip("-").lower()


def export_filename(payload: dict[str, Any], today: str | None = None) -> str:
    org = _slug(payload.get("organizationName") or "form")
    report = _slug(payload.get("reportName") or "progress")
    date = today or datetime.now(UTC).date().isoformat()
    return f"{org}-{report}-progress-{date}.json"


def validate_import_payload(parsed: Any) -> None:
    """Raise ``ImportRejected`` with a user-facing reason when ``parsed`` is not a usable export."""
    if not parsed or not isinstance(parsed, dict):
        raise ImportRejected("File is empty or not a valid export.")
    if not any(parsed.get(m) for m in (EXPORT_MARKER, *LEGACY_MARKERS)):
        raise ImportRejected("This file was not exported from Township Tools.")
    version = parsed.get("formVersion")
    if isinstance(version, bool) or not isinstance(version, (int, float)) or version > FORM_VERSION:
        raise ImportRejected(
            f"This export is from a newer version (v{version}). Please update Township Tools first."
        )
    data = parsed.get("data")
    if not data or not isinstance(data, dict):
        raise ImportRejected("Export file is missing form data.")
    if not isinstance(data.get("cover"), dict):
        raise ImportRejected("Export is missing cover information.")
    if not isinstance(data.get("footer"), dict):
        raise ImportRejected("Export is missing footer information.")
    if not isinstance(data.get("sections"), list):
        raise ImportRejected("Export is missing content sections.")


def _list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _merge_section(s: Any) -> dict[str, Any]:
    s = s if isinstance(s, dict) else {}
    images = [{**img, "file": None} for img in _list(s.get("images")) if isinstance(img, dict)]
    return {
        "title": s.get("title") or "",
        "content": s.get("content") or "",
        "images": images,
        "contentCards": _list(s.get("contentCards")),
        "stats": _list(s.get("stats")),
        "chartLink": s.get("chartLink") or "",
        "chartCaption": s.get("chartCaption") or "",
        "imageCaptions": s.get("imageCaptions") or "",
        "designNotes": s.get("designNotes") or "",
    }


def merge_imported_data(d: dict[str, Any]) -> dict[str, Any]:
    """Shape imported data into a full form state; files are nulled and confirmation reset."""
    cover = d.get("cover") or {}
    letter = d.get("letter") or {}
    footer = d.get("footer") or {}
    review = d.get("review") or {}
    sections = d.get("sections")
    return {
        "cover": {
            "logo": None,
            "organizationName": cover.get("organizationName") or "",
            "reportName": cover.get("reportName") or "",
            "tagline": cover.get("tagline") or "",
        },
        "letter": {
            "includeOpeningLetter": bool(letter.get("includeOpeningLetter")),
            "headshot": None,
            "letterTitle": letter.get("letterTitle") or "",
            "letterSubtitle": letter.get("letterSubtitle") or "",
            "letterContent": letter.get("letterContent") or "",
            "letterImage1": None,
            "letterImage1Caption": letter.get("letterImage1Caption") or "",
            "letterImage2": None,
            "letterImage2Caption": letter.get("letterImage2Caption") or "",
        },
        "footer": {
            key: footer.get(key) or ""
            for key in ("department", "streetAddress", "cityStateZip", "phone", "email", "website")
        },
        "sections": (
            [_merge_section(s) for s in sections]
            if isinstance(sections, list)
            else [_merge_section({})]
        ),
        "review": {
            "submitterName": review.get("submitterName") or "",
            "submitterEmail": review.get("submitterEmail") or "",
            "additionalNotes": review.get("additionalNotes") or "",
            "confirmed": False,
        },
        "currentStep": 1,
    }


def import_payload(parsed: Any) -> dict[str, Any]:
    validate_import_payload(parsed)
    return merge_imported_data(parsed["data"])
