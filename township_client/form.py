"""Form state for the five-step asset-collection wizard.

Form state is a plain JSON-shaped dict with camelCase keys, the same shape the
HTTP API accepts. File fields hold one of: ``None``, a ``StagedFile`` picked
by the user but not yet uploaded, or an ``{"existingUrl": url}`` placeholder
for a file that is already in object storage.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from township_server.transfer import MAX_IMPORT_BYTES, ImportRejected, strip_file_objects

FILE_FIELDS = {
    "cover": ("logo",),
    "letter": ("headshot", "letterImage1", "letterImage2"),
}
STEPS = 5


@dataclass
class StagedFile:
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"

    def read(self) -> bytes:
        return self.content


def empty_section() -> dict[str, Any]:
    return {
        "title": "",
        "content": "",
        "images": [],
        "contentCards": [],
        "stats": [],
        "chartLink": "",
        "chartCaption": "",
        "imageCaptions": "",
        "designNotes": "",
    }


def initial_form_data() -> dict[str, Any]:
    return {
        "cover": {"logo": None, "organizationName": "", "reportName": "", "tagline": ""},
        "letter": {
            "includeOpeningLetter": False,
            "headshot": None,
            "letterTitle": "",
            "letterSubtitle": "",
            "letterContent": "",
            "letterImage1": None,
            "letterImage1Caption": "",
            "letterImage2": None,
            "letterImage2Caption": "",
        },
        "footer": {
            "department": "",
            "streetAddress": "",
            "cityStateZip": "",
            "phone": "",
            "email": "",
            "website": "",
        },
        "sections": [empty_section()],
        "review": {"submitterName": "", "submitterEmail": "", "additionalNotes": "", "confirmed": False},
        "currentStep": 1,
    }


def _blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


def validate_step(data: dict[str, Any], step: int) -> str | None:
    """Return the message to show for the first problem on ``step``, or None."""
    cover, letter, footer, review = data["cover"], data["letter"], data["footer"], data["review"]
    if step == 1:
        if _blank(cover.get("organizationName")):
            return "Please enter your organization name"
        if _blank(cover.get("reportName")):
            return "Please enter the report name"
    elif step == 2:
        if letter.get("includeOpeningLetter"):
            if _blank(letter.get("letterTitle")):
                return "Please enter a title for the opening letter"
            if _blank(letter.get("letterContent")):
                return "Please enter the letter content"
    elif step == 3:
        for key, message in (
            ("streetAddress", "Please enter the street address"),
            ("cityStateZip", "Please enter the city, state, and ZIP"),
            ("phone", "Please enter a phone number"),
            ("email", "Please enter an email address"),
        ):
            if _blank(footer.get(key)):
                return message
    elif step == 4:
        if not data["sections"]:
            return "Please add at least one content section"
        for i, section in enumerate(data["sections"]):
            if _blank(section.get("title")):
                return f"Please enter a title for Section {i + 1}"
    elif step == 5:
        if _blank(review.get("submitterName")):
            return "Please enter your name"
        if _blank(review.get("submitterEmail")):
            return "Please enter your email"
        if not review.get("confirmed"):
            return "Please confirm that the information is accurate"
    return None


def validate_all(data: dict[str, Any]) -> dict[int, str]:
    return {step: msg for step in range(1, STEPS + 1) if (msg := validate_step(data, step))}


def existing_url(value: Any) -> str | None:
    if isinstance(value, dict) and value.get("existingUrl") and not value.get("file"):
        return value["existingUrl"]
    return None


def uploaded_url(value: Any) -> str | None:
    """The previously uploaded URL, also while a replacement file is staged."""
    if isinstance(value, dict) and value.get("existingUrl"):
        return value["existingUrl"]
    return None


def placeholder(url: str | None) -> dict[str, str] | None:
    return {"existingUrl": url} if url else None


def snapshot(data: dict[str, Any]) -> dict[str, Any]:
    """JSON-safe copy for draft persistence: staged files dropped, uploaded URLs kept."""
    out = copy.deepcopy({k: v for k, v in data.items() if k not in FILE_FIELDS and k != "sections"})
    for group, fields in FILE_FIELDS.items():
        values = dict(data.get(group) or {})
        for field in fields:
            values[field] = placeholder(uploaded_url(values.get(field)))
        out[group] = strip_file_objects(values)
    sections = []
    for section in data.get("sections") or []:
        section = dict(section)
        section["images"] = [
            {
                "file": None,
                "caption": img.get("caption") or "",
                "existingUrl": img["existingUrl"],
                "isChart": bool(img.get("isChart")),
            }
            for img in section.get("images") or []
            if img.get("existingUrl")
        ]
        sections.append(strip_file_objects(section))
    out["sections"] = sections
    return out


def restore(saved: dict[str, Any] | None, base: dict[str, Any] | None = None) -> dict[str, Any]:
    """Merge a persisted snapshot over ``base`` (the initial state by default)."""
    data = base or initial_form_data()
    if not saved:
        return data
    for group in ("cover", "letter", "footer", "review"):
        data[group] = {**data[group], **(saved.get(group) or {})}
    for group, fields in FILE_FIELDS.items():
        for field in fields:
            data[group][field] = placeholder(uploaded_url(data[group].get(field)))
    sections = saved.get("sections")
    if isinstance(sections, list) and sections:
        data["sections"] = [{**empty_section(), **s} for s in sections if isinstance(s, dict)]
    data["currentStep"] = saved.get("currentStep") or 1
    return data


def form_from_submission(sub: dict[str, Any]) -> dict[str, Any]:
    """Edit-mode form state from a submission as returned by ``GET /api/submissions/{id}``."""
    sections = []
    for s in sub.get("sections") or []:
        captions = s.get("image_captions") or []
        images = [
            {
                "file": None,
                "caption": captions[i] if i < len(captions) else "",
                "existingUrl": url,
                "isChart": False,
            }
            for i, url in enumerate(s.get("image_urls") or [])
        ]
        if s.get("chart_link"):
            images.append(
                {
                    "file": None,
                    "caption": s.get("chart_caption") or "",
                    "existingUrl": s["chart_link"],
                    "isChart": True,
                }
            )
        sections.append(
            {
                **empty_section(),
                "title": s.get("title") or "",
                "content": s.get("content_text") or "",
                "images": images,
                "contentCards": s.get("content_cards") or [],
                "stats": [{"label": st["label"], "value": st["value"]} for st in s.get("stats") or []],
                "designNotes": s.get("design_notes") or "",
            }
        )
    return {
        "cover": {
            "logo": placeholder(sub.get("logo_url")),
            "organizationName": sub.get("organization_name") or "",
            "reportName": sub.get("report_name") or "",
            "tagline": sub.get("tagline") or "",
        },
        "letter": {
            "includeOpeningLetter": bool(sub.get("include_opening_letter")),
            "headshot": placeholder(sub.get("letter_headshot_url")),
            "letterTitle": sub.get("letter_title") or "",
            "letterSubtitle": sub.get("letter_subtitle") or "",
            "letterContent": sub.get("letter_content") or "",
            "letterImage1": placeholder(sub.get("letter_image1_url")),
            "letterImage1Caption": sub.get("letter_image1_caption") or "",
            "letterImage2": placeholder(sub.get("letter_image2_url")),
            "letterImage2Caption": sub.get("letter_image2_caption") or "",
        },
        "footer": {
            "department": sub.get("department") or "",
            "streetAddress": sub.get("street_address") or "",
            "cityStateZip": sub.get("city_state_zip") or "",
            "phone": sub.get("phone") or "",
            "email": sub.get("email") or "",
            "website": sub.get("website") or "",
        },
        "sections": sections or [empty_section()],
        "review": {
            "submitterName": sub.get("submitter_name") or "",
            "submitterEmail": sub.get("submitter_email") or "",
            "additionalNotes": sub.get("additional_notes") or "",
            "confirmed": False,
        },
        "currentStep": 1,
    }


def read_export_file(path: Path | str) -> Any:
    path = Path(path)
    if path.suffix != ".json":
        raise ImportRejected("Please select a .json file exported from Township Tools.")
    if path.stat().st_size > MAX_IMPORT_BYTES:
        raise ImportRejected("File is too large (max 5 MB).")
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ImportRejected("The file does not contain valid JSON.") from exc
