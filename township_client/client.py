"""Drives the multi-call submission protocol against the HTTP API.

A new submission is ``create`` -> uploads -> ``finalize``. An edit is
``PUT /submissions/{id}`` -> uploads -> ``update``. Uploads need the
submission id for their storage paths, which is why the protocol is split.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from township_client.drafts import AutoSaver, error_message
from township_client.form import FILE_FIELDS, StagedFile, existing_url, uploaded_url, validate_step

# Storage path stem per file field, under the submission id.
UPLOAD_STEMS = {
    "logo": "logo",
    "headshot": "headshot",
    "letterImage1": "letter-image-1",
    "letterImage2": "letter-image-2",
}
URL_KEYS = {
    "logo": "logoUrl",
    "headshot": "headshotUrl",
    "letterImage1": "letterImage1Url",
    "letterImage2": "letterImage2Url",
}


class SubmissionError(Exception):
    def __init__(self, status_code: int, message: str, step: str):
        super().__init__(f"{step} failed ({status_code}): {message}")
        self.status_code = status_code
        self.message = message
        self.step = step


@dataclass
class SubmitOutcome:
    submission_id: str
    succeeded: list[int] = field(default_factory=list)
    failed: list[dict[str, Any]] = field(default_factory=list)
    uploaded: int = 0

    @property
    def complete(self) -> bool:
        return not self.failed


def _staged(value: Any) -> StagedFile | None:
    if isinstance(value, StagedFile):
        return value
    if isinstance(value, dict) and isinstance(value.get("file"), StagedFile):
        return value["file"]
    return None


class SubmissionClient:
    def __init__(
        self, http: httpx.Client, headers: dict[str, str] | None = None, api_prefix: str = "/api"
    ):
        self.http = http
        self.headers = headers or {}
        self.api_prefix = api_prefix

    def _post_json(self, path: str, payload: dict[str, Any], step: str) -> dict[str, Any]:
        response = self.http.post(f"{self.api_prefix}{path}", json=payload, headers=self.headers)
        if response.status_code != 200:
            raise SubmissionError(response.status_code, error_message(response), step)
        return response.json()

    def upload(self, staged: StagedFile, path: str, old_url: str | None = None) -> str:
        data = {"path": path}
        if old_url:
            data["oldUrl"] = old_url
        response = self.http.post(
            f"{self.api_prefix}/asset-collection/upload",
            data=data,
            files={"file": (staged.filename, staged.content, staged.content_type)},
            headers=self.headers,
        )
        if response.status_code != 200:
            raise SubmissionError(response.status_code, error_message(response), "upload")
        return response.json()["url"]

    @staticmethod
    def _form_groups(form: dict[str, Any]) -> dict[str, Any]:
        letter = {k: v for k, v in form["letter"].items() if k not in FILE_FIELDS["letter"]}
        cover = {k: v for k, v in form["cover"].items() if k not in FILE_FIELDS["cover"]}
        return {"cover": cover, "letter": letter, "footer": form["footer"], "review": form["review"]}

    def _upload_files(
        self, form: dict[str, Any], submission_id: str, outcome: SubmitOutcome
    ) -> dict[str, Any]:
        stamp = int(time.time() * 1000)
        urls: dict[str, Any] = {}
        for group, fields in FILE_FIELDS.items():
            for name in fields:
                value = form[group].get(name)
                staged = _staged(value)
                if staged is not None:
                    urls[URL_KEYS[name]] = self.upload(
                        staged, f"{submission_id}/{UPLOAD_STEMS[name]}-{stamp}", uploaded_url(value)
                    )
                    outcome.uploaded += 1
                else:
                    urls[URL_KEYS[name]] = existing_url(value)
        return urls

    def _section_payloads(
        self, form: dict[str, Any], submission_id: str, outcome: SubmitOutcome
    ) -> list[dict[str, Any]]:
        stamp = int(time.time() * 1000)
        sections = []
        for i, section in enumerate(form["sections"]):
            image_urls: list[str] = []
            captions: list[str] = []
            chart_link = section.get("chartLink") or ""
            chart_caption = section.get("chartCaption") or ""
            for j, img in enumerate(section.get("images") or []):
                is_chart = bool(img.get("isChart"))
                staged = _staged(img)
                if staged is not None:
                    kind = "chart" if is_chart else "image"
                    url = self.upload(
                        staged, f"{submission_id}/sections/{i}/{kind}-{j}-{stamp}", img.get("existingUrl")
                    )
                    outcome.uploaded += 1
                elif img.get("existingUrl"):
                    url = img["existingUrl"]
                else:
                    continue
                if is_chart:
                    chart_link, chart_caption = url, img.get("caption") or ""
                else:
                    image_urls.append(url)
                    captions.append(img.get("caption") or "")
            sections.append(
                {
                    "order": i,
                    "title": section.get("title"),
                    "content": section.get("content") or "",
                    "imageUrls": image_urls,
                    "imageCaptions": captions,
                    "stats": [s for s in section.get("stats") or [] if s.get("label") and s.get("value")],
                    "contentCards": [
                        c for c in section.get("contentCards") or [] if c.get("title") or c.get("body")
                    ],
                    "designNotes": section.get("designNotes") or "",
                    "chartLink": chart_link,
                    "chartCaption": chart_caption,
                }
            )
        return sections

    def submit(
        self,
        form: dict[str, Any],
        *,
        project_id: str | None = None,
        session_id: str | None = None,
        submission_id: str | None = None,
        autosaver: AutoSaver | None = None,
    ) -> SubmitOutcome:
        """Run the full protocol. Passing ``submission_id`` edits an existing submission."""
        message = validate_step(form, 5)
        if message:
            raise ValueError(message)
        if autosaver is not None:
            autosaver.save_now(form)
        groups = self._form_groups(form)
        if submission_id:
            response = self.http.put(
                f"{self.api_prefix}/submissions/{submission_id}", json=groups, headers=self.headers
            )
            if response.status_code != 200:
                raise SubmissionError(response.status_code, error_message(response), "update")
            phase = "update"
        else:
            created = self._post_json(
                "/asset-collection/submit",
                {"phase": "create", "projectId": project_id, "contributorSessionId": session_id, **groups},
                "create",
            )
            submission_id = created["submissionId"]
            phase = "finalize"
        outcome = SubmitOutcome(submission_id=submission_id)
        urls = self._upload_files(form, submission_id, outcome)
        sections = self._section_payloads(form, submission_id, outcome)
        result = self._post_json(
            "/asset-collection/submit",
            {
                "phase": phase,
                "submissionId": submission_id,
                "contributorSessionId": session_id,
                **urls,
                "sections": sections,
            },
            phase,
        )
        outcome.succeeded = result["sections"]["succeeded"]
        outcome.failed = result["sections"]["failed"]
        return outcome
