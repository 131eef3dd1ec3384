from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable

import httpx

from township_client.form import snapshot

logger = logging.getLogger("township.client")

DEFAULT_DELAY_S = 1.0


class DraftError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


class DraftStore:
    """Where wizard progress lives between visits."""

    def load(self) -> dict[str, Any] | None:
        raise NotImplementedError

    def save(self, state: dict[str, Any]) -> None:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError


class LocalDraftStore(DraftStore):
    """One JSON file per form, for anonymous contributors."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def load(self) -> dict[str, Any] | None:
        if not self.path.exists():
            return None
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("draft.load_failed path=%s", self.path, exc_info=True)
            return None

    def save(self, state: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(snapshot(state)), encoding="utf-8")
        tmp.replace(self.path)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


def error_message(response: httpx.Response) -> str:
    try:
        detail = response.json().get("detail")
    except ValueError:
        return response.text
    if isinstance(detail, dict) and "error" in detail:
        return detail["error"].get("message", "")
    return str(detail)


class RemoteDraftStore(DraftStore):
    """Server-side draft kept on the caller's contributor session for a project."""

    def __init__(
        self,
        http: httpx.Client,
        share_id: str,
        headers: dict[str, str] | None = None,
        api_prefix: str = "/api",
    ):
        self.http = http
        self.share_id = share_id
        self.headers = headers or {}
        self.url = f"{api_prefix}/contribute/draft"
        self.session_id: str | None = None
        self.status: str | None = None

    def load(self) -> dict[str, Any] | None:
        response = self.http.get(self.url, params={"shareId": self.share_id}, headers=self.headers)
        if response.status_code != 200:
            raise DraftError(response.status_code, error_message(response))
        body = response.json()
        if body["session"]:
            self.session_id = body["session"]["id"]
            self.status = body["session"]["status"]
        return body["draftData"] or None

    def save(self, state: dict[str, Any]) -> None:
        payload: dict[str, Any] = {"draftData": snapshot(state)}
        if self.session_id:
            payload["sessionId"] = self.session_id
        else:
            payload["shareId"] = self.share_id
        response = self.http.put(self.url, json=payload, headers=self.headers)
        if response.status_code != 200:
            raise DraftError(response.status_code, error_message(response))
        self.session_id = response.json()["sessionId"]

    def clear(self) -> None:
        # The session row outlives the draft; it flips to submitted on finalize.
        self.session_id = None
        self.status = None


def draft_store_for(
    *,
    authenticated: bool,
    local_path: Path | str,
    http: httpx.Client | None = None,
    share_id: str | None = None,
    headers: dict[str, str] | None = None,
) -> DraftStore:
    """Server drafts for signed-in contributors on a shared project, a local file otherwise."""
    if authenticated and http is not None and share_id:
        return RemoteDraftStore(http, share_id, headers=headers)
    return LocalDraftStore(local_path)


class AutoSaver:
    """Coalesce rapid edits into one save after ``delay_s`` of quiet.

    ``save_now`` flushes the latest state immediately; call it before
    submitting or navigating away so the last edit is not lost to the timer.
    Writes run one at a time, and a write taken before a newer one that
    already reached the store is discarded.
    """

    def __init__(
        self,
        store: DraftStore,
        delay_s: float = DEFAULT_DELAY_S,
        on_error: Callable[[Exception], None] | None = None,
    ):
        self.store = store
        self.delay_s = delay_s
        self.on_error = on_error
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._pending: dict[str, Any] | None = None
        self._seq = 0
        self._written_seq = 0
        self.saves = 0

    def schedule(self, state: dict[str, Any]) -> None:
        with self._lock:
            self._pending = state
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.delay_s, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _take(self, state: dict[str, Any] | None = None) -> tuple[dict[str, Any] | None, int]:
        """Claim ``state`` (or the pending one) and a write sequence number."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            pending, self._pending = self._pending, None
            self._seq += 1
            return (state if state is not None else pending), self._seq

    def _write(self, state: dict[str, Any], seq: int) -> None:
        with self._write_lock:
            if seq <= self._written_seq:
                logger.info("draft.autosave_stale seq=%s written=%s", seq, self._written_seq)
                return
            try:
                self.store.save(state)
            except (DraftError, httpx.HTTPError, OSError) as exc:
                logger.warning("draft.autosave_failed error=%s", exc)
                if self.on_error:
                    self.on_error(exc)
                return
            self._written_seq = seq
            self.saves += 1

    def _fire(self) -> None:
        state, seq = self._take()
        if state is not None:
            self._write(state, seq)

    def save_now(self, state: dict[str, Any] | None = None) -> None:
        state, seq = self._take(state)
        if state is not None:
            self._write(state, seq)

    def cancel(self) -> None:
        self._take()

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return self._pending is not None
