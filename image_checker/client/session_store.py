"""
Client Session Store
Holds one editor's active session, saves it (gzip) with the version it last
saw, and tracks unsaved-changes / conflict / locked state for the UI.
"""
import asyncio
import gzip
import json
import logging
import math
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

import httpx

BATCH_SIZE = 10
AUTOSAVE_INTERVAL_SECONDS = 300.0
USER_HEADER = "X-User-Email"

COMPLETED_STATUSES = {"approved", "custom_selected", "rejected"}

# Fields the server accepts in a save body
DOCUMENT_FIELDS = (
    "session_id",
    "session_name",
    "filename",
    "total_rows",
    "progress_percentage",
    "current_batch",
    "total_batches",
    "completed_batches",
    "devices",
    "version",
    "created_at",
    "last_updated",
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _progress(devices: List[dict]) -> float:
    if not devices:
        return 0.0
    completed = sum(1 for d in devices if d.get("status") in COMPLETED_STATUSES)
    return completed / len(devices) * 100


class SessionStore:
    """Session state for a single editor (one instance per editor, no globals)"""

    def __init__(
        self,
        editor_id: str,
        server_url: str = "http://localhost:8000",
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.editor_id = editor_id
        self.server_url = server_url.rstrip("/")
        self.timeout = timeout
        self._http_client = http_client
        self.logger = logging.getLogger(f"SessionStore_{editor_id}")

        self.session: Optional[Dict[str, Any]] = None
        self.current_batch = 1
        self.selected_device_index = 0
        self.has_unsaved_changes = False
        self.last_saved_at: Optional[str] = None
        self.conflict_error: Optional[Dict[str, int]] = None
        self.locked_by: Optional[Dict[str, Any]] = None
        self.error: Optional[str] = None

    @asynccontextmanager
    async def _http(self):
        if self._http_client is not None:
            yield self._http_client
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                yield client

    @property
    def headers(self) -> Dict[str, str]:
        return {USER_HEADER: self.editor_id}

    @property
    def version(self) -> Optional[int]:
        return self.session["version"] if self.session else None

    def _require_session(self) -> Dict[str, Any]:
        if self.session is None:
            raise ValueError("No active session")
        return self.session

    def _touch(self):
        self.session["last_updated"] = _now_iso()
        self.has_unsaved_changes = True

    # ==================== Local state ====================

    def set_session(self, session: Dict[str, Any]):
        """
        Adopt a freshly parsed upload (or a session loaded from the server).

        Devices are numbered into batches of ten and reviewer fields get
        their defaults; the selected image/manual fall back to the first
        candidate from the source row.
        """
        devices = []
        for index, device in enumerate(session.get("devices", [])):
            selected_manual = device.get("selected_manual_url")
            devices.append({
                **device,
                "batch_id": index // BATCH_SIZE + 1,
                "row_index": index % BATCH_SIZE + 1,
                "status": device.get("status") or "pending",
                "selected_image_url": device.get("selected_image_url") or device.get("image_url"),
                "selected_manual_url": selected_manual if selected_manual is not None else device.get("manual_url"),
                "custom_image_url": device.get("custom_image_url") or "",
                "custom_type": device.get("custom_type") or "",
                "material_category": device.get("material_category") or "",
                "material_subcategory": device.get("material_subcategory") or "",
            })

        now = _now_iso()
        self.session = {
            **session,
            "session_id": session.get("session_id") or str(uuid4()),
            "total_rows": session.get("total_rows", len(devices)),
            "total_batches": math.ceil(len(devices) / BATCH_SIZE),
            "completed_batches": list(session.get("completed_batches") or []),
            "current_batch": session.get("current_batch") or 1,
            "version": session.get("version") or session.get("_version") or 1,
            "created_at": session.get("created_at") or now,
            "last_updated": session.get("last_updated") or now,
            "devices": devices,
        }
        self.session.pop("_version", None)
        self.session["progress_percentage"] = _progress(devices)

        self.current_batch = self.session["current_batch"]
        self.selected_device_index = 0
        self.has_unsaved_changes = False
        self.last_saved_at = None
        self.conflict_error = None
        self.locked_by = None
        self.error = None

        self.logger.info(
            f"🟢 [{self.editor_id}] Active session {self.session['session_id']} "
            f"v{self.session['version']} ({len(devices)} devices)"
        )

    def update_device(self, device_index: int, **updates):
        """Edit one device locally; progress is recomputed, nothing is sent"""
        session = self._require_session()
        session["devices"][device_index] = {**session["devices"][device_index], **updates}
        session["progress_percentage"] = _progress(session["devices"])
        self._touch()

    def set_current_batch(self, batch_number: int):
        session = self._require_session()
        self.current_batch = batch_number
        self.selected_device_index = (batch_number - 1) * BATCH_SIZE
        session["current_batch"] = batch_number
        self._touch()

    def mark_batch_complete(self, batch_number: int):
        session = self._require_session()
        if batch_number not in session["completed_batches"]:
            session["completed_batches"].append(batch_number)
        self._touch()

    def current_batch_view(self) -> List[Dict[str, Any]]:
        """Devices of the batch being reviewed"""
        session = self._require_session()
        return [d for d in session["devices"] if d.get("batch_id") == self.current_batch]

    # ==================== Server round-trips ====================

    async def save(self) -> dict:
        """
        Save the full session with the locally known version.

        Returns {"status": "success", "data": ...} or, when another save
        got there first, {"status": "conflict", "conflict": {...}}. Local
        edits are kept in both cases.
        """
        session = self._require_session()
        expected_version = session["version"]
        document = {key: session[key] for key in DOCUMENT_FIELDS if key in session}
        body = gzip.compress(json.dumps(document, default=str).encode("utf-8"))

        self.logger.info(
            f"📤 [{self.editor_id}] Saving {session['session_id']} "
            f"(expected_version={expected_version}, {len(body)} bytes gzip)..."
        )

        async with self._http() as client:
            response = await client.post(
                f"{self.server_url}/sessions",
                content=body,
                headers={
                    **self.headers,
                    "Content-Type": "application/json",
                    "Content-Encoding": "gzip",
                },
            )

        if response.status_code == 409 and response.json().get("error") == "CONFLICT":
            conflict = response.json()
            self.conflict_error = {
                "currentVersion": conflict["currentVersion"],
                "attemptedVersion": conflict["attemptedVersion"],
            }
            self.logger.warning(
                f"⚠️ [{self.editor_id}] CONFLICT on {session['session_id']}: "
                f"yours v{conflict['attemptedVersion']} vs current v{conflict['currentVersion']}"
            )
            return {"status": "conflict", "conflict": self.conflict_error}

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            self.error = f"Save failed ({response.status_code})"
            self.logger.error(f"❌ [{self.editor_id}] Save failed: {e}")
            raise

        data = response.json()
        session["version"] = data["version"]
        self.last_saved_at = data["lastSaved"]
        self.has_unsaved_changes = False
        self.conflict_error = None
        self.error = None

        self.logger.info(
            f"✅ [{self.editor_id}] Saved {session['session_id']}: "
            f"v{expected_version} → v{data['version']}"
        )
        return {"status": "success", "data": data}

    async def load(self, session_id: str) -> dict:
        """
        Open a session for editing (takes the server-side lock).

        Returns a status dict: "loaded", "locked" (self.locked_by holds who
        and since when) or "not_found". The active session is only replaced
        on "loaded".
        """
        self.logger.info(f"📥 [{self.editor_id}] Loading {session_id}...")

        async with self._http() as client:
            response = await client.get(f"{self.server_url}/sessions/{session_id}", headers=self.headers)

        if response.status_code == 423:
            body = response.json()
            self.locked_by = {"lockedBy": body["lockedBy"], "lockedAt": body.get("lockedAt")}
            self.logger.warning(
                f"🔒 [{self.editor_id}] {session_id} is locked by {body['lockedBy']} since {body.get('lockedAt')}"
            )
            return {"status": "locked", **self.locked_by}

        if response.status_code == 404:
            self.error = f"Session {session_id} not found"
            self.logger.warning(f"❌ [{self.editor_id}] Session {session_id} not found")
            return {"status": "not_found"}

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            self.error = f"Load failed ({response.status_code})"
            self.logger.error(f"❌ [{self.editor_id}] Load failed: {e}")
            raise

        loaded = response.json()["session"]
        self.set_session(loaded)
        self.last_saved_at = loaded.get("updated_at")

        self.logger.info(f"✅ [{self.editor_id}] Loaded {session_id} v{loaded['version']}")
        return {"status": "loaded", "session": self.session}

    async def refresh_from_server(self) -> dict:
        """Resolve a conflict by discarding local state and reloading"""
        session = self._require_session()
        self.logger.info(f"🔄 [{self.editor_id}] Discarding local v{session['version']}, reloading...")
        return await self.load(session["session_id"])

    async def _action(self, session_id: str, action: str) -> bool:
        async with self._http() as client:
            response = await client.patch(
                f"{self.server_url}/sessions/{session_id}",
                json={"action": action},
                headers=self.headers,
            )
        response.raise_for_status()
        return response.json()["applied"]

    async def heartbeat(self) -> bool:
        """Keep our lock alive while editing"""
        session = self._require_session()
        return await self._action(session["session_id"], "refresh")

    async def release(self) -> bool:
        """Give up the lock so another editor can open the session"""
        session = self._require_session()
        released = await self._action(session["session_id"], "unlock")
        self.logger.info(f"🔓 [{self.editor_id}] Released {session['session_id']} (applied={released})")
        return released

    async def autosave_if_dirty(self) -> Optional[dict]:
        """Save only when there is something to save"""
        if self.session is None or not self.has_unsaved_changes:
            return None
        return await self.save()

    async def list_sessions(self, limit: int = 100, offset: int = 0) -> List[dict]:
        async with self._http() as client:
            response = await client.get(
                f"{self.server_url}/sessions",
                params={"limit": limit, "offset": offset},
                headers=self.headers,
            )
        response.raise_for_status()
        return response.json()["sessions"]

    async def delete_session(self, session_id: str, permanent: bool = False) -> dict:
        async with self._http() as client:
            response = await client.delete(
                f"{self.server_url}/sessions/{session_id}",
                params={"permanent": str(permanent).lower()},
                headers=self.headers,
            )
        response.raise_for_status()
        if self.session and self.session["session_id"] == session_id:
            self.session = None
        return response.json()

    async def restore_session(self, session_id: str) -> bool:
        return await self._action(session_id, "restore")


class AutoSaver:
    """
    Background autosave: every `interval` seconds, save if dirty and
    refresh the lock. Failures are logged and retried on the next tick.
    """

    def __init__(
        self,
        store: SessionStore,
        interval: float = AUTOSAVE_INTERVAL_SECONDS,
        refresh_lock: bool = True,
    ):
        self.store = store
        self.interval = interval
        self.refresh_lock = refresh_lock
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if not self.running:
            self._task = asyncio.create_task(self._run())

    async def tick(self):
        result = await self.store.autosave_if_dirty()
        if result is not None:
            self.store.logger.info(f"💾 [{self.store.editor_id}] Auto-save: {result['status']}")
        if self.refresh_lock and self.store.session is not None:
            await self.store.heartbeat()

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except (httpx.HTTPError, ValueError, KeyError) as e:
                self.store.logger.error(f"❌ [{self.store.editor_id}] Auto-save failed: {e}")

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
