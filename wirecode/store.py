from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import bcrypt

log = logging.getLogger(__name__)

STORE_DIR = os.getenv("STORE_DIR", "data").strip() or "data"

PROJECT_FIELDS = ("title", "image_url", "ai_model", "generated_code")


class StoreError(Exception):
    pass


class DuplicateRecordError(StoreError):
    pass


class RecordNotFoundError(StoreError):
    pass


def hash_password(password: str) -> str:
    """Hash password using bcrypt"""
    salt = bcrypt.gensalt()
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _public_user(row: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in row.items() if k != "password"}


class RecordStore:
    """
    JSON-file collections (users, projects, aimodels) with sequential ids.

    Each collection lives in <root>/<name>.json and is rewritten atomically
    through a temp file. One process-wide lock serializes read-modify-write.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        self._lock = threading.Lock()

    # --- file helpers ----------------------------------------------------

    def _path(self, collection: str) -> Path:
        return self.root / f"{collection}.json"

    def _read(self, collection: str) -> List[Dict[str, Any]]:
        path = self._path(collection)
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8") or "[]")
        except (OSError, ValueError) as e:
            log.error("store: unreadable %s (%s)", path, e)
            raise StoreError(f"Collection {collection} is unreadable") from e
        if not isinstance(data, list):
            log.error("store: %s does not hold a list", path)
            raise StoreError(f"Collection {collection} is unreadable")
        return data

    def _write(self, collection: str, rows: List[Dict[str, Any]]) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self._path(collection)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(rows, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(path)

    @staticmethod
    def _next_id(rows: List[Dict[str, Any]], field: str) -> int:
        return max((int(r.get(field, 0)) for r in rows), default=0) + 1

    # --- users -------------------------------------------------------------

    def create_user(self, name: str, email: str, password: str) -> Dict[str, Any]:
        with self._lock:
            users = self._read("users")
            wanted = email.strip().lower()
            if any((u.get("email") or "").lower() == wanted for u in users):
                raise DuplicateRecordError("User already exists")
            user = {
                "user_id": self._next_id(users, "user_id"),
                "name": name,
                "email": email.strip(),
                "password": hash_password(password),
            }
            users.append(user)
            self._write("users", users)
        log.info("store: created user_id=%d", user["user_id"])
        return _public_user(user)

    def _find_user(self, user_id: int) -> Optional[Dict[str, Any]]:
        return next((u for u in self._read("users") if u.get("user_id") == user_id), None)

    def get_user(self, user_id: int) -> Dict[str, Any]:
        with self._lock:
            user = self._find_user(user_id)
        if user is None:
            raise RecordNotFoundError("User not found")
        return _public_user(user)

    # --- projects ----------------------------------------------------------

    def create_project(
        self, user_id: int, title: str, image_url: str, ai_model: str, generated_code: str
    ) -> Dict[str, Any]:
        with self._lock:
            if self._find_user(user_id) is None:
                raise RecordNotFoundError("User not found")
            projects = self._read("projects")
            project = {
                "project_id": self._next_id(projects, "project_id"),
                "user_id": user_id,
                "title": title.strip(),
                "image_url": image_url,
                "ai_model": ai_model,
                "generated_code": generated_code,
                "created_at": _now_iso(),
            }
            projects.append(project)
            self._write("projects", projects)
        log.info("store: created project_id=%d user_id=%d", project["project_id"], user_id)
        return project

    def get_project(self, project_id: int) -> Dict[str, Any]:
        with self._lock:
            project = next((p for p in self._read("projects") if p.get("project_id") == project_id), None)
        if project is None:
            raise RecordNotFoundError("Project not found")
        return project

    def list_projects(self, user_id: int) -> List[Dict[str, Any]]:
        """Projects of one user, newest first."""
        with self._lock:
            rows = [p for p in self._read("projects") if p.get("user_id") == user_id]
        return sorted(rows, key=lambda p: (p.get("created_at") or "", p.get("project_id", 0)), reverse=True)

    def update_project(self, project_id: int, changes: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            projects = self._read("projects")
            for project in projects:
                if project.get("project_id") == project_id:
                    for field in PROJECT_FIELDS:
                        if changes.get(field) is not None:
                            project[field] = changes[field]
                    project["updated_at"] = _now_iso()
                    self._write("projects", projects)
                    return project
        raise RecordNotFoundError("Project not found")

    def delete_project(self, project_id: int) -> None:
        with self._lock:
            projects = self._read("projects")
            kept = [p for p in projects if p.get("project_id") != project_id]
            if len(kept) == len(projects):
                raise RecordNotFoundError("Project not found")
            self._write("projects", kept)

    # --- AI models ---------------------------------------------------------

    def create_ai_model(self, name: str, description: str) -> Dict[str, Any]:
        with self._lock:
            models = self._read("aimodels")
            if any(m.get("name") == name for m in models):
                raise DuplicateRecordError("AI Model already exists")
            model = {"model_id": self._next_id(models, "model_id"), "name": name, "description": description}
            models.append(model)
            self._write("aimodels", models)
        return model

    def list_ai_models(self) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._read("aimodels")
        return sorted(rows, key=lambda m: m.get("name") or "")


_default_store: Optional[RecordStore] = None
_default_lock = threading.Lock()


def get_store() -> RecordStore:
    global _default_store
    with _default_lock:
        if _default_store is None:
            _default_store = RecordStore(STORE_DIR)
        return _default_store
