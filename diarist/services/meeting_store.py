from __future__ import annotations

import json
import logging
import os
import re
import threading
from abc import ABC, abstractmethod
from typing import Optional

from pydantic import ValidationError

from diarist.models import Meeting

STORAGE_KEY = "savedMeetings"
SCHEMA_VERSION_KEY = "savedMeetingsSchemaVersion"
SCHEMA_VERSION = 1

LOAD_WARNING = "Could not load saved meetings."


class StorageError(RuntimeError):
    pass


class KeyValueStore(ABC):
    """Durable string-to-string store, the shape of browser local storage."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        raise NotImplementedError


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class FileKeyValueStore(KeyValueStore):
    """One ``<key>.json`` file per key, replaced atomically on write."""

    def __init__(self, directory: str) -> None:
        self._directory = directory
        os.makedirs(self._directory, exist_ok=True)

    def _path_for(self, key: str) -> str:
        safe = re.sub(r"[^a-zA-Z0-9._-]", "_", key)
        return os.path.join(self._directory, f"{safe}.json")

    def get(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Failed to read {path}: {exc}") from exc

    def set(self, key: str, value: str) -> None:
        path = self._path_for(key)
        temp_path = f"{path}.tmp"
        try:
            os.makedirs(self._directory, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(temp_path, path)
        except OSError as exc:
            raise StorageError(f"Failed to write {path}: {exc}") from exc


class MeetingStore:
    """Loads and saves the whole saved-meetings collection under one key."""

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv
        self._lock = threading.RLock()
        self._logger = logging.getLogger("diarist.meetings")

    @staticmethod
    def serialize(meetings: list[Meeting]) -> str:
        # Compact separators match the layout JSON.stringify produced for older collections.
        return json.dumps(
            [meeting.to_record() for meeting in meetings],
            ensure_ascii=False,
            separators=(",", ":"),
        )

    def _read_schema_version(self) -> int:
        raw = self._kv.get(SCHEMA_VERSION_KEY)
        if raw is None:
            # Collections written before versioning have the version-1 layout.
            return 1
        try:
            return int(json.loads(raw))
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Invalid schema version: {raw!r}") from exc

    def _drop_duplicate_ids(self, meetings: list[Meeting]) -> list[Meeting]:
        """Keep the first record for each id; ids address meetings for delete and selection."""
        seen: set[str] = set()
        unique = []
        for meeting in meetings:
            if meeting.id in seen:
                self._logger.warning("Dropping saved meeting with duplicate id=%s", meeting.id)
                continue
            seen.add(meeting.id)
            unique.append(meeting)
        return unique

    def load(self) -> tuple[list[Meeting], Optional[str]]:
        """Return the saved meetings and a user-facing warning, if any.

        Never raises: any failure degrades to an empty collection.
        """
        with self._lock:
            try:
                raw = self._kv.get(STORAGE_KEY)
                if raw is None:
                    self._logger.info("No saved meetings found under key=%s", STORAGE_KEY)
                    return [], None

                version = self._read_schema_version()
                if version > SCHEMA_VERSION:
                    raise StorageError(
                        f"Saved meetings use schema version {version}; "
                        f"this build understands up to {SCHEMA_VERSION}"
                    )

                records = json.loads(raw)
                if not isinstance(records, list):
                    raise StorageError(f"Expected a JSON array, got {type(records).__name__}")
                meetings = self._drop_duplicate_ids(
                    [Meeting.model_validate(record) for record in records]
                )
            except (StorageError, ValueError, ValidationError) as exc:
                # json.JSONDecodeError is a ValueError
                self._logger.warning("Failed to load saved meetings: %s", exc)
                return [], LOAD_WARNING

            self._logger.info("Loaded %d saved meetings", len(meetings))
            return meetings, None

    def save(self, meetings: list[Meeting]) -> bool:
        """Replace the persisted collection. Returns False on failure."""
        with self._lock:
            try:
                self._kv.set(STORAGE_KEY, self.serialize(meetings))
                self._kv.set(SCHEMA_VERSION_KEY, json.dumps(SCHEMA_VERSION))
            except StorageError as exc:
                self._logger.warning("Failed to save meetings: %s", exc)
                return False
            self._logger.debug("Saved %d meetings", len(meetings))
            return True
