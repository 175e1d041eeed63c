"""
File-backed storage collaborators.

MappingStore keeps one JSON file per named mapping ({name, mapping,
updated_at}); SubmissionStore reads one JSON file per submission. The filling
engine only ever reads submissions.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

import settings
from field_mapping import DEFAULT_MAPPING_NAME, Mapping, MappingRecord

logger = logging.getLogger(__name__)

_UNSAFE_STEM = re.compile(r"[^A-Za-z0-9_-]+")


def safe_stem(value: str, fallback: str) -> str:
    stem = _UNSAFE_STEM.sub("_", value).strip("_")
    return stem or fallback


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class MappingStore:
    def __init__(self, root: Path | None = None) -> None:
        self.root = Path(root or settings.MAPPINGS_DIR)

    def _path_for(self, name: str) -> Path:
        return self.root / f"{safe_stem(name, 'mapping')}.json"

    def _read(self, path: Path) -> MappingRecord | None:
        try:
            return MappingRecord.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, PydanticValidationError) as exc:
            logger.warning("Ignoring unreadable mapping file %s: %s", path.name, exc)
            return None

    def records(self) -> list[MappingRecord]:
        if not self.root.exists():
            return []
        found = (self._read(path) for path in sorted(self.root.glob("*.json")))
        return [record for record in found if record is not None]

    def list_names(self) -> list[str]:
        return sorted(record.name for record in self.records())

    def get(self, name: str) -> MappingRecord | None:
        path = self._path_for(name)
        if not path.exists():
            return None
        return self._read(path)

    def latest(self) -> MappingRecord | None:
        """Most recently updated mapping, or None when nothing is saved."""
        records = self.records()
        if not records:
            return None
        return max(records, key=lambda record: _as_utc(record.updated_at))

    def upsert(self, name: str | None, mapping: Mapping | dict[str, Any]) -> MappingRecord:
        record = MappingRecord(
            name=(name or "").strip() or DEFAULT_MAPPING_NAME,
            mapping=Mapping.parse(mapping),
            updated_at=datetime.now(timezone.utc),
        )
        self.root.mkdir(parents=True, exist_ok=True)
        self._path_for(record.name).write_text(
            record.model_dump_json(by_alias=True, exclude_none=True, indent=2),
            encoding="utf-8",
        )
        logger.info("Saved mapping '%s' (%d fields)", record.name, len(record.mapping.fields))
        return record


class SubmissionStore:
    def __init__(self, root: Path | None = None) -> None:
        self.root = Path(root or settings.SUBMISSIONS_DIR)

    def _load(self, path: Path) -> dict[str, Any] | None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            logger.warning("Ignoring unreadable submission file %s: %s", path.name, exc)
            return None
        if not isinstance(data, dict):
            return None
        data.setdefault("id", path.stem)
        return data

    def get(self, submission_id: str) -> dict[str, Any] | None:
        path = self.root / f"{safe_stem(str(submission_id), 'submission')}.json"
        if not path.exists():
            return None
        return self._load(path)

    def get_many(self, submission_ids: list[str]) -> list[dict[str, Any]]:
        """Submissions in the order requested; unknown ids are skipped."""
        found = (self.get(submission_id) for submission_id in submission_ids)
        return [record for record in found if record is not None]

    def list_submissions(self, descending: bool = True) -> list[dict[str, Any]]:
        if not self.root.exists():
            return []
        found = (self._load(path) for path in sorted(self.root.glob("*.json")))
        records = [record for record in found if record is not None]
        return sorted(records, key=lambda record: str(record.get("created_at") or ""), reverse=descending)
