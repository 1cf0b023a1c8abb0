"""File-backed persistence for tagged task lists.

All tags live in one YAML (or JSON, by suffix) file laid out as::

    master:
      tasks: [...]
      metadata: {created: ..., updated: ..., last_task_id: 7}
    feature-x:
      tasks: [...]
      metadata: {...}

Writes go through a sibling lock file and are atomic (write-tmp-then-rename),
so a reader sees either the previous file or the new one. Records are
validated against pydantic schemas on load; anything that does not match
raises :class:`CorruptStoreError` instead of being half-read.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Union

from filelock import FileLock
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError, field_validator, model_validator

from ..constants import DEFAULT_TAG, LOCK_SUFFIX, LOCK_TIMEOUT
from ..io_utils import _load_data_with_error, _save_data
from .errors import CorruptStoreError, InvalidPriorityError, InvalidStatusError, MalformedIdError
from .ids import parse_address
from .model import Snapshot, TaskPriority, TaskStatus


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

def _normalize_status(value: Any) -> str:
    if value is None:
        return TaskStatus.PENDING.value
    try:
        return TaskStatus.parse(value).value
    except InvalidStatusError as exc:
        raise ValueError(exc.message) from None


def _check_dependencies(values: list[Union[int, str]]) -> list[Union[int, str]]:
    for value in values:
        try:
            parse_address(value)
        except MalformedIdError as exc:
            raise ValueError(exc.message) from None
    return values


def _text(value: Any) -> str:
    return "" if value is None else value


class SubtaskRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: StrictInt = Field(gt=0)
    title: StrictStr = ""
    description: Optional[StrictStr] = ""
    details: Optional[StrictStr] = ""
    testStrategy: Optional[StrictStr] = ""
    status: Optional[StrictStr] = TaskStatus.PENDING.value
    priority: Optional[StrictStr] = None
    dependencies: list[Union[StrictInt, StrictStr]] = Field(default_factory=list)

    normalize_status = field_validator("status")(_normalize_status)
    check_dependencies = field_validator("dependencies")(_check_dependencies)
    blank_text = field_validator("description", "details", "testStrategy")(_text)

    @field_validator("priority")
    @classmethod
    def normalize_priority(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        try:
            return TaskPriority.parse(value).value
        except InvalidPriorityError as exc:
            raise ValueError(exc.message) from None


class TaskRecord(SubtaskRecord):
    priority: Optional[StrictStr] = TaskPriority.MEDIUM.value
    subtasks: list[SubtaskRecord] = Field(default_factory=list)

    @model_validator(mode="after")
    def unique_subtask_ids(self) -> "TaskRecord":
        ids = [s.id for s in self.subtasks]
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        if dupes:
            raise ValueError(f"task {self.id} has duplicate subtask ids {dupes}")
        return self


class TagRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tasks: list[TaskRecord] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def unique_task_ids(self) -> "TagRecord":
        ids = [t.id for t in self.tasks]
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        if dupes:
            raise ValueError(f"duplicate task ids {dupes}")
        return self


def _format_errors(exc: ValidationError) -> list[str]:
    problems: list[str] = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        problems.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return problems


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------

class TaskFileRepository:
    """Load and save tag snapshots in a single tasks file.

    Parameters
    ----------
    path:
        The tasks file (``.yaml``/``.yml`` for YAML, anything else is JSON).
    """

    def __init__(self, path: Path, lock_timeout: float = LOCK_TIMEOUT) -> None:
        self._path = path
        self._lock = FileLock(str(path) + LOCK_SUFFIX, timeout=lock_timeout, thread_local=True)

    @property
    def path(self) -> Path:
        return self._path

    def locked(self) -> FileLock:
        """Return the cross-process lock on the tasks file.

        The lock is reentrant, so a caller can hold it across a load and a
        save that each take it again.
        """
        self._path.parent.mkdir(parents=True, exist_ok=True)
        return self._lock

    # -- internal helpers ---------------------------------------------------

    def _read_all(self) -> dict[str, Any]:
        data, err = _load_data_with_error(self._path, {})
        if err:
            raise CorruptStoreError(str(self._path), None, [err])
        if isinstance(data.get("tasks"), list):
            # Untagged layout: a single task list at the top level belongs to the default tag.
            logger.info("Reading untagged task file {} as tag {}", self._path, DEFAULT_TAG)
            data = {DEFAULT_TAG: {"tasks": data["tasks"], "metadata": data.get("metadata") or {}}}
        return data

    def _parse_tag(self, tag: str, raw: Any) -> Snapshot:
        if not isinstance(raw, dict):
            raise CorruptStoreError(str(self._path), tag, [f"expected a mapping, got {type(raw).__name__}"])
        try:
            record = TagRecord.model_validate(raw)
        except ValidationError as exc:
            raise CorruptStoreError(str(self._path), tag, _format_errors(exc)) from exc
        return Snapshot.from_dict(tag, record.model_dump())

    # -- public API ---------------------------------------------------------

    def load(self, tag: str) -> Snapshot:
        """Return the snapshot for *tag*; an unknown tag yields an empty snapshot."""
        with self.locked():
            data = self._read_all()
        if tag not in data:
            return Snapshot.empty(tag)
        return self._parse_tag(tag, data[tag])

    def save(self, tag: str, snapshot: Snapshot) -> None:
        """Replace *tag* in the tasks file, leaving every other tag untouched."""
        with self.locked():
            data = self._read_all()
            data[tag] = snapshot.to_dict()
            _save_data(self._path, data)

    def has_tag(self, tag: str) -> bool:
        with self.locked():
            return tag in self._read_all()

    def list_tags(self) -> list[str]:
        with self.locked():
            return list(self._read_all().keys())

    def delete_tag(self, tag: str) -> bool:
        with self.locked():
            data = self._read_all()
            if tag not in data:
                return False
            del data[tag]
            _save_data(self._path, data)
        return True

    def rename_tag(self, old: str, new: str) -> bool:
        with self.locked():
            data = self._read_all()
            if old not in data or new in data:
                return False
            # Rebuild to keep the tag's position in the file.
            data = {(new if key == old else key): value for key, value in data.items()}
            _save_data(self._path, data)
        return True
