"""Task record access for the synthesizer and translator - taskcal_lite.

The core never reads note files itself: it consumes TaskRecords from a
TaskStore. Records may come from frontmatter-like mappings, which are
normalized here (camelCase keys, loose date strings, link-shaped project
values).
"""

import logging
from collections.abc import Iterable
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional, Protocol, Union

import yaml
from pydantic import ValidationError

from .lite_datetime_utils import DateLike, local_date, parse_date_value
from .lite_models import TaskRecord, TimeEntry
from .lite_reference_parser import normalize_references

logger = logging.getLogger(__name__)

# Frontmatter key -> TaskRecord field
KEY_ALIASES = {
    "recurrenceAnchor": "recurrence_anchor",
    "completeInstances": "complete_instances",
    "complete_instances": "complete_instances",
    "skippedInstances": "skipped_instances",
    "timeEntries": "time_entries",
    "timeEstimate": "time_estimate",
    "dateProperties": "date_properties",
}


class TaskStore(Protocol):
    """Source of task records."""

    def get_all_tasks(self) -> list[TaskRecord]: ...


class InMemoryTaskStore:
    """TaskStore backed by a list."""

    def __init__(self, tasks: Iterable[TaskRecord] = ()):
        self._tasks: dict[str, TaskRecord] = {}
        for task in tasks:
            self.put(task)

    def put(self, task: TaskRecord) -> None:
        self._tasks[task.path] = task

    def remove(self, path: str) -> None:
        self._tasks.pop(path, None)

    def get(self, path: str) -> Optional[TaskRecord]:
        return self._tasks.get(path)

    def get_all_tasks(self) -> list[TaskRecord]:
        return list(self._tasks.values())


def _date_or_none(value: Any, field: str, path: str) -> Optional[DateLike]:
    try:
        return parse_date_value(value)
    except (TypeError, ValueError):
        logger.warning("Task %s: ignoring unreadable %s value %r", path, field, value)
        return None


def _instance_dates(values: Any, field: str, path: str) -> tuple[date, ...]:
    """Instance lists hold calendar dates; datetimes are reduced to their date."""
    if values is None:
        return ()
    if not isinstance(values, (list, tuple)):
        values = [values]
    dates: list[date] = []
    for value in values:
        parsed = _date_or_none(value, field, path)
        if parsed is not None:
            dates.append(local_date(parsed))
    return tuple(dates)


def _time_entries(values: Any, path: str) -> tuple[TimeEntry, ...]:
    entries: list[TimeEntry] = []
    for raw in values or ():
        if not isinstance(raw, dict):
            logger.warning("Task %s: ignoring malformed time entry %r", path, raw)
            continue
        start = _date_or_none(raw.get("startTime", raw.get("start")), "time entry start", path)
        end = _date_or_none(raw.get("endTime", raw.get("end")), "time entry end", path)
        if not isinstance(start, datetime):
            logger.warning("Task %s: time entry without a start time", path)
            continue
        if end is not None and not isinstance(end, datetime):
            end = None
        entries.append(TimeEntry(start=start, end=end, description=raw.get("description")))
    return tuple(entries)


def task_from_mapping(data: dict[str, Any], path: Optional[str] = None) -> TaskRecord:
    """Build a TaskRecord from a frontmatter-like mapping.

    Args:
        data: Mapping with keys such as ``title``, ``due``, ``scheduled``,
            ``recurrence``, ``complete_instances`` / ``completeInstances``,
            ``timeEntries``, ``timeEstimate``, ``projects``
        path: Task path; falls back to ``data["path"]`` or the title

    Raises:
        ValueError: If the mapping lacks both path and title, or fails validation
    """
    normalized = {KEY_ALIASES.get(k, k): v for k, v in data.items()}
    task_path = str(path or normalized.get("path") or normalized.get("title") or "").strip()
    if not task_path:
        raise ValueError("Task mapping needs a path or title")
    title = str(normalized.get("title") or Path(task_path).stem)

    date_properties: dict[str, DateLike] = {}
    raw_properties = normalized.get("date_properties") or {}
    if isinstance(raw_properties, dict):
        for name, value in raw_properties.items():
            parsed = _date_or_none(value, name, task_path)
            if parsed is not None:
                date_properties[str(name)] = parsed

    time_estimate = normalized.get("time_estimate")
    if time_estimate is not None:
        try:
            time_estimate = int(time_estimate)
        except (TypeError, ValueError):
            logger.warning("Task %s: ignoring non-numeric timeEstimate %r", task_path, time_estimate)
            time_estimate = None

    recurrence = normalized.get("recurrence")
    recurrence_anchor = str(normalized.get("recurrence_anchor") or "scheduled").lower()
    if recurrence_anchor not in ("scheduled", "completion"):
        logger.warning("Task %s: unknown recurrence_anchor %r", task_path, recurrence_anchor)
        recurrence_anchor = "scheduled"

    try:
        return TaskRecord(
            path=task_path,
            title=title,
            due=_date_or_none(normalized.get("due"), "due", task_path),
            scheduled=_date_or_none(normalized.get("scheduled"), "scheduled", task_path),
            recurrence=str(recurrence).strip() if recurrence else None,
            recurrence_anchor=recurrence_anchor,
            complete_instances=_instance_dates(normalized.get("complete_instances"), "complete_instances", task_path),
            skipped_instances=_instance_dates(normalized.get("skipped_instances"), "skipped_instances", task_path),
            priority=str(normalized["priority"]) if normalized.get("priority") is not None else None,
            status=str(normalized["status"]) if normalized.get("status") is not None else None,
            time_entries=_time_entries(normalized.get("time_entries"), task_path),
            time_estimate=time_estimate,
            date_properties=date_properties,
            projects=normalize_references(normalized.get("projects")),
        )
    except ValidationError as e:
        raise ValueError(f"Invalid task {task_path}: {e}") from e


def load_tasks_file(path: Union[str, Path]) -> InMemoryTaskStore:
    """Load a YAML list of task mappings into an InMemoryTaskStore.

    Malformed entries are skipped with a warning.

    Raises:
        ValueError: If the top level is not a list
    """
    p = Path(path)
    loaded = yaml.safe_load(p.read_text(encoding="utf-8"))
    if loaded is None:
        loaded = []
    if isinstance(loaded, dict) and "tasks" in loaded:
        loaded = loaded["tasks"]
    if not isinstance(loaded, list):
        raise ValueError(f"Task file {p} must contain a list of tasks")  # noqa: TRY004

    store = InMemoryTaskStore()
    for index, entry in enumerate(loaded):
        if not isinstance(entry, dict):
            logger.warning("Task file %s entry %d is not a mapping; skipping", p, index)
            continue
        try:
            store.put(task_from_mapping(entry))
        except ValueError as e:
            logger.warning("Task file %s entry %d skipped: %s", p, index, e)
    logger.info("Loaded %d tasks from %s", len(store.get_all_tasks()), p)
    return store
