"""Retention sweeps over the generated-images directory.

Files older than the retention period are removed, optionally together with
the oldest files beyond a maximum count.  All filesystem access goes through
``aiofiles.os`` so a sweep never blocks request handling.
"""

import asyncio
import logging
import math
import os
import re
import stat as stat_module
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import aiofiles.os

logger = logging.getLogger("dalle_mcp.cleanup")

DEFAULT_RETENTION = timedelta(days=7)
DEFAULT_INTERVAL = timedelta(hours=24)
SECONDS_PER_DAY = 24 * 60 * 60

IMAGE_FILE_RE = re.compile(r"\.(png|jpg|jpeg|gif|webp)$", re.IGNORECASE)


class DirectoryAccessError(Exception):
    def __init__(self, directory: str, reason: str):
        self.directory = directory
        self.reason = reason
        super().__init__(f"Cannot read directory {directory}: {reason}")


@dataclass(frozen=True)
class ImageFileRecord:
    name: str
    path: str
    size: int
    created_at: datetime
    modified_at: datetime
    age: float  # seconds since last modification


@dataclass(frozen=True)
class CleanupPolicy:
    retention: timedelta = DEFAULT_RETENTION
    max_files: int | None = None
    dry_run: bool = False

    def __post_init__(self) -> None:
        if self.retention < timedelta(0):
            raise ValueError("retention must not be negative")
        if self.max_files is not None and self.max_files < 0:
            raise ValueError("max_files must not be negative")


@dataclass
class FileError:
    file: str
    error: str


@dataclass
class CleanupResult:
    files_scanned: int = 0
    files_deleted: int = 0
    space_freed: int = 0
    errors: list[FileError] = field(default_factory=list)
    deleted_files: list[dict[str, Any]] = field(default_factory=list)
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["success"] = self.success
        data["space_freed_formatted"] = format_bytes(self.space_freed)
        return data


@dataclass
class ImageStats:
    count: int = 0
    total_size: int = 0
    oldest_file: dict[str, Any] | None = None
    newest_file: dict[str, Any] | None = None
    average_age: float = 0.0
    average_size: float = 0.0

    @property
    def average_age_days(self) -> int:
        return int(self.average_age // SECONDS_PER_DAY)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["total_size_formatted"] = format_bytes(self.total_size)
        data["average_size_formatted"] = format_bytes(self.average_size)
        data["average_age_days"] = self.average_age_days
        return data


def format_bytes(num_bytes: float) -> str:
    if num_bytes <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    i = min(max(int(math.floor(math.log(num_bytes, 1024))), 0), len(units) - 1)
    value = round(num_bytes / 1024 ** i, 2)
    return f"{value:g} {units[i]}"


def _age_days(age_seconds: float) -> int:
    return int(age_seconds // SECONDS_PER_DAY)


def _describe(record: ImageFileRecord) -> dict[str, Any]:
    return {"name": record.name, "age": record.age, "age_days": _age_days(record.age)}


async def scan(directory: str) -> list[ImageFileRecord]:
    """Return a record for every image file directly inside ``directory``.

    Raises DirectoryAccessError if the directory itself cannot be listed.
    Entries that cannot be stat'ed are skipped with a warning.
    """
    try:
        names: list[str] = await aiofiles.os.listdir(directory)
    except OSError as exc:
        logger.error("Error reading directory %s: %s", directory, exc)
        raise DirectoryAccessError(directory, exc.strerror or str(exc)) from exc

    now = time.time()
    records: list[ImageFileRecord] = []
    for name in names:
        if not IMAGE_FILE_RE.search(name):
            continue
        path = os.path.join(directory, name)
        try:
            st = await aiofiles.os.stat(path)
        except OSError as exc:
            logger.warning("Could not stat file %s: %s", name, exc)
            continue
        if not stat_module.S_ISREG(st.st_mode):
            continue

        created = getattr(st, "st_birthtime", st.st_ctime)
        records.append(ImageFileRecord(
            name=name,
            path=path,
            size=st.st_size,
            created_at=datetime.fromtimestamp(created, timezone.utc),
            modified_at=datetime.fromtimestamp(st.st_mtime, timezone.utc),
            age=now - st.st_mtime,
        ))
    return records


def select_for_deletion(records: list[ImageFileRecord], policy: CleanupPolicy) -> list[ImageFileRecord]:
    """Pick the files a sweep removes, oldest first.

    ``records`` must already be sorted by modification time, oldest first.
    """
    retention_seconds = policy.retention.total_seconds()
    selected = [r for r in records if r.age > retention_seconds]

    if policy.max_files is not None and len(records) > policy.max_files:
        excess = len(records) - policy.max_files
        marked = {r.path for r in selected}
        survivors = [r for r in records if r.path not in marked]
        selected.extend(survivors[:excess])
        selected.sort(key=lambda r: r.modified_at)

    return selected


async def cleanup(directory: str, policy: CleanupPolicy | None = None) -> CleanupResult:
    policy = policy or CleanupPolicy()
    retention_days = policy.retention.total_seconds() / SECONDS_PER_DAY

    logger.info("Starting image cleanup in %s", directory)
    logger.info("Retention period: %g days", retention_days)
    if policy.dry_run:
        logger.info("DRY RUN MODE - No files will be deleted")

    if not await aiofiles.os.path.exists(directory):
        logger.warning("Directory %s does not exist, skipping cleanup", directory)
        return CleanupResult(dry_run=policy.dry_run)

    records = await scan(directory)
    logger.info("Found %d image files", len(records))
    records.sort(key=lambda r: r.modified_at)

    to_delete = select_for_deletion(records, policy)
    logger.info("Identified %d files for deletion", len(to_delete))

    result = CleanupResult(files_scanned=len(records), dry_run=policy.dry_run)
    for record in to_delete:
        detail = f"{record.name} ({format_bytes(record.size)}, {_age_days(record.age)} days old)"
        if policy.dry_run:
            logger.debug("[DRY RUN] Would delete: %s", detail)
        else:
            try:
                await aiofiles.os.remove(record.path)
            except FileNotFoundError:
                logger.warning("File %s was already removed", record.name)
                result.errors.append(FileError(file=record.name, error="File no longer exists"))
                continue
            except OSError as exc:
                logger.error("Failed to delete %s: %s", record.name, exc)
                result.errors.append(FileError(file=record.name, error=exc.strerror or str(exc)))
                continue
            logger.debug("Deleted: %s", detail)

        result.files_deleted += 1
        result.space_freed += record.size
        result.deleted_files.append({"name": record.name, "size": record.size, "age": record.age})

    logger.info(
        "Cleanup complete: %d files deleted, %s freed",
        result.files_deleted, format_bytes(result.space_freed),
    )
    if result.errors:
        logger.warning("Cleanup completed with %d errors", len(result.errors))
    return result


async def stats(directory: str) -> ImageStats:
    if not await aiofiles.os.path.exists(directory):
        return ImageStats()

    records = await scan(directory)
    if not records:
        return ImageStats()

    records.sort(key=lambda r: r.modified_at)
    total_size = sum(r.size for r in records)
    total_age = sum(r.age for r in records)
    return ImageStats(
        count=len(records),
        total_size=total_size,
        oldest_file=_describe(records[0]),
        newest_file=_describe(records[-1]),
        average_age=total_age / len(records),
        average_size=total_size / len(records),
    )


class CleanupSchedule:
    """A repeating sweep of one directory.

    ``stop()`` prevents further runs; a sweep already running is allowed to
    finish.
    """

    def __init__(self, directory: str, policy: CleanupPolicy, interval: timedelta = DEFAULT_INTERVAL) -> None:
        if interval.total_seconds() <= 0:
            raise ValueError("interval must be positive")
        self.directory = directory
        self.policy = policy
        self.interval = interval
        self.runs = 0
        self.last_result: CleanupResult | None = None
        self._stopped = False
        self._wake = asyncio.Event()
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        logger.info(
            "Scheduling automatic cleanup of %s every %g hours",
            self.directory, self.interval.total_seconds() / 3600,
        )
        self._task = asyncio.create_task(self._loop())

    async def _run_once(self) -> None:
        try:
            self.last_result = await cleanup(self.directory, self.policy)
            logger.info("Scheduled cleanup complete: %d files deleted", self.last_result.files_deleted)
        except Exception:
            logger.exception("Error in scheduled cleanup of %s", self.directory)
        finally:
            self.runs += 1

    async def _loop(self) -> None:
        loop = asyncio.get_running_loop()
        period = self.interval.total_seconds()
        next_run = loop.time()
        while not self._stopped:
            await self._run_once()
            next_run += period
            delay = max(0.0, next_run - loop.time())
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._wake.set()
        logger.info("Stopped scheduled cleanup of %s", self.directory)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def wait_closed(self) -> None:
        if self._task:
            await self._task


def schedule_cleanup(
    directory: str,
    policy: CleanupPolicy | None = None,
    interval: timedelta = DEFAULT_INTERVAL,
) -> CleanupSchedule:
    """Run a sweep now and then every ``interval``. Needs a running event loop."""
    schedule = CleanupSchedule(directory, policy or CleanupPolicy(), interval)
    schedule.start()
    return schedule


class CleanupScheduler:
    """Owns at most one schedule per directory."""

    def __init__(self) -> None:
        self._schedules: dict[str, CleanupSchedule] = {}

    def schedule(
        self,
        directory: str,
        policy: CleanupPolicy | None = None,
        interval: timedelta = DEFAULT_INTERVAL,
    ) -> CleanupSchedule:
        key = os.path.realpath(directory)
        existing = self._schedules.get(key)
        if existing and existing.running:
            raise ValueError(f"A cleanup schedule is already running for {directory}")
        schedule = schedule_cleanup(directory, policy, interval)
        self._schedules[key] = schedule
        return schedule

    def get(self, directory: str) -> CleanupSchedule | None:
        return self._schedules.get(os.path.realpath(directory))

    async def stop(self, directory: str) -> None:
        schedule = self._schedules.pop(os.path.realpath(directory), None)
        if schedule:
            schedule.stop()
            await schedule.wait_closed()

    async def stop_all(self) -> None:
        for directory in list(self._schedules):
            await self.stop(directory)

    @property
    def schedule_count(self) -> int:
        return len(self._schedules)


# Module-level singleton
scheduler = CleanupScheduler()
