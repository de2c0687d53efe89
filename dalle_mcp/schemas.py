from typing import Any

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str


class GenerateResponse(BaseModel):
    success: bool
    data: list[dict[str, Any]]


class CleanupRequest(BaseModel):
    retention_days: float = Field(default=7, ge=0)
    max_files: int | None = Field(default=None, ge=0)
    dry_run: bool = False


class FileErrorModel(BaseModel):
    file: str
    error: str


class CleanupResponse(BaseModel):
    directory: str
    files_scanned: int
    files_deleted: int
    space_freed: int
    space_freed_formatted: str
    errors: list[FileErrorModel]
    deleted_files: list[dict[str, Any]]
    dry_run: bool
    success: bool


class FileSummary(BaseModel):
    name: str
    age: float
    age_days: int


class StatsResponse(BaseModel):
    directory: str
    count: int
    total_size: int
    total_size_formatted: str
    oldest_file: FileSummary | None
    newest_file: FileSummary | None
    average_age: float
    average_age_days: int
    average_size: float
    average_size_formatted: str
