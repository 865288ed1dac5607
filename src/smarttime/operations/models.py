"""Operation request models persisted in the operation queue."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator


class _Request(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class ProcessBatchRequest(_Request):
    """Convert queued touch events into one transient batch file."""

    type: Literal["processBatch"] = "processBatch"


class HousekeepingRequest(_Request):
    """Once-daily archive collection and repository maintenance."""

    type: Literal["housekeeping"] = "housekeeping"


class ProjectChangeRequest(_Request):
    """Assign, reassign or remove a project for a branch/directory pair."""

    type: Literal["projectChange"] = "projectChange"
    action: Literal["add", "update", "delete", "addUnbound"]
    branch: str | None = None
    directory: str | None = None
    project: str | None = None

    @model_validator(mode="after")
    def _check_fields(self) -> "ProjectChangeRequest":
        if self.action in {"add", "update", "delete"} and (not self.branch or not self.directory):
            raise ValueError(f"projectChange '{self.action}' requires branch and directory")
        if self.action in {"add", "update", "addUnbound"} and not self.project:
            raise ValueError(f"projectChange '{self.action}' requires project")
        return self


class WriteTimeReportRequest(_Request):
    """Persist a saved time report body."""

    type: Literal["timereport"] = "timereport"
    file: str = Field(..., description="Data-relative path of the report, used in the commit message.")
    body: dict[str, Any]


class UpdateProjectsRequest(_Request):
    """Replace the whole project map."""

    type: Literal["projects"] = "projects"
    file: str = Field(default="projects.json")
    body: dict[str, Any]


class InvalidRequest(_Request):
    """Placeholder for a request file that could not be parsed."""

    type: Literal["invalid"] = "invalid"
    reason: str | None = None


OperationRequest = Annotated[
    Union[
        ProcessBatchRequest,
        HousekeepingRequest,
        ProjectChangeRequest,
        WriteTimeReportRequest,
        UpdateProjectsRequest,
        InvalidRequest,
    ],
    Field(discriminator="type"),
]

FILE_REQUEST_TYPES = (WriteTimeReportRequest, UpdateProjectsRequest)

_adapter: TypeAdapter[OperationRequest] = TypeAdapter(OperationRequest)


def parse_request(document: Any) -> OperationRequest:
    """Validate a decoded JSON document into its request variant."""

    return _adapter.validate_python(document)


def describe_request(request: OperationRequest) -> str:
    if isinstance(request, FILE_REQUEST_TYPES):
        return f"{request.type} - {request.file}"
    return request.type


__all__ = [
    "FILE_REQUEST_TYPES",
    "HousekeepingRequest",
    "InvalidRequest",
    "OperationRequest",
    "ProcessBatchRequest",
    "ProjectChangeRequest",
    "UpdateProjectsRequest",
    "WriteTimeReportRequest",
    "describe_request",
    "parse_request",
]
