"""Result models and run report output."""
from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field
from rich.console import Console
from rich.table import Table


class ResourceKind(str, Enum):
    BUCKET = "bucket"
    INSTANCE = "instance"


class Outcome(str, Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already-exists"
    FAILED = "failed"


class ProvisioningResult(BaseModel):
    """Outcome for one (resource kind, department) pair."""

    kind: ResourceKind
    unit: str
    resource_name: str
    outcome: Outcome
    resource_id: Optional[str] = Field(default=None, description="Provider identifier when created")
    error: Optional[str] = Field(default=None, description="Provider error text when failed")
    warnings: List[str] = Field(default_factory=list, description="Secondary-step failures")


class OperationSummary(BaseModel):
    kind: ResourceKind
    results: List[ProvisioningResult] = Field(default_factory=list)

    @property
    def created(self) -> int:
        return sum(1 for result in self.results if result.outcome is Outcome.CREATED)

    @property
    def existing(self) -> int:
        return sum(1 for result in self.results if result.outcome is Outcome.ALREADY_EXISTS)

    @property
    def failed(self) -> int:
        return sum(1 for result in self.results if result.outcome is Outcome.FAILED)

    def to_dict(self) -> dict:
        data = self.model_dump(mode="json")
        data.update({"created": self.created, "existing": self.existing, "failed": self.failed})
        return data


class RunReport(BaseModel):
    run_id: str
    company: str
    region: str
    instance_type: str
    log_file: Optional[str] = None
    started_at: str
    finished_at: Optional[str] = None
    exit_code: Optional[int] = None
    error: Optional[str] = None
    operations: List[OperationSummary] = Field(default_factory=list)

    def to_dict(self) -> dict:
        data = self.model_dump(mode="json", exclude={"operations"})
        data["operations"] = [operation.to_dict() for operation in self.operations]
        return data


def write_report(path: Path, report: RunReport) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(report.to_dict(), indent=2))
    return path


def print_summary(console: Console, operations: List[OperationSummary]) -> None:
    if not operations:
        return
    table = Table(title="Provisioning summary")
    table.add_column("Resource")
    table.add_column("Created", justify="right", style="green")
    table.add_column("Already existed", justify="right", style="yellow")
    table.add_column("Failed", justify="right", style="red")
    for operation in operations:
        table.add_row(
            operation.kind.value,
            str(operation.created),
            str(operation.existing),
            str(operation.failed),
        )
    console.print(table)
