"""
Batch Import Models

Importers (bill CSVs, notification and SMS parsers) hand the core
plain Transaction-shaped records. These models describe what became
of each record.
"""

from uuid import UUID

from pydantic import BaseModel, Field


class ValidationIssue(BaseModel):
    """A single problem found with one record of a batch."""

    index: int = Field(
        ...,
        ge=0,
        description="Position of the record in the submitted batch"
    )
    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'invalid', 'unknown_account', 'duplicate')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        default="error",
        pattern="^(error|warning|info)$",
    )


class ImportResult(BaseModel):
    """Outcome of a batch insert."""

    total_count: int = Field(ge=0)
    imported_count: int = Field(ge=0)
    skipped_count: int = Field(ge=0)
    transaction_ids: list[UUID] = Field(default_factory=list)
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def errors(self) -> list[str]:
        """Issue messages, prefixed with the record they belong to."""
        return [f"Record {issue.index + 1}: {issue.message}" for issue in self.issues]

    @property
    def success(self) -> bool:
        return self.skipped_count == 0
