"""Validation errors raised before anything reaches the ledger."""

from typing import Optional

from finledger.models.ledger import ValidationIssue


class ValidationError(ValueError):
    """
    Input was rejected. No state has changed.

    Carries the individual issues so the UI can show each one.
    """

    def __init__(self, issues: list[ValidationIssue]):
        self.issues = issues
        super().__init__("; ".join(issue.message for issue in issues))

    @classmethod
    def single(
        cls,
        field: str,
        issue_type: str,
        message: str,
        suggested_fix: Optional[str] = None,
    ) -> "ValidationError":
        return cls([
            ValidationIssue(
                field=field,
                issue_type=issue_type,
                message=message,
                suggested_fix=suggested_fix,
            )
        ])

    def to_dicts(self) -> list[dict]:
        return [
            {"field": i.field, "type": i.issue_type, "message": i.message}
            for i in self.issues
        ]
