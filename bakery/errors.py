from __future__ import annotations


class ReconcileError(ValueError):
    pass


class SpreadsheetError(ReconcileError):
    """The uploaded workbook cannot be read at all."""


class PartialApplicationError(ReconcileError):
    """
    A write failed after earlier writes of the same run were persisted.

    `applied` lists the updates that went through, in order; `step` names the
    one that failed. Nothing is rolled back.
    """

    def __init__(self, step: str, applied: list[str], cause: Exception):
        self.step = step
        self.applied = list(applied)
        self.cause = cause
        done = ", ".join(self.applied) if self.applied else "none"
        super().__init__(f"Failed at {step}: {cause}. Already applied: {done}.")

    def as_rows(self) -> list[dict[str, str]]:
        """Applied steps then the failed one, for display."""
        rows = [{"Step": s, "Status": "applied"} for s in self.applied]
        rows.append({"Step": self.step, "Status": f"failed: {self.cause}"})
        return rows
