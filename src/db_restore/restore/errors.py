"""Restore error taxonomy.

- Precondition errors: raised before any work; the operation record is
  left untouched.
- Validation, privilege, and lock errors: raised after ``in_progress``;
  the orchestrator marks the operation ``failed`` and re-raises.
"""

from db_restore.backup.models import RestoreStatus, RestoreValidation


class RestoreError(Exception):
    """Base class for restore engine failures."""

    pass


class RestorePreconditionError(RestoreError):
    """The operation cannot start in its current state."""

    pass


class RestoreOperationNotFoundError(RestorePreconditionError):
    """No restore operation exists with the given id."""

    def __init__(self, operation_id: str) -> None:
        self.operation_id = operation_id
        super().__init__(f"Restore operation not found: {operation_id}")


class InvalidOperationStateError(RestorePreconditionError):
    """The operation is not in the status the requested transition needs."""

    def __init__(
        self,
        operation_id: str,
        actual: RestoreStatus | str | None,
        expected: RestoreStatus | str,
        action: str = "continue",
    ) -> None:
        self.operation_id = operation_id
        self.actual = actual
        self.expected = expected
        super().__init__(
            f"Cannot {action} restore operation {operation_id}: "
            f"status is '{actual}', expected '{expected}'"
        )


class RestoreValidationError(RestoreError):
    """The backup is incompatible with the live schema."""

    def __init__(self, validation: RestoreValidation) -> None:
        self.validation = validation
        super().__init__("Backup validation failed: " + "; ".join(validation.errors))


class PrivilegeEscalationError(RestoreError):
    """No strategy could lift row-level security for the transaction."""

    def __init__(self, attempted: list[str]) -> None:
        self.attempted = attempted
        super().__init__(
            "Could not bypass row-level security (tried: "
            + ", ".join(attempted)
            + "); refusing to restore with partial visibility"
        )


class RestoreLockError(RestoreError):
    """Another restore holds a conflicting advisory lock."""

    pass
