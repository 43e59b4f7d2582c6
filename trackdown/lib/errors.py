"""
Error taxonomy for trackdown.

Every error carries the ids and fields needed to render an actionable
message. Core code raises these; only the CLI turns them into exit codes.
"""


class TrackdownError(Exception):
    """Base class for all trackdown errors."""


class NotFoundError(TrackdownError):
    """Referenced item does not exist."""

    def __init__(self, item_id: str, kind: str = None, context: str = ""):
        self.item_id = item_id
        self.kind = kind
        self.context = context
        label = f"{kind} {item_id}" if kind else item_id
        super().__init__(f"{label} not found" + (f" ({context})" if context else ""))


class ParseError(TrackdownError):
    """Item file could not be parsed."""

    def __init__(self, path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to parse {path}: {reason}")


class ValidationError(TrackdownError):
    """Data or an operation violates an invariant."""

    def __init__(self, message: str, item_id: str = None, field: str = None,
                 allowed: list = None):
        self.message = message
        self.item_id = item_id
        self.field = field
        self.allowed = list(allowed) if allowed is not None else None
        super().__init__(message)


class SchemaError(ValidationError):
    """JSON Schema validation failed."""

    def __init__(self, schema_name: str, message: str, path: str = None):
        self.schema_name = schema_name
        self.path = path
        super().__init__(
            f"[{schema_name}] {message}" + (f" at {path}" if path else ""),
            field=path,
        )


class InvalidTransition(ValidationError):
    """Raised when attempting an invalid state transition."""

    def __init__(self, from_state: str, to_state: str, allowed: list = None, item_id: str = ""):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid transition from {from_state} to {to_state}",
            item_id=item_id or None,
            field="state",
            allowed=allowed or [],
        )


class CycleError(ValidationError):
    """A dependency edge would close a cycle."""

    def __init__(self, cycle: list[str], message: str = None):
        self.cycle = list(cycle)
        super().__init__(
            message or f"Circular dependency detected: {' -> '.join(self.cycle + self.cycle[:1])}",
            field="dependencies",
        )


class ConflictError(TrackdownError):
    """PR/task reconciliation cannot pick a side automatically."""

    def __init__(self, pr: dict, task: dict, reasons: list[str]):
        self.pr = pr
        self.task = task
        self.reasons = list(reasons)
        super().__init__(
            f"Sync conflict between {pr.get('id')} and {task.get('id')}: " + "; ".join(self.reasons)
        )
