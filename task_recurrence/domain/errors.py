from __future__ import annotations


class RecurrenceError(Exception):
    """Base class for errors raised by the recurrence engine."""


class RuleValidationError(RecurrenceError, ValueError):
    pass


class TaskNotFoundError(RecurrenceError, LookupError):
    def __init__(self, task_id: int) -> None:
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class RuleNotFoundError(RecurrenceError, LookupError):
    def __init__(self, rule_id: int) -> None:
        super().__init__(f"Repeat rule {rule_id} not found")
        self.rule_id = rule_id


class InvalidAnchorError(RecurrenceError):
    pass
