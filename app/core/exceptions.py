# app/core/exceptions.py
"""
Domain errors raised by the service layer and mapped to HTTP responses
in app/main.py.
"""
from typing import Optional


class StoreError(Exception):
    """A data-store operation failed (connectivity, constraint violation, ...)."""

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation} failed: {detail}")


class PlanLimitReached(Exception):
    """The user's plan does not allow another goal or message today."""

    def __init__(self, usage_type: str, limit: Optional[int], plan: str):
        self.usage_type = usage_type
        self.limit = limit
        self.plan = plan
        super().__init__(f"{usage_type} limit reached for {plan} plan")

    @property
    def prompt(self) -> str:
        if self.usage_type == "goal":
            return (
                f"Your {self.plan} plan allows {self.limit} active goal(s). "
                "Please upgrade your plan to create more goals."
            )
        return (
            "You've reached your daily message limit. "
            "Please upgrade your plan to continue chatting."
        )


class GenerationError(Exception):
    """An AI generation function failed or returned a malformed payload."""


class ThreadRenameError(ValueError):
    """A chat thread cannot be renamed to the requested title."""
