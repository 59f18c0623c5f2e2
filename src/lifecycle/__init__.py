"""Lifecycle state machines for filings and rule versions."""

from src.lifecycle.state_machine import (
    FilingLifecycle,
    RuleVersionLifecycle,
    TransitionNotAllowed,
    fire,
)

__all__ = [
    "FilingLifecycle",
    "RuleVersionLifecycle",
    "TransitionNotAllowed",
    "fire",
]
