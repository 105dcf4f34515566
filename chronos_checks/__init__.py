"""Nagios checks for Chronos scheduler tasks."""

from .classifier import ClassifiedResult, Status, TaskClassifier
from .state_store import Snapshot, StateStore, TaskRecord

__all__ = ["ClassifiedResult", "Snapshot", "StateStore", "Status", "TaskClassifier", "TaskRecord"]
