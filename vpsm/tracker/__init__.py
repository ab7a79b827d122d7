"""Concurrent tracking of many start/stop operations."""

from vpsm.tracker.tracker import (
    EVENT_COMPLETED,
    EVENT_DISMISSED,
    EVENT_UPDATED,
    OP_ACTIVE,
    OP_FAILED,
    OP_SUCCEEDED,
    Operation,
    OperationTracker,
    TrackerEvent,
    render_operations,
    toggle_plan,
)

__all__ = [
    "EVENT_COMPLETED",
    "EVENT_DISMISSED",
    "EVENT_UPDATED",
    "OP_ACTIVE",
    "OP_FAILED",
    "OP_SUCCEEDED",
    "Operation",
    "OperationTracker",
    "TrackerEvent",
    "render_operations",
    "toggle_plan",
]
