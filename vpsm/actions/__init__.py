"""Tracking provider actions to completion."""

from vpsm.actions.machine import ActionStateMachine, Phase, PollMode, Step
from vpsm.actions.service import ActionService

__all__ = ["ActionService", "ActionStateMachine", "Phase", "PollMode", "Step"]
