"""Planners (handler-based and PDDL) and the plan executor."""

from parcelbot.planning.executor import PlanExecutor, StepEvent, StepStatus
from parcelbot.planning.planner import PlanResult, Planner

__all__ = ["PlanExecutor", "PlanResult", "Planner", "StepEvent", "StepStatus"]
