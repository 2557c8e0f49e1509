"""Planners for the four policy resource kinds and the pipeline that orders them."""

from pacplan.planning.aggregator import PlanOutcome, load_plan, persist_plans
from pacplan.planning.pipeline import PlanningResult, build_deployment_plans, plan_environment

__all__ = [
    "PlanOutcome",
    "PlanningResult",
    "build_deployment_plans",
    "load_plan",
    "persist_plans",
    "plan_environment",
]
