from deepcite.engine.routing import Transition, route_after_review
from deepcite.engine.workflow import EngineResult, WorkflowEngine

__all__ = ["EngineResult", "Transition", "WorkflowEngine", "route_after_review"]
