from __future__ import annotations

from dataclasses import dataclass

from deepcite.config import Settings
from deepcite.models.state import Stage
from deepcite.services.container import ResearchServices


@dataclass(slots=True)
class StageContext:
    services: ResearchServices
    settings: Settings


def error_entry(stage: Stage | str, iteration: int, message: str) -> str:
    name = stage.value if isinstance(stage, Stage) else stage
    return f"[{name}#{iteration}] {message}"


def format_change_requests(changes: list[str]) -> str:
    cleaned = [change.strip() for change in changes if change and change.strip()]
    if not cleaned:
        return ""
    return "Requested changes:\n" + "\n".join(f"- {change}" for change in cleaned)
