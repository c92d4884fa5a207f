from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .context import InstallCtx

logger = logging.getLogger(__name__)


class Step(Protocol):
    """A single idempotent step."""

    step_id: str

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        ...


@dataclass(frozen=True)
class PipelineResult:
    state: Dict[str, Any]
    ran_steps: List[str]


def decide(state: Dict[str, Any], key: str, value: Any) -> Any:
    """Record a decision for the run summary and return it."""

    state.setdefault("execution", {}).setdefault("decisions", {})[key] = value
    logger.info("Decision %s=%r", key, value)
    return value


def decision(state: Dict[str, Any], key: str, default: Any = None) -> Any:
    return ((state.get("execution") or {}).get("decisions") or {}).get(key, default)


def run_pipeline(*, ctx: InstallCtx, steps: Sequence[Step], state: Optional[Dict[str, Any]] = None) -> PipelineResult:
    """Run steps in order. Every step is safe to repeat on a later invocation."""

    state = state if state is not None else {}
    ran: List[str] = []

    for step in steps:
        state.setdefault("execution", {})["current_step"] = step.step_id
        logger.info("Running step %s", step.step_id)
        state = step.run(ctx, state)
        ran.append(step.step_id)

    state.setdefault("execution", {})["current_step"] = None
    state["execution"]["ran_steps"] = list(ran)
    return PipelineResult(state=state, ran_steps=ran)
