from __future__ import annotations

from typing import Callable, Dict, List

from ..context import InstallCtx
from ..pipeline import Step
from . import development, inspect_only, macos, production

JOURNEYS: Dict[str, Callable[[InstallCtx], List[Step]]] = {
    "production": production.build_steps,
    "macos": macos.build_steps,
    "development": development.build_steps,
    "inspect": inspect_only.build_steps,
}

__all__ = ["JOURNEYS"]
