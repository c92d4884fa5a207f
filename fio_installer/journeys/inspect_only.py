"""Read-only: summarise the config and say what to do next."""

from __future__ import annotations

from typing import Any, Dict, List

from ..config_doc import inspect_config, summary_lines
from ..context import InstallCtx
from ..pipeline import Step, decide


def guidance(summary) -> List[str]:
    if not summary.exists:
        return ["No config found. Create one with: fio-installer apply --mode development"]
    if summary.parse_error:
        return [f"Fix the YAML syntax in {summary.path} and re-run inspect."]

    out: List[str] = []
    if summary.ai_usable:
        out.append("AI config looks usable.")
    else:
        out.append("AI config needs attention. Recommended: FIOCHAT_CONFIG_ACTION=provider fio-installer apply")
    if summary.telegram_configured:
        out.append("Telegram config looks usable.")
    else:
        out.append("Telegram config is missing. Recommended: FIOCHAT_CONFIG_ACTION=telegram fio-installer apply")
    return out


class InspectStep:
    step_id = "inspect"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        ctx.prompter.say("Inspect / verify configuration")
        targets = [ctx.paths.user_config]
        if ctx.paths.system_config.is_file():
            targets.append(ctx.paths.system_config)
        for path in targets:
            summary = inspect_config(path)
            for line in summary_lines(summary) + guidance(summary):
                ctx.prompter.say(line)
        decide(state, "inspected", [str(p) for p in targets])
        return state


def build_steps(ctx: InstallCtx) -> List[Step]:
    return [InspectStep()]
