from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

PLACEHOLDER_KEYS = ("YOUR_API_KEY_HERE", "YOUR_API_KEY", "sk-REPLACE", "REPLACE_ME")


@dataclass(frozen=True)
class ProviderSpec:
    name: str
    label: str
    default_model: str
    secret_field: Optional[str]  # answers field holding the API key
    secret_label: str = ""
    required_fields: Tuple[str, ...] = ()  # non-secret answers fields that must be set
    description: str = ""


PROVIDERS: Dict[str, ProviderSpec] = {
    "openai": ProviderSpec(
        "openai",
        "OpenAI",
        "gpt-4o-mini",
        "openai_api_key",
        "OpenAI key value",
        description="easiest default if you have an OpenAI key",
    ),
    "claude": ProviderSpec(
        "claude",
        "Anthropic Claude",
        "claude-3-5-sonnet-20241022",
        "claude_api_key",
        "Anthropic key value",
        description="requires Anthropic API key",
    ),
    "azure-openai": ProviderSpec(
        "azure-openai",
        "Azure OpenAI",
        "gpt-4o-mini",
        "azure_api_key",
        "Azure key value",
        required_fields=("azure_api_base",),
        description="requires Azure resource URL + deployment name",
    ),
    "ollama": ProviderSpec(
        "ollama",
        "Ollama",
        "llama3.2",
        None,
        description="requires ollama running locally",
    ),
    "manual": ProviderSpec(
        "manual",
        "Manual",
        "gpt-4o-mini",
        None,
        description="create template only (you edit YAML)",
    ),
}

# Menu order for the interactive picker.
PROVIDER_MENU = ("openai", "claude", "azure-openai", "ollama", "manual")


def provider_label(client_type: Optional[str]) -> str:
    spec = PROVIDERS.get(client_type or "")
    return spec.label if spec and spec.name != "manual" else "unknown"


def render_provider(provider: str, values: Mapping[str, str]) -> Dict[str, Any]:
    """Build the top-level ``model``/``clients`` mapping for one provider.

    ``values`` carries ``model``, ``api_key``, ``api_base`` and ``api_version``;
    empty ones are dropped later by the config store.
    """

    spec = PROVIDERS[provider]
    model = values.get("model") or spec.default_model

    if provider == "manual":
        return {
            "model": f"openai:{spec.default_model}",
            "clients": [{"type": "openai", "api_key": PLACEHOLDER_KEYS[0]}],
        }

    client: Dict[str, Any] = {"type": provider}
    if provider in {"openai", "claude"}:
        client["api_key"] = values.get("api_key", "")
    elif provider == "azure-openai":
        client["api_base"] = values.get("api_base", "")
        client["api_key"] = values.get("api_key", "")
        client["api_version"] = values.get("api_version", "")
        client["models"] = [{"name": model}]
    elif provider == "ollama":
        client["api_base"] = values.get("api_base", "")

    return {"model": f"{provider}:{model}", "clients": [client]}
