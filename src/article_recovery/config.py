"""Configuration loader and per-role AG2 ``llm_config`` builder.

Settings live in a YAML file whose string values may reference the
environment as ``${VAR}`` or ``${VAR:-default}``. Each agent role
(reviewer, fixer, section writer) picks a model name; the model's
endpoint comes from ``models.overrides`` when present, else from the
shared ``azure`` block.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml
from dotenv import load_dotenv

from .models import ProjectConfig

load_dotenv()

# ---------------------------------------------------------------------------
# YAML loading
# ---------------------------------------------------------------------------

_PLACEHOLDER_RE = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<default>[^}]*))?\}")

# azure field -> environment variable consulted when the field is empty
AZURE_ENV_FALLBACKS = {
    "api_key": "AZURE_OPENAI_API_KEY",
    "api_version": "AZURE_OPENAI_API_VERSION",
    "endpoint": "AZURE_OPENAI_ENDPOINT",
}


def expand_env(node: Any) -> Any:
    """Substitute ``${VAR}`` / ``${VAR:-default}`` in every string of *node*.

    Unset variables without a default become the empty string so that the
    environment fallbacks below can fill them.
    """
    def substitute(match: re.Match[str]) -> str:
        return os.environ.get(match["name"], match["default"] or "")

    if isinstance(node, dict):
        return {key: expand_env(value) for key, value in node.items()}
    if isinstance(node, list):
        return [expand_env(item) for item in node]
    if isinstance(node, str):
        return _PLACEHOLDER_RE.sub(substitute, node)
    return node


def fill_credentials_from_env(config: ProjectConfig) -> ProjectConfig:
    """Populate blank ``azure`` fields from ``AZURE_OPENAI_*`` variables."""
    for field_name, env_name in AZURE_ENV_FALLBACKS.items():
        if not getattr(config.azure, field_name):
            setattr(config.azure, field_name, os.getenv(env_name, ""))
    config.azure.endpoint = config.azure.endpoint.rstrip("/")
    return config


def load_config(config_path: str | Path) -> ProjectConfig:
    """Read, interpolate and validate the YAML config at *config_path*."""
    path = Path(config_path)
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    return fill_credentials_from_env(ProjectConfig.model_validate(expand_env(raw)))


# ---------------------------------------------------------------------------
# Role -> model -> endpoint
# ---------------------------------------------------------------------------

# role name -> ModelConfig field holding its model
ROLE_MODEL_FIELDS = {
    "reviewer": "reviewer",
    "fixer": "fixer",
    "batch_fixer": "fixer",
    "writer": "writer",
    "section_writer": "writer",
}


def resolve_role_model(role: str, config: ProjectConfig) -> str:
    """Model name used for *role*; unknown roles and unset fields use ``models.default``."""
    field_name = ROLE_MODEL_FIELDS.get(role.lower())
    chosen = getattr(config.models, field_name) if field_name else None
    return chosen or config.models.default


def _is_azure_openai(url: str) -> bool:
    host = urlparse(url).hostname or ""
    return host.endswith(".openai.azure.com")


@dataclass(frozen=True)
class RoleEndpoint:
    """Where and how one role's model is reached."""

    model: str
    api_key: str
    url: str = ""
    api_version: str = ""
    api_type: str | None = None

    def to_config_entry(self) -> dict[str, Any]:
        entry: dict[str, Any] = {"model": self.model, "api_key": self.api_key}
        if self.api_type:
            entry.update(api_type=self.api_type, base_url=self.url)
        elif _is_azure_openai(self.url):
            # Deployments are named after the model they serve.
            entry.update(
                api_type="azure",
                azure_endpoint=self.url,
                api_version=self.api_version,
                azure_deployment=self.model,
            )
        elif self.url:
            entry["base_url"] = self.url
        return entry


def resolve_role_endpoint(role: str, config: ProjectConfig) -> RoleEndpoint:
    """Combine the role's model with its override (if any) and the shared credentials."""
    model = resolve_role_model(role, config)
    shared = config.azure
    override = config.models.overrides.get(model)
    if override is None:
        return RoleEndpoint(model=model, api_key=shared.api_key, url=shared.endpoint, api_version=shared.api_version)
    return RoleEndpoint(
        model=model,
        api_key=override.api_key or shared.api_key,
        url=override.endpoint.rstrip("/"),
        api_version=override.api_version or shared.api_version,
        api_type=override.api_type,
    )


def build_role_llm_config(role: str, config: ProjectConfig) -> dict[str, Any]:
    """AG2 ``llm_config`` for *role*: a one-entry ``config_list`` plus timeout and seed."""
    return {
        "config_list": [resolve_role_endpoint(role, config).to_config_entry()],
        "timeout": config.timeout,
        "seed": config.seed,
    }
