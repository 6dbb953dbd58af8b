"""Load the agentgate configuration file.

The file is optional JSON (``agentgate.json`` in the workspace by default).
A missing file means built-in defaults. A broken policy never falls back to
the built-in allow rules: at startup it yields an empty rule set that denies
everything, and on reload the previous rules stay in force.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from agentgate.approval import APPROVAL_MODES
from agentgate.collaborators import DEFAULT_COMMIT_MODEL
from agentgate.core import PolicyAction
from agentgate.errors import ConfigError
from agentgate.paths import PACKAGE_ROOT, config_path_default
from agentgate.policy import PolicyEngine, default_policy, policy_from_config
from agentgate.sandbox import (
    BACKEND_NAMES,
    DEFAULT_MAX_OUTPUT_CHARS,
    DEFAULT_PROFILE,
    DEFAULT_TIMEOUT,
    PROFILE_NAMES,
    normalize_profile_name,
)

logger = logging.getLogger(__name__)


@dataclass
class GateConfig:
    """Resolved configuration for one session."""

    workspace: Path
    path: Path | None = None
    """Config file the settings came from, if any."""

    policy: PolicyEngine = field(default_factory=default_policy)
    policy_error: str | None = None
    """Set when the policy failed to load and the session runs fail-closed."""

    sandbox_profile: str = DEFAULT_PROFILE
    sandbox_backend: str = "auto"
    timeout: float = DEFAULT_TIMEOUT
    max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS
    max_results: int = 20
    approval_mode: str = "interactive"
    auto_commit: bool = True
    commit_model: str = DEFAULT_COMMIT_MODEL
    source_roots: list[Path] = field(default_factory=lambda: [PACKAGE_ROOT])
    config_files: list[Path] = field(default_factory=list)


def _load_json(path: Path) -> dict[str, Any] | None:
    """Read a JSON object. Missing file gives {}, invalid JSON gives None."""
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Invalid agentgate config path=%s error=%s", path, exc)
        return None
    if not isinstance(payload, dict):
        logger.warning("Invalid agentgate config path=%s error=top level is not an object", path)
        return None
    return payload


def _section(payload: dict[str, Any], name: str) -> dict[str, Any]:
    value = payload.get(name, {})
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be an object")
    return value


def _resolve_paths(values: Any, workspace: Path, key: str) -> list[Path]:
    if isinstance(values, str):
        values = [values]
    if not isinstance(values, list):
        raise ConfigError(f"'{key}' must be a list of paths")
    paths = []
    for value in values:
        path = Path(str(value)).expanduser()
        if not path.is_absolute():
            path = workspace / path
        paths.append(path.resolve())
    return paths


def parse_policy(payload: dict[str, Any] | None) -> PolicyEngine:
    """Build the policy engine from a whole config payload.

    Raises:
        ConfigError: If the payload or its policy section is malformed.
    """
    if payload is None:
        raise ConfigError("configuration file is not valid JSON")
    if "policy" not in payload:
        return default_policy()
    return policy_from_config(payload["policy"])


def load_policy(path: Path) -> PolicyEngine:
    """Re-read only the policy from a config file. Used by reload.

    Raises:
        ConfigError: If the file or its policy section is malformed.
    """
    return parse_policy(_load_json(path))


def load_config(path: Path | str | None = None, workspace: Path | str | None = None) -> GateConfig:
    """Load the configuration for a workspace.

    Raises:
        ConfigError: If a non-policy section is malformed.
    """
    workspace = Path(workspace or Path.cwd()).resolve()
    explicit = path is not None
    config_path = Path(path).expanduser().resolve() if explicit else config_path_default(workspace)
    if explicit and not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    payload = _load_json(config_path)
    config = GateConfig(workspace=workspace, path=config_path, config_files=[config_path])

    try:
        config.policy = parse_policy(payload)
    except ConfigError as exc:
        logger.warning("policy load failed path=%s error=%s; denying all commands", config_path, exc)
        config.policy = PolicyEngine(default=PolicyAction.DENY)
        config.policy_error = str(exc)

    if not payload:
        return config

    sandbox = _section(payload, "sandbox")
    profile = normalize_profile_name(str(sandbox.get("profile", config.sandbox_profile)))
    if profile not in PROFILE_NAMES:
        raise ConfigError(f"Unknown sandbox profile '{profile}'. Available: {', '.join(PROFILE_NAMES)}")
    backend = str(sandbox.get("backend", config.sandbox_backend))
    if backend not in BACKEND_NAMES:
        raise ConfigError(f"Unknown sandbox backend '{backend}'. Available: {', '.join(BACKEND_NAMES)}")
    config.sandbox_profile = profile
    config.sandbox_backend = backend

    execution = _section(payload, "execution")
    try:
        config.timeout = float(execution.get("timeout", config.timeout))
        config.max_output_chars = int(execution.get("max_output_chars", config.max_output_chars))
        config.max_results = int(execution.get("max_results", config.max_results))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid execution settings: {exc}") from exc
    if config.timeout <= 0:
        raise ConfigError("'execution.timeout' must be positive")

    approval = _section(payload, "approval")
    mode = str(approval.get("mode", config.approval_mode))
    if mode not in APPROVAL_MODES:
        raise ConfigError(f"Unknown approval mode '{mode}'. Available: {', '.join(APPROVAL_MODES)}")
    config.approval_mode = mode

    commit = _section(payload, "commit")
    config.auto_commit = bool(commit.get("enabled", config.auto_commit))
    config.commit_model = str(commit.get("model", config.commit_model))

    own = _section(payload, "self")
    if "source_roots" in own:
        config.source_roots = _resolve_paths(own["source_roots"], workspace, "self.source_roots")
    if "config_files" in own:
        config.config_files = _resolve_paths(own["config_files"], workspace, "self.config_files")

    logger.debug(
        "config loaded path=%s profile=%s backend=%s approval=%s",
        config_path,
        config.sandbox_profile,
        config.sandbox_backend,
        config.approval_mode,
    )
    return config
