"""Environment-backed application configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from execguard.approvals.models import ApprovalPolicy
from execguard.execution.base import DEFAULT_MAX_OUTPUT_BYTES, DEFAULT_MAX_OUTPUT_LINES

DEFAULT_INSTRUCTIONS = " ".join(
    [
        "Prefer read-only commands to inspect the workspace before changing it.",
        "Propose file edits as apply_patch bodies rather than shell redirection.",
        (
            "If a command is denied, do not retry it verbatim; follow the"
            " reviewer's message instead."
        ),
    ]
)


def _to_bool(value: str | None, default: bool = False) -> bool:
    """Convert common env var truthy/falsy values into booleans."""
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _file_bool(value: object) -> bool:
    if isinstance(value, str):
        return _to_bool(value)
    return bool(value)


@dataclass(slots=True)
class AppConfig:
    """Runtime settings loaded from environment variables and config files.

    Only ``approval_policy``, ``ask_on_sandbox_failure`` and the writable
    roots steer the approval engine; the remaining fields are handed to the
    execution backend untouched.
    """

    model: str
    instructions: str
    approval_policy: ApprovalPolicy
    ask_on_sandbox_failure: bool
    max_output_bytes: int
    max_output_lines: int
    working_directory: str | None
    writable_roots: list[str] = field(default_factory=list)

    @classmethod
    def from_env(cls) -> AppConfig:
        file_config = _load_preferred_file_config()
        shell_from_file = file_config.get("shell")
        shell_config = shell_from_file if isinstance(shell_from_file, dict) else {}

        return cls(
            model=(
                os.getenv("EXECGUARD_MODEL")
                or _to_optional_string(file_config.get("model"))
                or "gpt-5.2-codex"
            ),
            instructions=(
                os.getenv("EXECGUARD_INSTRUCTIONS")
                or _to_optional_string(file_config.get("instructions"))
                or DEFAULT_INSTRUCTIONS
            ),
            approval_policy=_resolve_policy(
                os.getenv("EXECGUARD_APPROVAL_POLICY")
                or _to_optional_string(file_config.get("approval_policy"))
            ),
            ask_on_sandbox_failure=_to_bool(
                os.getenv("EXECGUARD_ASK_ON_SANDBOX_FAILURE"),
                default=_file_bool(file_config.get("ask_on_sandbox_failure")),
            ),
            max_output_bytes=_to_positive_int(
                os.getenv("EXECGUARD_MAX_OUTPUT_BYTES") or shell_config.get("max_bytes"),
                default=DEFAULT_MAX_OUTPUT_BYTES,
            ),
            max_output_lines=_to_positive_int(
                os.getenv("EXECGUARD_MAX_OUTPUT_LINES") or shell_config.get("max_lines"),
                default=DEFAULT_MAX_OUTPUT_LINES,
            ),
            working_directory=(
                os.getenv("EXECGUARD_CWD")
                or _to_optional_string(file_config.get("cwd"))
            ),
            writable_roots=_resolve_writable_roots(
                os.getenv("EXECGUARD_WRITABLE_ROOTS"),
                file_config.get("writable_roots"),
            ),
        )


def _to_optional_string(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _load_file_config(path_value: str) -> dict[str, object]:
    path = Path(path_value)
    if not path.exists() or not path.is_file():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            parsed = json.load(fh)
    except (OSError, json.JSONDecodeError):
        return {}
    if isinstance(parsed, dict):
        return parsed
    return {}


def _load_preferred_file_config() -> dict[str, object]:
    explicit_path = os.getenv("EXECGUARD_CONFIG_FILE")
    if explicit_path:
        return _load_file_config(explicit_path)

    shared_config = _load_file_config("execguard.config.json")
    local_override = _load_file_config("execguard.config.local.json")
    return _merge_dicts(shared_config, local_override)


def _merge_dicts(base: dict[str, object], override: dict[str, object]) -> dict[str, object]:
    merged: dict[str, object] = dict(base)
    for key, value in override.items():
        base_value = merged.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            merged[key] = _merge_dicts(base_value, value)
        else:
            merged[key] = value
    return merged


def policy_value(value: str) -> ApprovalPolicy:
    normalized = value.strip().lower().replace("_", "-")
    aliases: dict[str, ApprovalPolicy] = {
        "suggest": "suggest",
        "conservative": "suggest",
        "auto-edit": "auto-edit",
        "autoedit": "auto-edit",
        "permissive": "auto-edit",
        "full-auto": "full-auto",
        "fullauto": "full-auto",
        "auto": "full-auto",
    }
    return aliases.get(normalized, "suggest")


def _resolve_policy(value: str | None) -> ApprovalPolicy:
    if value is None:
        return "suggest"
    return policy_value(value)


def _resolve_writable_roots(env_value: str | None, file_value: object) -> list[str]:
    if env_value:
        return [root for root in env_value.split(os.pathsep) if root.strip()]
    if isinstance(file_value, list):
        return [root.strip() for root in file_value if isinstance(root, str) and root.strip()]
    return []


def _to_positive_int(value: object, *, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value if value > 0 else default
    if isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            return default
        return parsed if parsed > 0 else default
    return default
