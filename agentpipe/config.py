"""Configuration for agentpipe stages and the llm-task invocation layer."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

load_dotenv()

# ============================================================================
# Defaults
# ============================================================================

DEFAULT_SCHEMA_VERSION = "v1"

# One retry beyond the first attempt when an output schema is supplied
DEFAULT_MAX_VALIDATION_RETRIES = 1

# Used in the cache key when router mode relies on the router's default model
ROUTER_DEFAULT_MODEL = "router-default"

DEFAULT_CACHE_DIRNAME = ".agentpipe-cache"

# ============================================================================
# Helpers
# ============================================================================

TRUE_VALUES = ("true", "1", "yes")
FALSE_VALUES = ("false", "0", "no")


def parse_flag(value: Any) -> bool:
    """Interpret CLI/env style boolean flags."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in FALSE_VALUES:
            return False
        if normalized in TRUE_VALUES:
            return True
    return bool(value)


def parse_optional_number(value: Any) -> Optional[float]:
    """Return a float for numeric-looking values, otherwise None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def _clean(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def get_state_dir(env: Mapping[str, str]) -> Path:
    """State directory: AGENTPIPE_STATE_DIR or ~/.agentpipe/state."""
    override = _clean(env.get("AGENTPIPE_STATE_DIR"))
    if override:
        return Path(override)
    return Path.home() / ".agentpipe" / "state"


def get_cache_dir(env: Mapping[str, str], cwd: Optional[Path] = None) -> Path:
    """Cache directory: AGENTPIPE_CACHE_DIR or ./.agentpipe-cache."""
    override = _clean(env.get("AGENTPIPE_CACHE_DIR"))
    if override:
        return Path(override)
    return (cwd or Path(os.getcwd())) / DEFAULT_CACHE_DIRNAME


# ============================================================================
# Invocation settings
# ============================================================================


@dataclass(frozen=True)
class InvokeSettings:
    """Resolved configuration for one llm-task invocation.

    Stage arguments take precedence over the environment bag carried by the
    execution context.
    """

    direct_url: str = ""
    direct_token: str = ""
    router_url: str = ""
    router_token: str = ""
    model: str = ""
    schema_version: str = DEFAULT_SCHEMA_VERSION
    max_validation_retries: Optional[int] = None
    force_refresh: bool = False
    disable_cache: bool = False
    state_key: Optional[str] = None

    @property
    def transport(self) -> str:
        """'direct' when a direct URL is set (takes precedence), else 'router'."""
        if self.direct_url:
            return "direct"
        if self.router_url:
            return "router"
        raise ConfigurationError(
            "llm_task.invoke requires either LLM_TASK_URL/--url (direct) or TOOL_ROUTER_URL (router)"
        )

    @property
    def token(self) -> str:
        return self.direct_token if self.transport == "direct" else self.router_token

    @classmethod
    def from_env(
        cls, env: Mapping[str, str], overrides: Optional[Mapping[str, Any]] = None
    ) -> "InvokeSettings":
        """
        Build settings from an env mapping plus stage-argument overrides.

        Args:
            env: Environment variables (usually ``ctx.env``)
            overrides: Stage arguments using the CLI spelling
                (``url``, ``token``, ``model``, ``schema-version``, ...)

        Returns:
            InvokeSettings
        """
        args = dict(overrides or {})

        direct_url = _clean(args.get("url") or env.get("LLM_TASK_URL"))
        router_url = _clean(env.get("TOOL_ROUTER_URL"))

        token_override = _clean(args.get("token"))
        direct_token = token_override or _clean(env.get("LLM_TASK_TOKEN"))
        router_token = token_override or _clean(env.get("TOOL_ROUTER_TOKEN"))

        schema_version = (
            _clean(args.get("schema-version"))
            or _clean(env.get("LLM_TASK_SCHEMA_VERSION"))
            or DEFAULT_SCHEMA_VERSION
        )

        raw_retries = args.get("max-validation-retries")
        if raw_retries is None:
            raw_retries = env.get("LLM_TASK_VALIDATION_RETRIES")
        retries = parse_optional_number(raw_retries)

        refresh = args.get("refresh")
        if refresh is None:
            refresh = env.get("LLM_TASK_FORCE_REFRESH")

        state_key = _clean(args.get("state-key") or env.get("AGENTPIPE_RUN_STATE_KEY"))

        return cls(
            direct_url=direct_url,
            direct_token=direct_token,
            router_url=router_url,
            router_token=router_token,
            model=_clean(args.get("model") or env.get("LLM_TASK_MODEL")),
            schema_version=schema_version,
            max_validation_retries=None if retries is None else max(0, int(retries)),
            force_refresh=parse_flag(refresh),
            disable_cache=parse_flag(args.get("disable-cache")),
            state_key=state_key or None,
        )
