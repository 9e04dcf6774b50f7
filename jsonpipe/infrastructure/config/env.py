from typing import Any, Mapping, Optional
import os
import re

# ${NAME} only; ${{ ... }} placeholders never match
_ENV_VAR_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def extract_env_variable(value: Any, environ: Optional[Mapping[str, str]] = None) -> Any:
    """Replace ${NAME} references with environment values.

    Unset or empty variables leave the reference as written. Non-strings are
    returned unchanged.
    """

    if not isinstance(value, str) or not value:
        return value

    env = os.environ if environ is None else environ

    def replace(match: re.Match) -> str:
        return env.get(match.group(1)) or match.group(0)

    return _ENV_VAR_RE.sub(replace, value)


def resolve_config_deep(value: Any, environ: Optional[Mapping[str, str]] = None) -> Any:
    """Apply extract_env_variable to every string in a nested config value"""

    if isinstance(value, str):
        return extract_env_variable(value, environ)
    if isinstance(value, list):
        return [resolve_config_deep(item, environ) for item in value]
    if isinstance(value, Mapping):
        return {key: resolve_config_deep(item, environ) for key, item in value.items()}
    return value
