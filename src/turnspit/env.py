import os
from collections.abc import Iterable


def _parse_env_file(env_path: str) -> dict[str, str]:
    """Parse a simple .env file into a dict without modifying os.environ.

    Supports basic KEY=VALUE pairs, ignoring comments and blank lines.
    Surrounding single/double quotes are stripped if present.
    """
    values: dict[str, str] = {}
    try:
        with open(env_path) as f:
            for raw_line in f:
                line = raw_line.strip()
                if not line or line.startswith("#"):
                    continue
                if "=" not in line:
                    continue
                name, val = line.split("=", 1)
                name = name.strip()
                val = val.strip().strip('"').strip("'")
                if name:
                    values[name] = val
    except FileNotFoundError:
        # a missing file just contributes nothing
        pass
    return values


def load_keys_from_env(
    names: Iterable[str] | None = None,
    prefix: str | None = None,
    env_path: str | None = None,
) -> list[str]:
    """Collect raw API key strings from environment variables.

    - If 'names' is provided, each listed variable that is set contributes its value.
    - If 'prefix' is provided, every variable whose name starts with the prefix
        contributes its value, in sorted variable-name order.
    - If both are provided, results are combined (names first).
    - If 'env_path' is provided, variables from the .env file augment the lookup
        without mutating the process environment. The real environment wins.

    Values are returned verbatim; a single value may hold several keys separated
    by commas or newlines, which KeyPool parsing splits later.
    """
    file_env = _parse_env_file(env_path) if env_path else {}
    env_map: dict[str, str] = {**file_env, **os.environ}

    results: list[str] = []
    if names:
        for var in names:
            raw = env_map.get(var)
            if raw:
                results.append(raw)

    if prefix:
        for var in sorted(env_map):
            if var.startswith(prefix) and env_map[var] and var not in (names or ()):
                results.append(env_map[var])

    return results
