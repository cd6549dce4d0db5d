"""Configuration utilities for the benchmark pipeline.

This module provides utilities for parsing, layering and validating
configuration. Values are resolved from, lowest to highest precedence:
built-in defaults, a TOML file, ``BOLT_REPRO_*`` environment variables and
explicit overrides (command-line flags).
"""

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore

from bolt_repro.datatypes import BenchConfig, Workload
from bolt_repro.errors import ConfigError


DEFAULTS: Dict[str, Any] = {
    "workload": "clang",
    "root": ".",
    "cores": os.cpu_count() or 1,
    "trials": 3,
    "trial_jobs": 1,
    "use_ninja": True,
    "tee": False,
}

ENV_VARS: Dict[str, str] = {
    "workload": "BOLT_REPRO_WORKLOAD",
    "root": "BOLT_REPRO_ROOT",
    "cores": "BOLT_REPRO_CORES",
    "trials": "BOLT_REPRO_TRIALS",
    "trial_jobs": "BOLT_REPRO_TRIAL_JOBS",
    "use_ninja": "BOLT_REPRO_USE_NINJA",
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _as_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"'{name}' must be a boolean, got {value!r}")


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"'{name}' must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"'{name}' must be an integer, got {value!r}") from None


def parse_config(args: Mapping[str, Any]) -> BenchConfig:
    """Parse a flat mapping of settings into a BenchConfig.

    Args:
        args: Dictionary of settings keyed by BenchConfig field name.

    Returns:
        Validated BenchConfig instance.

    Raises:
        ConfigError: If required parameters are missing or invalid.
    """
    required = ["workload", "root", "cores", "trials"]
    for param in required:
        if param not in args or args[param] is None:
            raise ConfigError(f"Required parameter '{param}' is missing")

    unknown = set(args) - set(DEFAULTS)
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {sorted(unknown)}")

    try:
        workload = Workload(str(args["workload"]).lower())
    except ValueError:
        choices = ", ".join(w.value for w in Workload)
        raise ConfigError(f"Unknown workload '{args['workload']}' (choose from {choices})") from None

    cores = _as_int(args["cores"], "cores")
    trials = _as_int(args["trials"], "trials")
    trial_jobs = _as_int(args.get("trial_jobs", 1), "trial_jobs")

    # Validate numeric ranges
    if cores < 1:
        raise ConfigError("Number of build cores must be at least 1")
    # Comparisons need a sample standard deviation.
    if trials < 2:
        raise ConfigError("Number of trials must be at least 2")
    if trial_jobs < 1:
        raise ConfigError("Trial concurrency must be at least 1")

    return BenchConfig(
        workload=workload,
        root=Path(args["root"]).expanduser().resolve(),
        cores=cores,
        trials=trials,
        trial_jobs=trial_jobs,
        use_ninja=_as_bool(args.get("use_ninja", True), "use_ninja"),
        tee=_as_bool(args.get("tee", False), "tee"),
    )


def load_config_file(config_path: Path) -> Dict[str, Any]:
    """Load settings from the ``[bench]`` table of a TOML file."""
    data = tomllib.loads(Path(config_path).read_text(encoding="utf-8"))
    section = data.get("bench", {})
    if not isinstance(section, dict):
        raise ConfigError(f"'[bench]' in {config_path} must be a table")
    return dict(section)


def env_overrides(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Collect settings from ``BOLT_REPRO_*`` environment variables."""
    environ = os.environ if environ is None else environ
    return {key: environ[var] for key, var in ENV_VARS.items() if environ.get(var)}


def resolve_config(
    config_file: Optional[Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> BenchConfig:
    """Layer defaults, TOML file, environment and overrides into a BenchConfig.

    ``None`` values in ``overrides`` mean "not given" and are ignored.
    """
    merged: Dict[str, Any] = dict(DEFAULTS)
    if config_file is not None:
        merged.update(load_config_file(config_file))
    merged.update(env_overrides(environ))
    if overrides:
        merged.update({k: v for k, v in overrides.items() if v is not None})
    return parse_config(merged)


def default_config(root: Path = Path(".")) -> BenchConfig:
    """Create a default configuration rooted at ``root``.

    Returns:
        Default BenchConfig instance.
    """
    settings = dict(DEFAULTS)
    settings["root"] = root
    return parse_config(settings)
