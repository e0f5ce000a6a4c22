"""Configuration loading for signalbuoy.

Brief:
  Reads a YAML document, expands `${VAR}` references from a `vars` mapping
  and the environment, and validates the result against SignalbuoyConfig.

Inputs:
  - YAML config paths or already-parsed mappings

Outputs:
  - SignalbuoyConfig instances
"""

from __future__ import annotations

import os
import re
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import ValidationError

from .config_model import SignalbuoyConfig

_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)\}")


def _is_var_key(key: str) -> bool:
    """Brief: True when `key` is ALL_UPPERCASE and matches [A-Z_][A-Z0-9_]*."""

    return bool(key) and bool(re.fullmatch(r"[A-Z_][A-Z0-9_]*", key))


def collect_variables(
    cfg: Mapping[str, Any], environ: Optional[Mapping[str, str]] = None
) -> Dict[str, str]:
    """Brief: Merge config `vars` with environment variables.

    Inputs:
      - cfg: Parsed YAML mapping; an optional `vars` mapping provides defaults.
      - environ: Environment mapping (defaults to os.environ).

    Outputs:
      - dict: Variable name -> string value. Environment overrides `vars`.

    Example:
      >>> collect_variables({"vars": {"LIB": "a"}}, environ={"LIB": "b"})["LIB"]
      'b'
    """

    base = cfg.get("vars")
    if base is None:
        merged: Dict[str, str] = {}
    elif isinstance(base, dict):
        merged = {}
        for k, v in base.items():
            if not isinstance(k, str) or not _is_var_key(k):
                raise ValueError(
                    "config.vars key %r must be ALL_UPPERCASE and match [A-Z_][A-Z0-9_]*" % (k,)
                )
            merged[k] = "" if v is None else str(v)
    else:
        raise ValueError("config.vars must be a mapping when present")

    env = os.environ if environ is None else environ
    for k, v in env.items():
        if isinstance(k, str) and _is_var_key(k):
            merged[k] = str(v)
    return merged


def expand_variables(obj: Any, variables: Mapping[str, str]) -> Any:
    """Brief: Replace `${VAR}` in every string value of a parsed document.

    Inputs:
      - obj: Parsed YAML value (dict/list/scalar).
      - variables: Variable name -> value.

    Outputs:
      - A new object with substitutions applied. Unknown variables are left
        untouched; keys are never substituted.
    """

    if isinstance(obj, str):
        return _VAR_PATTERN.sub(lambda m: variables.get(m.group(1), m.group(0)), obj)
    if isinstance(obj, list):
        return [expand_variables(item, variables) for item in obj]
    if isinstance(obj, dict):
        return {k: expand_variables(v, variables) for k, v in obj.items()}
    return obj


def parse_config(
    cfg: Optional[Mapping[str, Any]],
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> SignalbuoyConfig:
    """Brief: Validate a parsed mapping into SignalbuoyConfig.

    Inputs:
      - cfg: Parsed configuration mapping (or None for all defaults).
      - environ: Optional environment mapping used for `${VAR}` expansion.

    Outputs:
      - SignalbuoyConfig.

    Raises:
      - ValueError: When the mapping fails validation.
    """

    if cfg is None:
        cfg = {}
    if not isinstance(cfg, Mapping):
        raise ValueError("Configuration root must be a mapping")
    data = dict(cfg)

    variables = collect_variables(data, environ)
    data.pop("vars", None)
    data = expand_variables(data, variables)

    try:
        return SignalbuoyConfig(**data)
    except ValidationError as exc:
        raise ValueError("Invalid signalbuoy configuration: %s" % exc) from exc


def parse_config_file(
    config_path: str,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> SignalbuoyConfig:
    """Brief: Read and validate a YAML configuration file.

    Inputs:
      - config_path: Path to the YAML configuration file.
      - environ: Optional environment mapping used for `${VAR}` expansion.

    Outputs:
      - SignalbuoyConfig.

    Raises:
      - ValueError: When the document is not a mapping or fails validation.
    """

    with open(config_path, "r") as f:
        cfg = yaml.safe_load(f) or {}

    if not isinstance(cfg, dict):
        raise ValueError("Configuration root must be a mapping")

    return parse_config(cfg, environ=environ)
