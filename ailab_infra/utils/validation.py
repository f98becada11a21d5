"""
Preflight validation helpers.

Pure, minimal functions to validate required environment variables and
parameter-file values, and to format actionable error messages for users.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Sequence


class ConfigError(ValueError):
    """Raised when a parameter file violates one or more constraints."""

    def __init__(self, problems: List[str]) -> None:
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


_ISO_DURATION = re.compile(
    r"^P(?!$)(\d+Y)?(\d+M)?(\d+W)?(\d+D)?(T(?=\d)(\d+H)?(\d+M)?(\d+S)?)?$"
)


@dataclass(frozen=True)
class ParamSpec:
    """Declared constraints for one template parameter."""

    name: str
    kind: type = str
    required: bool = False
    default: Any = None
    allowed: Optional[Sequence[Any]] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    min_value: Optional[int] = None
    max_value: Optional[int] = None
    pattern: Optional[str] = None


def missing_env(env: Mapping[str, str], keys: List[str]) -> List[str]:
    """Return the list of keys missing in the provided environment mapping."""
    return [k for k in keys if not env.get(k)]


def format_missing_env_message(missing: List[str]) -> str:
    """Format a friendly, actionable message for missing env vars (bash)."""
    if not missing:
        return ""
    lines: List[str] = []
    lines.append("Preflight check failed: missing environment variables")
    lines.append("")
    lines.append("Missing:")
    for k in missing:
        lines.append(f"  - {k}")
    lines.append("")
    lines.append("How to set them in bash (current session):")
    for k in missing:
        lines.append(f'  export {k}="<value>"')
    lines.append("")
    lines.append("Then re-run: python -m labctl deploy <stack>")
    return "\n".join(lines)


def is_iso8601_duration(value: str) -> bool:
    return bool(_ISO_DURATION.match(value or ""))


_DAYS_PER_UNIT = {"Y": 365, "M": 30, "W": 7, "D": 1}


def iso8601_days(value: str) -> float:
    """Approximate length in days, counting a year as 365 days and a month as 30."""
    if not is_iso8601_duration(value):
        raise ValueError(f"Not an ISO 8601 duration: {value!r}")
    date_part, _, time_part = value[1:].partition("T")
    days = 0.0
    for amount, unit in re.findall(r"(\d+)([YMWD])", date_part):
        days += int(amount) * _DAYS_PER_UNIT[unit]
    for amount, unit in re.findall(r"(\d+)([HMS])", time_part):
        days += int(amount) / {"H": 24, "M": 1440, "S": 86400}[unit]
    return days


def _type_name(kind: type) -> str:
    return {str: "string", int: "int", bool: "bool", dict: "object", list: "array"}.get(
        kind, kind.__name__
    )


def check_parameter(spec: ParamSpec, value: Any) -> List[str]:
    """Return the constraint violations of a single (already defaulted) value."""
    if value is None:
        return [f"{spec.name}: required parameter missing"] if spec.required else []

    # bool is an int subclass; keep them apart
    if spec.kind is int and isinstance(value, bool) or not isinstance(value, spec.kind):
        return [f"{spec.name}: expected {_type_name(spec.kind)}, got {value!r}"]

    problems: List[str] = []
    if spec.allowed is not None and value not in spec.allowed:
        allowed = ", ".join(str(a) for a in spec.allowed)
        problems.append(f"{spec.name}: {value!r} is not one of [{allowed}]")
    if spec.min_length is not None and len(value) < spec.min_length:
        problems.append(f"{spec.name}: length {len(value)} is below {spec.min_length}")
    if spec.max_length is not None and len(value) > spec.max_length:
        problems.append(f"{spec.name}: length {len(value)} exceeds {spec.max_length}")
    if spec.min_value is not None and value < spec.min_value:
        problems.append(f"{spec.name}: {value} is below {spec.min_value}")
    if spec.max_value is not None and value > spec.max_value:
        problems.append(f"{spec.name}: {value} exceeds {spec.max_value}")
    if spec.pattern is not None and not re.fullmatch(spec.pattern, value):
        problems.append(f"{spec.name}: {value!r} does not match {spec.pattern}")
    return problems


def resolve_parameters(
    specs: Sequence[ParamSpec], values: Mapping[str, Any]
) -> dict:
    """Apply defaults and check every spec; raise ConfigError listing all problems."""
    known = {s.name for s in specs}
    problems: List[str] = [
        f"{name}: unknown parameter" for name in values if name not in known
    ]
    resolved: dict = {}
    for spec in specs:
        value = values.get(spec.name, spec.default)
        problems.extend(check_parameter(spec, value))
        resolved[spec.name] = value
    if problems:
        raise ConfigError(problems)
    return resolved
