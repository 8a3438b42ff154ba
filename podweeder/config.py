"""Weeder configuration: label selectors, loading, defaults and validation."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Any, Mapping

import yaml

DEFAULT_WATCH_DURATION = timedelta(minutes=5)

_OPERATORS = {"In": "in", "NotIn": "notin", "Exists": "exists", "DoesNotExist": "!"}
_NAME_RE = re.compile(r"^([A-Za-z0-9][-A-Za-z0-9_.]{0,61})?[A-Za-z0-9]$")
_PREFIX_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")

# Microseconds per unit.
_DURATION_UNITS = {
    "ns": Decimal("0.001"), "us": Decimal(1), "µs": Decimal(1), "μs": Decimal(1),
    "ms": Decimal(1000), "s": Decimal(10**6), "m": Decimal(6 * 10**7), "h": Decimal(36 * 10**8),
}
_COMPONENT = r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)"
_DURATION_RE = re.compile(rf"[+-]?(?:{_COMPONENT})+")
_COMPONENT_RE = re.compile(_COMPONENT)


class ConfigError(ValueError):
    """Raised when a configuration fails validation."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


@dataclass
class LabelSelectorRequirement:
    """A single match expression of a label selector."""

    key: str
    operator: str
    values: list[str] = field(default_factory=list)


@dataclass
class LabelSelector:
    """A label selector made of exact label matches and match expressions."""

    match_labels: dict[str, str] = field(default_factory=dict)
    match_expressions: list[LabelSelectorRequirement] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> LabelSelector:
        """Build a selector from its mapping form (matchLabels, matchExpressions)."""
        data = data or {}
        return cls(
            match_labels={str(k): str(v) for k, v in (data.get("matchLabels") or {}).items()},
            match_expressions=[
                LabelSelectorRequirement(
                    key=str(raw.get("key", "")),
                    operator=str(raw.get("operator", "")),
                    values=[str(v) for v in raw.get("values") or []],
                )
                for raw in data.get("matchExpressions") or []
            ],
        )

    def _requirements(self) -> list[tuple[str, str, tuple[str, ...]]]:
        reqs = [_requirement(k, "=", [v]) for k, v in self.match_labels.items()]
        for expr in self.match_expressions:
            op = _OPERATORS.get(expr.operator)
            if op is None:
                raise ValueError(f'"{expr.operator}" is not a valid label selector operator')
            reqs.append(_requirement(expr.key, op, expr.values))
        return sorted(reqs, key=lambda req: req[0])

    def to_selector_string(self) -> str:
        """Render the selector in label-selector query syntax; raise ValueError if invalid."""
        rendered = {
            "=": lambda k, v: f"{k}={v[0]}",
            "in": lambda k, v: f"{k} in ({','.join(v)})",
            "notin": lambda k, v: f"{k} notin ({','.join(v)})",
            "exists": lambda k, v: k,
            "!": lambda k, v: f"!{k}",
        }
        return ",".join(rendered[op](key, values) for key, op, values in self._requirements())

    def matches(self, labels: Mapping[str, str]) -> bool:
        """Return True if the given labels satisfy every requirement."""
        for key, op, values in self._requirements():
            if op in ("=", "in"):
                ok = key in labels and labels[key] in values
            elif op == "notin":
                ok = labels.get(key) not in values
            else:
                ok = (key in labels) == (op == "exists")
            if not ok:
                return False
        return True


def _requirement(key: str, op: str, values: list[str]) -> tuple[str, str, tuple[str, ...]]:
    prefix, sep, name = key.rpartition("/")
    if sep and (len(prefix) > 253 or not _PREFIX_RE.match(prefix)):
        raise ValueError(f"invalid label key {key!r}: prefix must be a DNS subdomain")
    if not _NAME_RE.match(name):
        raise ValueError(f"invalid label key {key!r}: name part must be a valid qualified name")
    if op in ("in", "notin") and not values:
        raise ValueError("for 'in', 'notin' operators, values set can't be empty")
    if op in ("exists", "!") and values:
        raise ValueError("values set must be empty for exists and does not exist")
    for value in values:
        if value and not _NAME_RE.match(value):
            raise ValueError(f"invalid label value {value!r}")
    return key, op, tuple(sorted(values))


@dataclass
class DependantSelectors:
    """Selectors of the pods that depend on one service."""

    pod_selectors: list[LabelSelector] = field(default_factory=list)


@dataclass
class Config:
    """Weeder configuration."""

    services_and_dependant_selectors: dict[str, DependantSelectors] = field(default_factory=dict)
    watch_duration: timedelta | None = None


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as '5m', '1h30m' or '500ms'."""
    if not isinstance(text, str):
        raise ValueError(f"duration must be a string, got {text!r}")
    if text.lstrip("+-") == "0" and len(text) <= 2:
        return timedelta(0)
    if not _DURATION_RE.fullmatch(text):
        raise ValueError(f"invalid duration {text!r}")
    total = sum(Decimal(n) * _DURATION_UNITS[u] for n, u in _COMPONENT_RE.findall(text))
    return timedelta(microseconds=int(-total if text.startswith("-") else total))


def load_config(filename: str) -> Config:
    """Read a YAML configuration file, fill in defaults and validate it."""
    with open(filename, encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    config = Config()
    if data.get("watchDuration") is not None:
        config.watch_duration = parse_duration(data["watchDuration"])
    for service, raw in (data.get("servicesAndDependantSelectors") or {}).items():
        config.services_and_dependant_selectors[str(service)] = DependantSelectors(
            [LabelSelector.from_dict(sel) for sel in (raw or {}).get("podSelectors") or []]
        )
    if config.watch_duration is None:
        config.watch_duration = DEFAULT_WATCH_DURATION

    errors: list[str] = []
    if not config.services_and_dependant_selectors:
        errors.append("serviceAndDependantSelectors must not be empty")
    for ds in config.services_and_dependant_selectors.values():
        if not ds.pod_selectors:
            errors.append("podSelectors must not be empty")
        for selector in ds.pod_selectors:
            try:
                selector.to_selector_string()
            except ValueError as exc:
                errors.append(str(exc))
    if errors:
        raise ConfigError(errors)
    return config