"""Configuration catalogue for botguard.

Synopsis:
Every supported key is a ``ConfigField`` declared in one of the
``config_schema_parts`` modules. The same field definitions coerce values in
two places: ``resolve_settings`` turns raw environment strings into the
``config-check`` report, and ``setting`` reads already-loaded app config for
the detection and rate-limit policies, so both agree on casts and floors.

Glossary:
- Field: One configuration key with its cast, default and floor.
- Section: Ordered group of fields shown together in the checklist.
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass
from typing import Any, Mapping

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}

_PART_ORDER = ("core", "database", "cache", "detection", "rate_limit")
_MASK = "********"


def _is_blank(raw: Any) -> bool:
    return raw is None or (isinstance(raw, str) and raw.strip() == "")


@dataclass(frozen=True)
class ConfigField:
    key: str
    cast: str
    default: Any
    description: str
    section: str
    required: bool = False
    required_in: tuple[str, ...] = ()
    secret: bool = False
    note: str | None = None
    options: tuple[str, ...] = ()
    min_value: int | None = None
    default_by_env: dict[str, Any] | None = None

    def default_for(self, env_name: str | None) -> Any:
        if env_name and self.default_by_env and env_name in self.default_by_env:
            return self.default_by_env[env_name]
        return self.default

    def is_required(self, env_name: str | None) -> bool:
        return self.required or (env_name in self.required_in)

    def coerce(self, raw: Any) -> Any:
        """Cast an env string or a typed config value; ``ValueError`` names the problem."""
        if self.cast == "int":
            if isinstance(raw, bool):
                raise ValueError("expected integer")
            try:
                value = int(raw.strip()) if isinstance(raw, str) else int(raw)
            except (TypeError, ValueError):
                raise ValueError("expected integer") from None
            if self.min_value is not None and value < self.min_value:
                raise ValueError(f"must be >= {self.min_value}")
            return value

        if self.cast == "bool":
            if isinstance(raw, bool):
                return raw
            lowered = str(raw).strip().lower()
            if lowered in _TRUE_VALUES:
                return True
            if lowered in _FALSE_VALUES:
                return False
            raise ValueError("expected boolean")

        value = str(raw).strip()
        if self.options and value not in self.options:
            raise ValueError(f"expected one of {', '.join(self.options)}")
        return value


@dataclass(frozen=True)
class ConfigSection:
    key: str
    title: str
    note: str | None
    fields: tuple[ConfigField, ...]


@dataclass(frozen=True)
class ResolvedField:
    field: ConfigField
    value: Any
    source: str
    present: bool
    required: bool


def _load_sections() -> tuple[ConfigSection, ...]:
    sections = []
    for name in _PART_ORDER:
        part = importlib.import_module(f"{__package__}.config_schema_parts.{name}")
        meta = part.SECTION
        sections.append(
            ConfigSection(
                key=meta["key"],
                title=meta["title"],
                note=meta.get("note"),
                fields=tuple(ConfigField(section=meta["key"], **options) for options in part.FIELDS),
            )
        )
    return tuple(sections)


CONFIG_SECTIONS: tuple[ConfigSection, ...] = _load_sections()
FIELDS_BY_KEY: dict[str, ConfigField] = {
    field.key: field for section in CONFIG_SECTIONS for field in section.fields
}


def setting(config: Mapping[str, Any], key: str, env_name: str | None = None) -> Any:
    """Read ``key`` through its field; blank or invalid values yield the default."""
    field = FIELDS_BY_KEY[key]
    raw = config.get(key)
    if _is_blank(raw):
        return field.default_for(env_name)
    try:
        return field.coerce(raw)
    except ValueError:
        return field.default_for(env_name)


def resolve_settings(
    env: Mapping[str, str], env_name: str
) -> tuple[dict[str, Any], dict[str, ResolvedField], list[str]]:
    """Resolve every field against raw environment strings.

    Returns the typed values, per-field resolution details, and the warnings
    ``config-check`` prints.
    """
    values: dict[str, Any] = {}
    resolved: dict[str, ResolvedField] = {}
    warnings: list[str] = []

    for field in FIELDS_BY_KEY.values():
        raw = env.get(field.key)
        default = field.default_for(env_name)
        required = field.is_required(env_name)

        if _is_blank(raw):
            value, source = default, "default"
            if required:
                warnings.append(f"{field.key} is required but missing.")
        else:
            source = "env"
            try:
                value = field.coerce(raw)
            except ValueError as exc:
                value = default
                warnings.append(f"{field.key} {exc}; falling back to {default!r}.")

        present = not _is_blank(raw) if required else value not in (None, "")
        values[field.key] = value
        resolved[field.key] = ResolvedField(
            field=field,
            value=value,
            source=source,
            present=present,
            required=required,
        )

    return values, resolved, warnings


def build_checklist_sections(env: Mapping[str, str], env_name: str) -> list[dict[str, Any]]:
    _, resolved, _ = resolve_settings(env, env_name)
    sections = []
    for section in CONFIG_SECTIONS:
        rows = []
        for field in section.fields:
            entry = resolved[field.key]
            rows.append(
                {
                    "key": field.key,
                    "value": _MASK if field.secret and entry.value else entry.value,
                    "present": entry.present,
                    "required": entry.required,
                    "description": field.description,
                    "note": field.note,
                    "source": entry.source,
                }
            )
        sections.append({"title": section.title, "note": section.note, "rows": rows})
    return sections
