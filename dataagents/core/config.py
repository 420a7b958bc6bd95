#!/usr/bin/env python3
"""
config.py
-------------------
Engine settings loaded from a YAML file.

The settings file (paths.CONFIG_PATH, overridable with DATAAGENTS_CONFIG)
is optional; missing sections fall back to defaults.

Example settings.yaml:

    timezone: Europe/Paris
    consolidation:
      order_sensitive_lists: false
    store:
      timeout_seconds: 30
    auto_apply:
      enabled: true
      min_confidence: 0.7
      max_proposals_per_run: 100
      enable_edition_block: true
      enable_organizer_block: true
      enable_races_block: false
      dry_run: false
      allowed_agent_ids: [ffa-scraper]
      frequency:
        type: interval
        interval_minutes: 60
        jitter_minutes: 15

Usage:
    from dataagents.core.config import load_settings

    settings = load_settings()
    print(settings.auto_apply.min_confidence)
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# --- Third party imports ---
import yaml

# --- Local imports ---
from dataagents.core.exceptions import ValidationError
from dataagents.core.paths import CONFIG_PATH
from dataagents.scheduler.frequency import (
    DEFAULT_TIMEZONE,
    FrequencyConfig,
    IntervalFrequency,
    ensure_valid,
    frequency_from_dict,
)


@dataclass
class ConsolidationSettings:
    """
    Attributes:
        order_sensitive_lists: Compare record lists (e.g. races) in order
            instead of as multisets
    """

    order_sensitive_lists: bool = False


@dataclass
class StoreSettings:
    """
    Attributes:
        timeout_seconds: Upper bound for one entity store call
    """

    timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ValidationError(
                f"store.timeout_seconds must be > 0, got {self.timeout_seconds}"
            )


@dataclass
class AutoApplySettings:
    """
    Settings of the unattended apply loop.

    Attributes:
        enabled: Start the scheduler at all
        agent_id: Id under which run statistics are stored
        min_confidence: Minimum group confidence to auto-apply
        max_proposals_per_run: Cap on open proposals analyzed per cycle
        enable_edition_block: Auto-approve edition blocks
        enable_organizer_block: Auto-approve organizer blocks
        enable_races_block: Auto-approve races blocks
        dry_run: Report what would be applied without writing
        allowed_agent_ids: Only auto-apply proposals from these agents (empty = all)
        frequency: Run frequency
    """

    enabled: bool = True
    agent_id: str = "auto-apply"
    min_confidence: float = 0.7
    max_proposals_per_run: int = 100
    enable_edition_block: bool = True
    enable_organizer_block: bool = True
    enable_races_block: bool = True
    dry_run: bool = False
    allowed_agent_ids: List[str] = field(default_factory=list)
    frequency: FrequencyConfig = field(
        default_factory=lambda: IntervalFrequency(interval_minutes=60, jitter_minutes=15)
    )

    def __post_init__(self) -> None:
        if not 0.0 <= self.min_confidence <= 1.0:
            raise ValidationError(
                f"auto_apply.min_confidence must be within [0, 1], got {self.min_confidence}"
            )
        if self.max_proposals_per_run <= 0:
            raise ValidationError(
                f"auto_apply.max_proposals_per_run must be > 0, got {self.max_proposals_per_run}"
            )
        ensure_valid(self.frequency)


@dataclass
class EngineSettings:
    """All engine settings."""

    timezone: str = DEFAULT_TIMEZONE
    consolidation: ConsolidationSettings = field(default_factory=ConsolidationSettings)
    store: StoreSettings = field(default_factory=StoreSettings)
    auto_apply: AutoApplySettings = field(default_factory=AutoApplySettings)

    def __post_init__(self) -> None:
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValidationError(f"Unknown timezone: {self.timezone}") from e


def _section(data: Mapping[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, Mapping):
        raise ValidationError(f"Settings section '{name}' must be a mapping")
    return dict(value)


def _build(cls: type, values: Dict[str, Any], section: str) -> Any:
    known = set(cls.__dataclass_fields__)
    unknown = sorted(set(values) - known)
    if unknown:
        raise ValidationError(f"Unknown settings in '{section}': {', '.join(unknown)}")
    return cls(**values)


def settings_from_dict(data: Optional[Mapping[str, Any]]) -> EngineSettings:
    """
    Build EngineSettings from a parsed YAML document.

    Raises:
        ValidationError: On unknown keys or invalid values
    """
    data = data or {}
    auto_apply = _section(data, "auto_apply")
    if "frequency" in auto_apply:
        auto_apply["frequency"] = frequency_from_dict(auto_apply["frequency"])

    return EngineSettings(
        timezone=data.get("timezone", DEFAULT_TIMEZONE),
        consolidation=_build(
            ConsolidationSettings, _section(data, "consolidation"), "consolidation"
        ),
        store=_build(StoreSettings, _section(data, "store"), "store"),
        auto_apply=_build(AutoApplySettings, auto_apply, "auto_apply"),
    )


def load_settings(path: Optional[Path] = None) -> EngineSettings:
    """
    Load settings from ``path`` (default: paths.CONFIG_PATH).

    A missing file yields the default settings.

    Raises:
        ValidationError: If the file is not valid YAML or holds invalid values
    """
    config_path = Path(path) if path is not None else CONFIG_PATH
    if not config_path.exists():
        return EngineSettings()

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid settings file {config_path}: {e}") from e

    if not isinstance(data, Mapping):
        raise ValidationError(f"Settings file {config_path} must contain a mapping")
    return settings_from_dict(data)
