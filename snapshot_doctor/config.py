"""Run configuration: thresholds, jitter parameters, canonical hours, slot schema and sheet layout.

Configuration is plain JSON. Every section is optional; missing keys fall back
to the defaults below, unknown keys are rejected so typos do not silently
change a run.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from snapshot_doctor.errors import ConfigError
from snapshot_doctor.models import SlotSchema, SlotSpec

SUPPORTED_CONFIG_SUFFIXES = {".json", ".yml", ".yaml"}
DEFAULT_CONFIG_NAME = "snapshot-doctor.json"
DEFAULT_HOURS = (0, 8, 16)


@dataclass
class LayoutConfig:
    name_column: int = 2
    first_row: int = 5
    last_row: int = 368
    first_value_column: int = 4
    strict_row_count: bool = False
    observation_cell: str = "A2"
    observation_template: str = "本期观测：{current} 上期观测：{previous}"

    @property
    def expected_rows(self) -> int:
        return self.last_row - self.first_row + 1


@dataclass
class SchemaConfig:
    slots: list[dict[str, str]] = field(
        default_factory=lambda: [
            {"band": "change", "axis": "X"},
            {"band": "change", "axis": "Y"},
            {"band": "change", "axis": "Z"},
            {"band": "cumulative", "axis": "X"},
            {"band": "cumulative", "axis": "Y"},
            {"band": "cumulative", "axis": "Z"},
        ]
    )
    band_defaults: dict[str, float] = field(
        default_factory=lambda: {"change": 0.0, "cumulative": 0.0, "daily": 0.0}
    )

    def build(self) -> SlotSchema:
        return SlotSchema(
            slots=tuple(SlotSpec(band=item["band"], axis=item["axis"]) for item in self.slots),
            band_defaults=dict(self.band_defaults),
        )


@dataclass
class ImputationConfig:
    batch_size: int = 50
    time_factor_weight: float = 0.0
    adjacent_point_order: str = "name"


@dataclass
class SupplementConfig:
    adjustment_range: float = 0.05
    minimum_adjustment: float = 0.001
    maintain_correlation: bool = True
    correlation_weight: float = 0.7
    random_seed: int = 42


@dataclass
class CorrectionConfig:
    cumulative_adjustment_threshold: float = 1.0
    column_validation_tolerance: float = 0.01
    blend_trigger_multiplier: float = 2.0
    blend_factor: float = 0.5


@dataclass
class CompareConfig:
    tolerance: float = 0.01
    max_differences: int = -1


@dataclass
class QualityConfig:
    large_value_threshold: float = 4.0


@dataclass
class DataCorrectionConfig:
    lookback_periods: int = 5
    change_range: float = 0.5
    random_seed: int = 42


@dataclass
class AppConfig:
    hours: list[int] = field(default_factory=lambda: list(DEFAULT_HOURS))
    layout: LayoutConfig = field(default_factory=LayoutConfig)
    schema: SchemaConfig = field(default_factory=SchemaConfig)
    imputation: ImputationConfig = field(default_factory=ImputationConfig)
    supplement: SupplementConfig = field(default_factory=SupplementConfig)
    correction: CorrectionConfig = field(default_factory=CorrectionConfig)
    compare: CompareConfig = field(default_factory=CompareConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    data_correction: DataCorrectionConfig = field(default_factory=DataCorrectionConfig)

    def slot_schema(self) -> SlotSchema:
        return self.schema.build()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


SECTION_TYPES = {
    "layout": LayoutConfig,
    "schema": SchemaConfig,
    "imputation": ImputationConfig,
    "supplement": SupplementConfig,
    "correction": CorrectionConfig,
    "compare": CompareConfig,
    "quality": QualityConfig,
    "data_correction": DataCorrectionConfig,
}


def _build_section(name: str, payload: Any):
    section_type = SECTION_TYPES[name]
    if not isinstance(payload, dict):
        raise ConfigError(f"Config section '{name}' must be a JSON object.")
    known = {item.name for item in fields(section_type)}
    unknown = sorted(set(payload) - known)
    if unknown:
        raise ConfigError(f"Unknown keys in config section '{name}': {', '.join(unknown)}")
    return section_type(**payload)


def validate_config(config: AppConfig) -> AppConfig:
    hours = config.hours
    if not hours:
        raise ConfigError("Config 'hours' must list at least one observation hour.")
    if any(not isinstance(hour, int) or not 0 <= hour <= 23 for hour in hours):
        raise ConfigError(f"Observation hours must be integers in 0-23, got {hours}")
    if len(set(hours)) != len(hours):
        raise ConfigError(f"Observation hours must be unique, got {hours}")
    config.hours = sorted(hours)

    layout = config.layout
    if layout.first_row < 1 or layout.last_row < layout.first_row:
        raise ConfigError("Layout rows must satisfy 1 <= first_row <= last_row.")
    if layout.name_column < 1 or layout.first_value_column < 1:
        raise ConfigError("Layout columns are 1-based and must be positive.")

    slots = config.schema.slots
    if not slots:
        raise ConfigError("Schema must define at least one slot.")
    for item in slots:
        if set(item) != {"band", "axis"}:
            raise ConfigError(f"Schema slots need exactly 'band' and 'axis', got {item}")
    missing_defaults = sorted({item["band"] for item in slots} - set(config.schema.band_defaults))
    if missing_defaults:
        raise ConfigError(f"Schema bands without a default value: {', '.join(missing_defaults)}")

    if config.imputation.adjacent_point_order not in {"name", "position"}:
        raise ConfigError("imputation.adjacent_point_order must be 'name' or 'position'.")
    if config.imputation.batch_size < 1:
        raise ConfigError("imputation.batch_size must be at least 1.")
    if not 0.0 <= config.supplement.correlation_weight <= 1.0:
        raise ConfigError("supplement.correlation_weight must be between 0 and 1.")
    if config.correction.cumulative_adjustment_threshold < 0 or config.correction.column_validation_tolerance < 0:
        raise ConfigError("Correction thresholds must not be negative.")
    if config.data_correction.lookback_periods < 1:
        raise ConfigError("data_correction.lookback_periods must be at least 1.")
    if config.data_correction.change_range < 0:
        raise ConfigError("data_correction.change_range must not be negative.")
    return config


def config_from_dict(payload: dict[str, Any]) -> AppConfig:
    if not isinstance(payload, dict):
        raise ConfigError("Config root must be a JSON object.")
    allowed = {"hours", *SECTION_TYPES}
    unknown = sorted(set(payload) - allowed)
    if unknown:
        raise ConfigError(f"Unknown config sections: {', '.join(unknown)}")
    kwargs: dict[str, Any] = {}
    if "hours" in payload:
        kwargs["hours"] = list(payload["hours"])
    for name in SECTION_TYPES:
        if name in payload:
            kwargs[name] = _build_section(name, payload[name])
    return validate_config(AppConfig(**kwargs))


def load_config(path: Path | str | None) -> AppConfig:
    if path is None:
        return validate_config(AppConfig())
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(f"Config not found: {config_path}", file_path=config_path)
    suffix = config_path.suffix.lower()
    if suffix not in SUPPORTED_CONFIG_SUFFIXES:
        raise ConfigError("Config must be .json, .yml, or .yaml", file_path=config_path)
    if suffix in {".yml", ".yaml"}:
        raise ConfigError("YAML configs are not supported yet. Use JSON for now.", file_path=config_path)
    try:
        payload = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Could not read config: {exc}", file_path=config_path) from exc
    return config_from_dict(payload)


def starter_config() -> str:
    return json.dumps(AppConfig().to_dict(), indent=2, ensure_ascii=False) + "\n"
