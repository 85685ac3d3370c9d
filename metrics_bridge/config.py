"""Configuration models using Pydantic for validation."""
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
import os

import yaml

from metrics_bridge.errors import ConfigError


class FrozenModel(BaseModel):
    """Base for config sections; configuration is immutable once loaded."""
    model_config = ConfigDict(frozen=True)


class UpstreamConfig(FrozenModel):
    """A remote endpoint serving Prometheus text exposition."""
    name: str
    url: str
    timeout_s: float = 5.0
    prefix: str = ""  # Prepended to every upstream metric name
    labels: Dict[str, str] = Field(default_factory=dict)  # Added to every sample

    @field_validator('timeout_s')
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError("timeout_s must be positive")
        return v


class MeminfoConfig(FrozenModel):
    """Memory statistics from /proc/meminfo."""
    enabled: bool = True
    path: str = "/proc/meminfo"


class CpuConfig(FrozenModel):
    """CPU statistics from /proc/stat."""
    enabled: bool = True
    path: str = "/proc/stat"
    ticks_per_second: int = 100  # USER_HZ


class LocalSourcesConfig(FrozenModel):
    """Local host counter sources."""
    meminfo: MeminfoConfig = Field(default_factory=MeminfoConfig)
    cpu: CpuConfig = Field(default_factory=CpuConfig)


class ExporterConfig(FrozenModel):
    """Scrape endpoint configuration."""
    port: int = 9102
    bind_address: str = "0.0.0.0"
    metrics_path: str = "/metrics"
    self_metrics: bool = True
    self_metrics_prefix: str = "bridge_"

    @field_validator('metrics_path')
    @classmethod
    def validate_metrics_path(cls, v):
        if not v.startswith("/"):
            raise ValueError("metrics_path must start with '/'")
        return v


class CollectionConfig(FrozenModel):
    """When and how collection cycles run."""
    mode: Literal["on_scrape", "interval"] = "on_scrape"
    interval_s: float = 15.0
    max_workers: int = 4


class RedpandaConfig(FrozenModel):
    """Settings of the bridged Redpanda cluster."""
    brokers: List[str] = Field(default_factory=list)
    topics: List[str] = Field(default_factory=list)
    consumer_group: Optional[str] = None


class GlobalConfig(FrozenModel):
    """Global configuration settings."""
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"


class Config(FrozenModel):
    """Root configuration model."""
    model_config = ConfigDict(populate_by_name=True)

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    exporter: ExporterConfig = Field(default_factory=ExporterConfig)
    collection: CollectionConfig = Field(default_factory=CollectionConfig)
    upstreams: List[UpstreamConfig] = Field(default_factory=list)
    local: LocalSourcesConfig = Field(default_factory=LocalSourcesConfig)
    redpanda: RedpandaConfig = Field(default_factory=RedpandaConfig)

    @field_validator('upstreams')
    @classmethod
    def validate_upstreams(cls, v):
        """Upstream names must be unique."""
        names = [u.name for u in v]
        if len(names) != len(set(names)):
            raise ValueError("Upstream names must be unique")
        return v

    @model_validator(mode='after')
    def validate_has_source(self):
        """At least one source must be enabled."""
        if not self.upstreams and not self.local.meminfo.enabled and not self.local.cpu.enabled:
            raise ValueError("At least one upstream or local source must be enabled")
        return self


def _section(raw_config: dict, key: str, expected: type, default):
    """Return a config section for in-place overrides, creating it when empty."""
    section = raw_config.get(key)
    if section is None:
        section = default
        raw_config[key] = section
    if not isinstance(section, expected):
        raise ConfigError(f"Configuration section '{key}' must be a {expected.__name__}")
    return section


def load_config(config_path: str) -> Config:
    """Load and validate configuration from YAML file."""
    if not os.path.exists(config_path):
        raise ConfigError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        try:
            raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}")

    if not isinstance(raw_config, dict):
        raise ConfigError(f"Configuration root must be a mapping: {config_path}")

    # Apply environment variable overrides
    if env_log_level := os.getenv('LOG_LEVEL'):
        _section(raw_config, 'global', dict, {})['log_level'] = env_log_level

    if env_port := os.getenv('BRIDGE_PORT'):
        _section(raw_config, 'exporter', dict, {})['port'] = env_port

    if env_url := os.getenv('BRIDGE_UPSTREAM_URL'):
        upstreams = _section(raw_config, 'upstreams', list, [])
        if not upstreams:
            upstreams.append({'name': 'upstream', 'url': env_url})
        elif isinstance(upstreams[0], dict):
            upstreams[0]['url'] = env_url
        else:
            raise ConfigError("Configuration entry 'upstreams[0]' must be a mapping")

    try:
        return Config.model_validate(raw_config)
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed: {e}")
