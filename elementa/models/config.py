"""Configuration management for the feed syndication pipeline."""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator

from elementa.models.data_models import FilterOperator


class DestinationConfig(BaseModel):
    """Partner storefront reached through the WooCommerce REST API."""
    url: str = Field(description="Storefront base URL")
    consumer_key: str = Field(default="", description="REST API consumer key")
    consumer_secret: str = Field(default="", description="REST API consumer secret")

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate URL format."""
        if not v.startswith(('http://', 'https://')):
            raise ValueError(f"URL must start with http:// or https://, got: {v}")
        return v.rstrip('/')


class FeedSource(BaseModel):
    """Delimited product feed file."""
    path: str = Field(description="Path to the feed file")
    delimiter: str = Field(default=",", description="Field delimiter")
    enclosure: str = Field(default='"', description="Field enclosure character")


class FilterRule(BaseModel):
    """Single inclusion rule evaluated by the filter service."""
    field: str
    operator: FilterOperator
    value: Optional[Any] = None


class CategoryMapping(BaseModel):
    """Wizard style category mapping entry."""
    source: str
    dest: Optional[Union[int, str]] = None


class ConnectionConfig(BaseModel):
    """Pairing of one feed and one destination with its mapping rules."""
    id: int
    feed_id: int
    name: str = ""
    destination: DestinationConfig
    feed: Optional[FeedSource] = None
    field_mappings: Dict[str, str] = Field(
        default_factory=dict, description="destination field -> source field"
    )
    category_mappings: Union[List[CategoryMapping], Dict[str, Any]] = Field(default_factory=dict)
    filtering_rules: List[FilterRule] = Field(default_factory=list)
    category_source_field: Optional[str] = None
    category_delimiter: Optional[str] = None
    schedule: Optional[str] = None
    is_active: bool = True

    @property
    def category_map(self) -> Dict[str, int]:
        """Source category token -> destination category id, empty targets dropped."""
        if isinstance(self.category_mappings, dict):
            pairs = self.category_mappings.items()
        else:
            pairs = ((m.source, m.dest) for m in self.category_mappings)

        result: Dict[str, int] = {}
        for source, dest in pairs:
            if dest is None or str(dest).strip() == "":
                continue
            try:
                result[source] = int(dest)
            except (TypeError, ValueError):
                continue
        return result


class SyndicationConfig(BaseModel):
    """Main pipeline configuration."""

    # Chunking
    chunk_size: int = Field(default=100, description="Default records per chunk")
    max_concurrent_imports_per_destination: int = Field(
        default=3, description="Concurrent syndication calls per destination"
    )

    # Adaptive throttle
    default_batch_size: int = Field(default=25, description="Initial adaptive batch size")
    min_batch_size: int = Field(default=5, description="Floor for batch size degradation")
    max_reset_batch_size: int = Field(default=50, description="Cap for operator batch size reset")
    initial_recovery_time: float = Field(default=60.0, description="First recovery wait in seconds")
    recovery_multiplier: float = Field(default=1.5, description="Recovery wait escalation factor")
    max_recovery_time: float = Field(default=300.0, description="Recovery wait cap in seconds")
    recovery_window: float = Field(default=60.0, description="TTL of the recovering flag")
    state_ttl: float = Field(default=86400.0, description="TTL of persisted throttle state")
    admission_limit: int = Field(default=120, description="Requests admitted per window")
    admission_window: float = Field(default=60.0, description="Admission window in seconds")

    # Timeouts
    connect_timeout: float = Field(default=30.0, description="HTTP connect timeout in seconds")
    read_timeout: float = Field(default=180.0, description="HTTP read timeout in seconds")
    import_timeout: float = Field(default=1800.0, description="Maximum import run duration")

    # Cleanup
    cleanup_batch_size: int = Field(default=50, description="Default products per delete batch")
    cleanup_max_batch_size: int = Field(default=100, description="Maximum products per delete batch")
    cleanup_max_batch_failures: int = Field(
        default=3, description="Consecutive failed batches before a run fails"
    )
    cleanup_retention_days: int = Field(default=30, description="Days terminal runs are kept")
    stale_after_days: int = Field(default=7, description="Age after which a listing is stale")

    # Shared state
    redis_url: Optional[str] = Field(default=None, description="Redis URL for shared throttle state")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    # Output
    output_directory: str = Field(default="out", description="Output directory for run reports")
    output_filename: str = Field(default="report.json", description="Run report filename")

    connections: List[ConnectionConfig] = Field(default_factory=list)

    @field_validator(
        'chunk_size', 'max_concurrent_imports_per_destination', 'default_batch_size',
        'min_batch_size', 'admission_limit', 'cleanup_batch_size', 'cleanup_max_batch_size',
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"value must be positive, got: {v}")
        return v

    @field_validator('recovery_multiplier')
    @classmethod
    def validate_multiplier(cls, v: float) -> float:
        if v < 1.0:
            raise ValueError(f"recovery_multiplier must be >= 1.0, got: {v}")
        return v

    @property
    def output_path(self) -> Path:
        """Get full output file path."""
        return Path(self.output_directory) / self.output_filename

    def connection(self, connection_id: int) -> ConnectionConfig:
        for conn in self.connections:
            if conn.id == connection_id:
                return conn
        raise KeyError(f"Unknown connection: {connection_id}")

    @classmethod
    def from_env(cls) -> "SyndicationConfig":
        """Create configuration with environment variable overrides."""
        config = cls()

        env_mappings = {
            "ELEMENTA_CHUNK_SIZE": "chunk_size",
            "ELEMENTA_MAX_CONCURRENT": "max_concurrent_imports_per_destination",
            "ELEMENTA_BATCH_SIZE": "default_batch_size",
            "ELEMENTA_ADMISSION_LIMIT": "admission_limit",
            "ELEMENTA_ADMISSION_WINDOW": "admission_window",
            "ELEMENTA_CONNECT_TIMEOUT": "connect_timeout",
            "ELEMENTA_READ_TIMEOUT": "read_timeout",
            "ELEMENTA_CLEANUP_BATCH_SIZE": "cleanup_batch_size",
            "ELEMENTA_REDIS_URL": "redis_url",
            "ELEMENTA_LOG_LEVEL": "log_level",
        }

        for env_var, field_name in env_mappings.items():
            if env_var in os.environ:
                value = os.environ[env_var]
                field_info = cls.model_fields[field_name]
                if field_info.annotation == int:
                    setattr(config, field_name, int(value))
                elif field_info.annotation == float:
                    setattr(config, field_name, float(value))
                else:
                    setattr(config, field_name, value)

        return config


class ConfigManager:
    """Manages configuration loading with override precedence."""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = config_file or Path("config/config.yaml")
        self._config: Optional[SyndicationConfig] = None

    def load_config(self, cli_overrides: Optional[Dict] = None) -> SyndicationConfig:
        """
        Load configuration with override precedence: CLI > ENV > YAML.

        Args:
            cli_overrides: Optional dictionary of CLI flag overrides

        Returns:
            Fully merged SyndicationConfig instance

        Raises:
            ValueError: If configuration validation fails
        """
        config_dict: Dict[str, Any] = {}

        if self.config_file.exists():
            with open(self.config_file, 'r') as f:
                yaml_config = yaml.safe_load(f)
                if yaml_config:
                    config_dict.update(yaml_config)

        base_config = SyndicationConfig(**config_dict)
        env_config = SyndicationConfig.from_env()

        merged_dict = base_config.model_dump()
        env_dict = env_config.model_dump()

        # Only override with env values that differ from defaults
        default_dict = SyndicationConfig().model_dump()
        for key, value in env_dict.items():
            if value != default_dict[key]:
                merged_dict[key] = value

        if cli_overrides:
            cli_overrides = {k: v for k, v in cli_overrides.items() if v is not None}
            merged_dict.update(cli_overrides)

        self._config = SyndicationConfig(**merged_dict)
        return self._config

    @property
    def config(self) -> SyndicationConfig:
        """Get the loaded configuration."""
        if self._config is None:
            self._config = self.load_config()
        return self._config
