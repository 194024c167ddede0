"""Unit tests for configuration management."""

from pathlib import Path

import pytest
import yaml

from elementa.models.config import (
    ConfigManager,
    ConnectionConfig,
    DestinationConfig,
    SyndicationConfig,
)
from elementa.models.data_models import FilterOperator


def test_syndication_config_defaults():
    """SyndicationConfig carries the throttle and cleanup defaults."""
    config = SyndicationConfig()

    assert config.chunk_size == 100
    assert config.max_concurrent_imports_per_destination == 3

    assert config.default_batch_size == 25
    assert config.min_batch_size == 5
    assert config.max_reset_batch_size == 50
    assert config.initial_recovery_time == 60.0
    assert config.recovery_multiplier == 1.5
    assert config.max_recovery_time == 300.0
    assert config.admission_limit == 120
    assert config.admission_window == 60.0

    assert config.connect_timeout == 30.0
    assert config.read_timeout == 180.0

    assert config.cleanup_max_batch_size == 100
    assert config.cleanup_max_batch_failures == 3

    assert config.redis_url is None
    assert config.output_path == Path("out") / "report.json"


def test_destination_url_validation():
    assert DestinationConfig(url="https://shop.example.com/").url == "https://shop.example.com"

    with pytest.raises(ValueError, match="must start with http"):
        DestinationConfig(url="ftp://shop.example.com")


@pytest.mark.parametrize("field", ["chunk_size", "default_batch_size", "admission_limit", "cleanup_max_batch_size"])
def test_positive_validators(field):
    with pytest.raises(ValueError, match="must be positive"):
        SyndicationConfig(**{field: 0})


def test_recovery_multiplier_validator():
    with pytest.raises(ValueError, match="recovery_multiplier"):
        SyndicationConfig(recovery_multiplier=0.5)


class TestConnectionConfig:

    def test_category_map_from_wizard_list(self, connection):
        assert connection.category_map == {"Running": 42, "Trail": 43}

    def test_category_map_drops_empty_and_invalid_targets(self):
        connection = ConnectionConfig(
            id=1, feed_id=1, destination={"url": "http://shop.test"},
            category_mappings={"A": "", "B": None, "C": "abc", "D": "4"},
        )
        assert connection.category_map == {"D": 4}

    def test_filtering_rules_parsed_from_dicts(self):
        connection = ConnectionConfig(
            id=1, feed_id=1, destination={"url": "http://shop.test"},
            filtering_rules=[{"field": "brand", "operator": "equals", "value": "nike"}],
        )
        assert connection.filtering_rules[0].operator == FilterOperator.EQUALS
        assert connection.filtering_rules[0].value == "nike"

    def test_lookup_by_id(self, connection):
        config = SyndicationConfig(connections=[connection])
        assert config.connection(7).name == connection.name
        with pytest.raises(KeyError):
            config.connection(8)


class TestFromEnv:

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("ELEMENTA_CHUNK_SIZE", "40")
        monkeypatch.setenv("ELEMENTA_READ_TIMEOUT", "12.5")
        monkeypatch.setenv("ELEMENTA_REDIS_URL", "redis://cache:6379/1")

        config = SyndicationConfig.from_env()

        assert config.chunk_size == 40
        assert config.read_timeout == 12.5
        assert config.redis_url == "redis://cache:6379/1"


class TestConfigManager:

    @pytest.fixture
    def config_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({
            "chunk_size": 50,
            "default_batch_size": 20,
            "connections": [{
                "id": 1,
                "feed_id": 2,
                "destination": {"url": "http://localhost:8001"},
                "field_mappings": {"name": "Title", "sku": "SKU"},
                "category_mappings": [{"source": "Running", "dest": "42"}],
            }],
        }))
        return path

    def test_yaml_values(self, config_file):
        config = ConfigManager(config_file).load_config()
        assert config.chunk_size == 50
        assert config.default_batch_size == 20
        assert config.connection(1).category_map == {"Running": 42}

    def test_missing_file_uses_defaults(self, tmp_path):
        config = ConfigManager(tmp_path / "absent.yaml").load_config()
        assert config.chunk_size == 100
        assert config.connections == []

    def test_precedence_cli_over_env_over_yaml(self, config_file, monkeypatch):
        monkeypatch.setenv("ELEMENTA_CHUNK_SIZE", "70")

        assert ConfigManager(config_file).load_config().chunk_size == 70
        assert ConfigManager(config_file).load_config({"chunk_size": 90}).chunk_size == 90

    def test_none_cli_values_ignored(self, config_file):
        config = ConfigManager(config_file).load_config({"chunk_size": None})
        assert config.chunk_size == 50

    def test_config_property_loads_lazily(self, config_file):
        manager = ConfigManager(config_file)
        assert manager.config.chunk_size == 50
        assert manager.config is manager.config

    def test_invalid_yaml_values_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"chunk_size": -1}))
        with pytest.raises(ValueError):
            ConfigManager(path).load_config()
