"""
Tests for engine configuration loading and validation
"""

from pathlib import Path

import pytest
import yaml

from navigator.config import DEFAULT_CONFIG_PATH, EngineConfig, load_config, load_yaml
from navigator.errors import ConfigError


class TestDefaults:
    """Test the default configuration"""

    def test_defaults_valid(self):
        config = EngineConfig().validate()
        assert config.trade_size == 100
        assert config.risk.stop_multiplier == 1.5
        assert config.risk.target1_multiplier == 2.0
        assert config.risk.target2_multiplier == 4.0
        assert config.delta.divergence_lookback == 10
        assert config.delta.divergence_threshold == 0.15
        assert config.sessions.entry_start == '09:45'
        assert config.sessions.entry_end == '11:00'

    def test_repo_config_matches_defaults(self):
        """config.yaml ships the default parameter set"""
        assert DEFAULT_CONFIG_PATH.exists()
        assert load_config().to_dict() == EngineConfig().to_dict()

    def test_to_dict_round_trip(self):
        config = EngineConfig()
        assert EngineConfig.from_dict(config.to_dict()) == config


class TestFromDict:
    """Test building config from plain dicts"""

    def test_partial_override(self):
        config = EngineConfig.from_dict({'risk': {'stop_multiplier': 2.0}, 'trade_size': 5})
        assert config.risk.stop_multiplier == 2.0
        assert config.risk.target1_multiplier == 2.0
        assert config.trade_size == 5

    def test_empty(self):
        assert EngineConfig.from_dict(None) == EngineConfig()

    def test_unknown_key(self):
        with pytest.raises(ConfigError, match="Unknown risk config keys"):
            EngineConfig.from_dict({'risk': {'stopp': 1.0}})

    def test_unknown_top_level_key(self):
        with pytest.raises(ConfigError, match="Unknown engine config keys"):
            EngineConfig.from_dict({'bogus': 1})

    def test_custom_windows(self):
        config = EngineConfig.from_dict({'sessions': {'windows': [
            {'name': 'asia', 'start': '19:00', 'end': '01:00'},
            {'name': 'london', 'start': '03:00', 'end': '06:00'},
            {'name': 'opening_range', 'start': '09:30', 'end': '10:00'},
        ]}})
        assert [w.name for w in config.sessions.windows] == ['asia', 'london', 'opening_range']


class TestValidation:
    """Test fail-fast validation"""

    @pytest.mark.parametrize('data, message', [
        ({'delta': {'divergence_threshold': 1.0}}, 'divergence_threshold'),
        ({'delta': {'divergence_threshold': -0.1}}, 'divergence_threshold'),
        ({'delta': {'divergence_lookback': 0}}, 'divergence_lookback'),
        ({'indicators': {'atr_period': 0}}, 'atr_period'),
        ({'indicators': {'fast_ema_period': 21, 'slow_ema_period': 9}}, 'fast_ema_period'),
        ({'risk': {'stop_multiplier': -1.0}}, 'stop_multiplier'),
        ({'risk': {'target1_multiplier': 3.0, 'target2_multiplier': 2.0}}, 'target2_multiplier'),
        ({'max_history': 10}, 'max_history'),
        ({'trade_size': 0}, 'trade_size'),
        ({'sessions': {'timezone': 'Mars/Olympus'}}, 'Unknown timezone'),
        ({'sessions': {'entry_start': '09:00'}}, 'entry window'),
        ({'sessions': {'entry_end': '17:00'}}, 'entry window'),
        ({'sessions': {'session_open': '16:30'}}, 'session_open'),
        ({'sessions': {'pivot_time': '8am'}}, 'pivot_time'),
        ({'sessions': {'opening_range_window': 'orb'}}, 'opening_range_window'),
        ({'indicators': {'atr_15m_period': 600}}, 'atr_15m_period'),
        ({'max_history': 200, 'indicators': {'atr_15m_period': 250}}, 'atr_15m_period'),
        ({'delta': {'divergence_threshold': 'x'}}, 'divergence_threshold must be a number'),
        ({'risk': {'stop_multiplier': None}}, 'stop_multiplier must be a number'),
        ({'momentum': {'min_momentum_for_catchup': True}}, 'min_momentum_for_catchup'),
        ({'sessions': {'timezone': 5}}, 'timezone'),
        ({'sessions': {'time_exit': '10:30'}}, 'time_exit'),
        ({'sessions': {'time_exit': '16:30'}}, 'time_exit'),
    ])
    def test_invalid(self, data, message):
        with pytest.raises(ConfigError, match=message):
            EngineConfig.from_dict(data)

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            EngineConfig.from_dict({'trade_size': -1})

    def test_zero_length_window(self):
        with pytest.raises(ConfigError, match="zero length"):
            EngineConfig.from_dict({'sessions': {'windows': [
                {'name': 'asia', 'start': '20:00', 'end': '20:00'},
                {'name': 'london', 'start': '02:00', 'end': '05:00'},
                {'name': 'opening_range', 'start': '09:30', 'end': '09:45'},
            ]}})


class TestYaml:
    """Test YAML loading"""

    def test_load_from_file(self, tmp_path: Path):
        path = tmp_path / 'config.yaml'
        path.write_text(yaml.safe_dump({'engine': {'risk': {'breakeven_offset': 0.1}}}))
        config = load_config(path)
        assert config.risk.breakeven_offset == 0.1

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_yaml(tmp_path / 'nope.yaml')

    def test_invalid_yaml(self, tmp_path: Path):
        path = tmp_path / 'bad.yaml'
        path.write_text("engine: [unclosed")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_yaml(path)

    def test_non_mapping(self, tmp_path: Path):
        path = tmp_path / 'list.yaml'
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_yaml(path)
