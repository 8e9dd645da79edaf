"""测试配置验证器"""

import pytest
import yaml

from overseer.models.health_check import ProbeKind
from overseer.models.target import Target
from overseer.utils.config_validator import ConfigValidator, parse_bind_address, parse_duration
from overseer.utils.exceptions import DuplicateTargetError, InvalidConfigError


class TestParseDuration:
    """时长解析测试"""

    @pytest.mark.parametrize('value, expected', [
        (30, 30.0),
        (0.5, 0.5),
        ('250ms', 0.25),
        ('15s', 15.0),
        ('2m', 120.0),
        ('1h', 3600.0),
        ('10', 10.0),
    ])
    def test_valid(self, value, expected):
        assert parse_duration(value) == expected

    @pytest.mark.parametrize('value', ['fast', '10d', '', None, True, [10],
                                       float('nan'), float('inf'), float('-inf'), 'nan'])
    def test_invalid(self, value):
        with pytest.raises(InvalidConfigError):
            parse_duration(value, 'interval')


class TestParseBindAddress:

    def test_valid(self):
        assert parse_bind_address('127.0.0.1:3000') == ('127.0.0.1', 3000)
        assert parse_bind_address(':8080') == ('0.0.0.0', 8080)
        assert parse_bind_address('[::]:9000') == ('::', 9000)

    @pytest.mark.parametrize('bind', ['localhost', 'host:port', 'host:70000', 3000])
    def test_invalid(self, bind):
        with pytest.raises(InvalidConfigError):
            parse_bind_address(bind)


class TestConfigValidator:
    """测试ConfigValidator类"""

    def test_build_target_with_defaults(self):
        target = ConfigValidator.build_target(
            {'id': 'api', 'address': 'https://api.example.com', 'probe_kind': 'HTTP',
             'timeout': '3s'},
            {'interval': '1m', 'timeout': 5, 'success_threshold': 4})

        assert target == Target(id='api', address='https://api.example.com',
                                probe_kind=ProbeKind.HTTP, interval=60.0, timeout=3.0,
                                failure_threshold=3, success_threshold=4)

    @pytest.mark.parametrize('config', [
        {'address': 'a:80', 'probe_kind': 'tcp', 'interval': 10, 'timeout': 1},
        {'id': 'a', 'probe_kind': 'tcp', 'interval': 10, 'timeout': 1},
        {'id': 'a', 'address': 'a:80', 'probe_kind': 'ftp', 'interval': 10, 'timeout': 1},
        {'id': 'a', 'address': 'a:80', 'probe_kind': 'tcp', 'timeout': 1},
        {'id': 'a', 'address': 'a:80', 'probe_kind': 'tcp', 'interval': 10, 'timeout': 1,
         'options': ['x']},
        'not-a-dict',
    ])
    def test_build_target_invalid(self, config):
        with pytest.raises(InvalidConfigError):
            ConfigValidator.build_target(config, {})

    def test_validate_target_timeout_must_be_below_interval(self):
        target = Target('a', 'a:80', ProbeKind.TCP, interval=5, timeout=5)
        with pytest.raises(InvalidConfigError, match="timeout"):
            ConfigValidator.validate_target(target)

    def test_validate_target_thresholds(self):
        target = Target('a', 'a:80', ProbeKind.TCP, interval=5, timeout=1,
                        failure_threshold=True)
        with pytest.raises(InvalidConfigError, match="failure_threshold"):
            ConfigValidator.validate_target(target)

    @pytest.mark.parametrize('interval, timeout', [
        (float('nan'), float('nan')),
        (float('inf'), 1),
        (10, float('nan')),
        (float('nan'), 1),
    ])
    def test_validate_target_rejects_non_finite_durations(self, interval, timeout):
        target = Target('a', 'a:80', ProbeKind.TCP, interval=interval, timeout=timeout)
        with pytest.raises(InvalidConfigError, match="有限"):
            ConfigValidator.validate_target(target)

    @pytest.mark.parametrize('yaml_value', ['.nan', '.inf', '-.inf'])
    def test_build_target_rejects_yaml_non_finite(self, yaml_value):
        config = yaml.safe_load(
            f"{{id: a, address: 'a:80', probe_kind: tcp, interval: {yaml_value}, timeout: 1}}")
        with pytest.raises(InvalidConfigError, match="有限"):
            ConfigValidator.build_target(config, {})

    def test_validate_targets_config_duplicates(self):
        with pytest.raises(DuplicateTargetError):
            ConfigValidator.validate_targets_config([{'id': 'a'}, {'id': 'a'}])

    def test_validate_targets_config_structure(self):
        with pytest.raises(InvalidConfigError):
            ConfigValidator.validate_targets_config({'a': {}})

    def test_validate_actions_config(self):
        ConfigValidator.validate_actions_config([{'name': 'a', 'type': 'log'},
                                                 {'name': 'b', 'type': 'exec'}])
        with pytest.raises(InvalidConfigError):
            ConfigValidator.validate_actions_config([{'name': 'a', 'type': 'sms'}])
        with pytest.raises(InvalidConfigError):
            ConfigValidator.validate_actions_config({'name': 'a'})

    @pytest.mark.parametrize('global_config', [
        {'worker_pool_size': -1},
        {'log_level': 'VERBOSE'},
        {'shutdown_grace_period': 'later'},
        {'defaults': []},
        {'status_server': 'on'},
    ])
    def test_validate_global_config_invalid(self, global_config):
        with pytest.raises(InvalidConfigError):
            ConfigValidator.validate_global_config(global_config)

    def test_validate_global_config_valid(self):
        ConfigValidator.validate_global_config({
            'worker_pool_size': 16,
            'log_level': 'debug',
            'shutdown_grace_period': '30s',
            'status_server': {'bind': '0.0.0.0:3000', 'enabled': False}
        })
