"""配置验证工具"""

import math
import re
from typing import Dict, Any, List, Union

from .exceptions import InvalidConfigError, DuplicateTargetError
from ..models.health_check import ProbeKind
from ..models.target import Target

_DURATION_PATTERN = re.compile(r'^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$')
_DURATION_UNITS = {'ms': 0.001, 's': 1.0, 'm': 60.0, 'h': 3600.0, None: 1.0}

SUPPORTED_ACTION_TYPES = ['webhook', 'email', 'exec', 'log']
VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']


def parse_duration(value: Union[int, float, str], field_name: str = 'duration') -> float:
    """
    解析时长配置

    Args:
        value: 数字（秒）或带单位的字符串，如 "500ms"、"30s"、"1m"
        field_name: 字段名，用于错误信息

    Returns:
        float: 秒数

    Raises:
        InvalidConfigError: 格式无效或不是有限值
    """
    if isinstance(value, bool):
        raise InvalidConfigError(f"{field_name} 必须是数字或时长字符串")
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            raise InvalidConfigError(f"{field_name} 必须是有限值: {value!r}")
        return float(value)
    if isinstance(value, str):
        match = _DURATION_PATTERN.match(value)
        if match:
            return float(match.group(1)) * _DURATION_UNITS[match.group(2)]
    raise InvalidConfigError(f"{field_name} 格式无效: {value!r}")


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


class ConfigValidator:
    """配置验证器"""

    @staticmethod
    def validate_target(target: Target, min_interval: float = 1.0) -> None:
        """
        验证目标配置的不变量

        Args:
            target: 目标
            min_interval: 允许的最小检查间隔（秒）

        Raises:
            InvalidConfigError: 配置验证失败
        """
        if not isinstance(target.id, str) or not target.id.strip():
            raise InvalidConfigError("目标 id 不能为空")
        target_id = target.id

        if not isinstance(target.address, str) or not target.address.strip():
            raise InvalidConfigError(f"目标 '{target_id}' 的 address 不能为空",
                                     target_id=target_id)

        if not isinstance(target.probe_kind, ProbeKind):
            raise InvalidConfigError(
                f"目标 '{target_id}' 的探测类型 '{target.probe_kind}' 不受支持",
                target_id=target_id)

        for field_name in ('interval', 'timeout'):
            value = getattr(target, field_name)
            if (not isinstance(value, (int, float)) or isinstance(value, bool)
                    or not math.isfinite(value)):
                raise InvalidConfigError(
                    f"目标 '{target_id}' 的 {field_name} 必须是有限的数字: {value!r}",
                    target_id=target_id)

        if target.interval < min_interval:
            raise InvalidConfigError(
                f"目标 '{target_id}' 的 interval 不能小于 {min_interval} 秒",
                target_id=target_id)

        if target.timeout <= 0:
            raise InvalidConfigError(f"目标 '{target_id}' 的 timeout 必须大于0",
                                     target_id=target_id)

        if target.timeout >= target.interval:
            raise InvalidConfigError(
                f"目标 '{target_id}' 的 timeout ({target.timeout}s) 必须小于 "
                f"interval ({target.interval}s)",
                target_id=target_id)

        if not _is_positive_int(target.failure_threshold):
            raise InvalidConfigError(f"目标 '{target_id}' 的 failure_threshold 必须是正整数",
                                     target_id=target_id)

        if not _is_positive_int(target.success_threshold):
            raise InvalidConfigError(f"目标 '{target_id}' 的 success_threshold 必须是正整数",
                                     target_id=target_id)

    @staticmethod
    def build_target(config: Dict[str, Any], defaults: Dict[str, Any]) -> Target:
        """
        根据目标配置构造 Target

        Args:
            config: 单个目标配置
            defaults: 全局默认值（global.defaults）

        Returns:
            Target: 目标对象

        Raises:
            InvalidConfigError: 配置验证失败
        """
        if not isinstance(config, dict):
            raise InvalidConfigError("目标配置必须是字典类型")

        for field_name in ('id', 'address', 'probe_kind'):
            if field_name not in config:
                raise InvalidConfigError(f"目标配置缺少必需的配置项: {field_name}",
                                         target_id=config.get('id'))

        target_id = str(config['id'])
        try:
            probe_kind = ProbeKind(str(config['probe_kind']).lower())
        except ValueError:
            raise InvalidConfigError(
                f"目标 '{target_id}' 的探测类型 '{config['probe_kind']}' 不受支持。"
                f"支持的类型: {[kind.value for kind in ProbeKind]}",
                target_id=target_id)

        merged = {**defaults, **config}
        for field_name in ('interval', 'timeout'):
            if field_name not in merged:
                raise InvalidConfigError(f"目标 '{target_id}' 缺少 {field_name} 配置",
                                         target_id=target_id)

        options = config.get('options', {})
        if not isinstance(options, dict):
            raise InvalidConfigError(f"目标 '{target_id}' 的 options 必须是字典类型",
                                     target_id=target_id)

        return Target(
            id=target_id,
            address=str(config['address']),
            probe_kind=probe_kind,
            interval=parse_duration(merged['interval'], f"{target_id}.interval"),
            timeout=parse_duration(merged['timeout'], f"{target_id}.timeout"),
            failure_threshold=merged.get('failure_threshold', 3),
            success_threshold=merged.get('success_threshold', 2),
            options=dict(options)
        )

    @staticmethod
    def validate_targets_config(targets_config: Any) -> None:
        """
        验证目标列表结构以及ID唯一性

        Raises:
            InvalidConfigError: 结构错误
            DuplicateTargetError: ID重复
        """
        if not isinstance(targets_config, list):
            raise InvalidConfigError("targets配置必须是列表类型")

        seen = set()
        for target_config in targets_config:
            if not isinstance(target_config, dict):
                raise InvalidConfigError("目标配置必须是字典类型")
            target_id = target_config.get('id')
            if target_id in seen:
                raise DuplicateTargetError(str(target_id))
            seen.add(target_id)

    @staticmethod
    def validate_action_config(action_config: Dict[str, Any]) -> None:
        """
        验证通知动作配置的公共部分

        Args:
            action_config: 通知动作配置

        Raises:
            InvalidConfigError: 配置验证失败
        """
        if not isinstance(action_config, dict):
            raise InvalidConfigError("通知动作配置必须是字典类型")

        for field_name in ('name', 'type'):
            if field_name not in action_config:
                raise InvalidConfigError(f"通知动作配置缺少必需的配置项: {field_name}")

        action_type = action_config.get('type')
        if action_type not in SUPPORTED_ACTION_TYPES:
            raise InvalidConfigError(
                f"通知动作 '{action_config['name']}' 的类型 '{action_type}' 不受支持。"
                f"支持的类型: {SUPPORTED_ACTION_TYPES}")

    @staticmethod
    def validate_actions_config(actions_config: Any) -> None:
        """验证通知动作列表以及名称唯一性"""
        if not isinstance(actions_config, list):
            raise InvalidConfigError("actions配置必须是列表类型")

        names: List[str] = []
        for action_config in actions_config:
            ConfigValidator.validate_action_config(action_config)
            if action_config['name'] in names:
                raise InvalidConfigError(f"通知动作名称重复: {action_config['name']}")
            names.append(action_config['name'])

    @staticmethod
    def validate_global_config(global_config: Dict[str, Any]) -> None:
        """
        验证全局配置

        Args:
            global_config: 全局配置

        Raises:
            InvalidConfigError: 配置验证失败
        """
        if not isinstance(global_config, dict):
            raise InvalidConfigError("全局配置必须是字典类型")

        worker_pool_size = global_config.get('worker_pool_size')
        if worker_pool_size is not None and not _is_positive_int(worker_pool_size):
            raise InvalidConfigError("worker_pool_size 必须是正整数")

        grace = global_config.get('shutdown_grace_period')
        if grace is not None and parse_duration(grace, 'shutdown_grace_period') < 0:
            raise InvalidConfigError("shutdown_grace_period 不能为负数")

        log_level = global_config.get('log_level')
        if log_level is not None and str(log_level).upper() not in VALID_LOG_LEVELS:
            raise InvalidConfigError(f"log_level 必须是以下值之一: {VALID_LOG_LEVELS}")

        defaults = global_config.get('defaults')
        if defaults is not None and not isinstance(defaults, dict):
            raise InvalidConfigError("defaults 必须是字典类型")

        status_server = global_config.get('status_server')
        if status_server is not None:
            if not isinstance(status_server, dict):
                raise InvalidConfigError("status_server 必须是字典类型")
            bind = status_server.get('bind')
            if bind is not None:
                parse_bind_address(bind)

        discovery = global_config.get('docker_discovery')
        if discovery is not None:
            if not isinstance(discovery, dict):
                raise InvalidConfigError("docker_discovery 必须是字典类型")
            uri = discovery.get('uri')
            if uri is not None and (not isinstance(uri, str) or not uri.strip()):
                raise InvalidConfigError("docker_discovery.uri 必须是非空字符串")
            prefix = discovery.get('label_prefix')
            if prefix is not None and (not isinstance(prefix, str) or not prefix.endswith('.')):
                raise InvalidConfigError("docker_discovery.label_prefix 必须是以 '.' 结尾的字符串")
            retry_delay = discovery.get('retry_delay')
            if retry_delay is not None and parse_duration(retry_delay,
                                                          'docker_discovery.retry_delay') <= 0:
                raise InvalidConfigError("docker_discovery.retry_delay 必须大于0")


def parse_bind_address(bind: str) -> tuple:
    """
    解析 host:port 形式的监听地址

    Returns:
        tuple: (host, port)

    Raises:
        InvalidConfigError: 格式无效
    """
    if not isinstance(bind, str) or ':' not in bind:
        raise InvalidConfigError(f"监听地址格式无效，应为 host:port: {bind!r}")
    host, _, port_str = bind.rpartition(':')
    host = host.strip('[]') or '0.0.0.0'
    try:
        port = int(port_str)
    except ValueError:
        raise InvalidConfigError(f"监听端口无效: {bind!r}")
    if not 0 <= port <= 65535:
        raise InvalidConfigError(f"监听端口超出范围: {bind!r}")
    return host, port
