"""探测器工厂"""

from typing import Dict, Type

from .base import BaseProbe
from ..models.health_check import ProbeKind
from ..models.target import Target
from ..utils.exceptions import InvalidConfigError


class ProbeFactory:
    """探测器工厂类，按探测类型创建探测器"""

    def __init__(self):
        """初始化工厂"""
        self._probes: Dict[ProbeKind, Type[BaseProbe]] = {}

    def register_probe(self, kind: ProbeKind, probe_class: Type[BaseProbe]):
        """
        注册探测器类

        Args:
            kind: 探测类型
            probe_class: 探测器类

        Raises:
            ValueError: 重复注册或类型不合法
        """
        if not issubclass(probe_class, BaseProbe):
            raise ValueError(f"探测器类 {probe_class.__name__} 必须继承自 BaseProbe")

        if kind in self._probes:
            raise ValueError(f"探测类型 '{kind.value}' 已经注册了探测器")

        self._probes[kind] = probe_class

    def create_probe(self, target: Target) -> BaseProbe:
        """
        创建探测器实例并验证探测参数

        Args:
            target: 监控目标

        Returns:
            BaseProbe: 探测器实例

        Raises:
            InvalidConfigError: 探测类型不支持或参数无效
        """
        probe_class = self._probes.get(target.probe_kind)
        if probe_class is None:
            raise InvalidConfigError(f"不支持的探测类型: '{target.probe_kind}'",
                                     target_id=target.id)

        probe = probe_class(target)
        if not probe.validate_config():
            raise InvalidConfigError(f"目标 '{target.id}' 的探测参数验证失败",
                                     target_id=target.id)
        return probe

    def get_supported_kinds(self) -> list:
        """获取支持的探测类型列表"""
        return list(self._probes.keys())

    def is_kind_supported(self, kind: ProbeKind) -> bool:
        """检查是否支持指定的探测类型"""
        return kind in self._probes


# 全局工厂实例
probe_factory = ProbeFactory()


def register_probe(kind: ProbeKind):
    """
    装饰器：注册探测器类

    Args:
        kind: 探测类型
    """
    def decorator(probe_class: Type[BaseProbe]):
        probe_factory.register_probe(kind, probe_class)
        return probe_class

    return decorator
