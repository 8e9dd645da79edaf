"""目标注册表模块

负责持有监控目标及其探测器、状态机，支持并发注册、注销和快照遍历
"""

import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Iterator, Tuple

from ..models.health_check import TargetState
from ..models.target import Target
from ..probes.base import BaseProbe
from ..probes.factory import probe_factory, ProbeFactory
from ..utils.config_validator import ConfigValidator
from ..utils.exceptions import DuplicateTargetError, TargetNotFoundError
from ..utils.log_manager import get_logger
from .state_machine import TargetStateMachine


@dataclass(frozen=True)
class RegistryEntry:
    """注册表条目：目标、探测器和状态机一起可见"""
    target: Target
    probe: BaseProbe
    state_machine: TargetStateMachine


class TargetSnapshot:
    """目标快照序列

    创建时固定内容，之后的注册或注销不会影响它；可以重复遍历。
    """

    def __init__(self, targets: Tuple[Target, ...]):
        self._targets = targets

    def __iter__(self) -> Iterator[Target]:
        return iter(self._targets)

    def __len__(self) -> int:
        return len(self._targets)

    def __getitem__(self, index):
        return self._targets[index]

    def __repr__(self) -> str:
        return f"TargetSnapshot({[target.id for target in self._targets]})"


class TargetRegistry:
    """目标注册表

    所有修改都在同一把锁内完成，读者只会看到完整注册或完整注销的目标。
    """

    def __init__(self, min_interval: float = 1.0,
                 factory: Optional[ProbeFactory] = None):
        """初始化注册表

        Args:
            min_interval: 允许的最小探测间隔（秒）
            factory: 探测器工厂，默认使用全局工厂
        """
        self.min_interval = min_interval
        self.factory = factory or probe_factory
        self._entries: Dict[str, RegistryEntry] = {}
        self._lock = threading.RLock()
        self._listeners: List = []
        self.logger = get_logger('registry')

    def add_listener(self, listener):
        """添加注册表监听器

        监听器可实现 on_target_registered(target) 和 on_target_deregistered(target_id)。
        """
        self._listeners.append(listener)

    def remove_listener(self, listener):
        """移除注册表监听器"""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def register(self, target: Target) -> TargetStateMachine:
        """注册监控目标

        Args:
            target: 监控目标

        Returns:
            TargetStateMachine: 新建的状态机（初始为 unknown）

        Raises:
            InvalidConfigError: 目标配置无效
            DuplicateTargetError: 目标ID已存在
        """
        ConfigValidator.validate_target(target, self.min_interval)

        with self._lock:
            if target.id in self._entries:
                raise DuplicateTargetError(target.id)

            probe = self.factory.create_probe(target)
            state_machine = TargetStateMachine(target)
            self._entries[target.id] = RegistryEntry(target, probe, state_machine)

        self.logger.info(
            f"注册目标 {target.id}: 类型={target.probe_kind.value}, 地址={target.address}, "
            f"间隔={target.interval}秒, 超时={target.timeout}秒")

        for listener in list(self._listeners):
            callback = getattr(listener, 'on_target_registered', None)
            if callback:
                callback(target)

        return state_machine

    def deregister(self, target_id: str) -> Target:
        """注销监控目标

        状态机在返回前关闭，之后任何探测结果都不会再被应用。

        Args:
            target_id: 目标ID

        Returns:
            Target: 被注销的目标

        Raises:
            TargetNotFoundError: 目标不存在
        """
        with self._lock:
            entry = self._entries.pop(target_id, None)
            if entry is None:
                raise TargetNotFoundError(target_id)
            entry.state_machine.close()

        self.logger.info(f"注销目标 {target_id}")

        for listener in list(self._listeners):
            callback = getattr(listener, 'on_target_deregistered', None)
            if callback:
                callback(target_id)

        return entry.target

    def list(self) -> TargetSnapshot:
        """获取当前目标的快照序列"""
        with self._lock:
            return TargetSnapshot(tuple(entry.target for entry in self._entries.values()))

    def get(self, target_id: str) -> Target:
        """获取目标

        Raises:
            TargetNotFoundError: 目标不存在
        """
        return self._get_entry(target_id).target

    def get_probe(self, target_id: str) -> BaseProbe:
        """获取目标的探测器"""
        return self._get_entry(target_id).probe

    def get_state_machine(self, target_id: str) -> TargetStateMachine:
        """获取目标的状态机"""
        return self._get_entry(target_id).state_machine

    def get_entry(self, target_id: str) -> Optional[RegistryEntry]:
        """获取注册表条目，不存在时返回 None"""
        with self._lock:
            return self._entries.get(target_id)

    def get_state(self, target_id: str) -> TargetState:
        """获取目标当前状态快照"""
        return self.get_state_machine(target_id).snapshot()

    def state_machines(self) -> List[TargetStateMachine]:
        """获取所有状态机的快照列表"""
        with self._lock:
            return [entry.state_machine for entry in self._entries.values()]

    def _get_entry(self, target_id: str) -> RegistryEntry:
        with self._lock:
            entry = self._entries.get(target_id)
        if entry is None:
            raise TargetNotFoundError(target_id)
        return entry

    def __contains__(self, target_id: str) -> bool:
        with self._lock:
            return target_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
