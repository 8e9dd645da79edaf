"""容器发现模块

从运行中容器的标签生成监控目标，并跟随 Docker 事件流注册或注销
"""

import asyncio
import threading
from typing import Dict, Any, Optional

import docker
import yaml
from docker.errors import DockerException, NotFound

from ..models.target import Target
from ..utils.config_validator import ConfigValidator
from ..utils.exceptions import (DuplicateTargetError, ErrorCode, InvalidConfigError,
                                OverseerError, TargetNotFoundError)
from ..utils.log_manager import get_logger
from .config_manager import DEFAULT_DOCKER_URI
from .registry import TargetRegistry


def parse_label_value(value: str) -> Any:
    """按 YAML 标量解析标签值，如 "3" -> 3、"[200, 204]" -> [200, 204]"""
    try:
        return yaml.safe_load(value)
    except yaml.YAMLError:
        return value


class DockerDiscovery:
    """Docker 容器目标发现

    标签约定（前缀默认 overseer.）：
      overseer.address / overseer.probe_kind   必需
      overseer.id                              默认为容器名
      overseer.interval / overseer.timeout     缺省时取 global.defaults
      overseer.failure_threshold / overseer.success_threshold
      overseer.option.<name>                   探测参数

    注册表只在事件循环线程中修改；事件监听线程通过 call_soon_threadsafe 转交。
    """

    START_ACTIONS = ('start',)
    STOP_ACTIONS = ('stop', 'kill', 'die')

    def __init__(self, registry: TargetRegistry, uri: str = DEFAULT_DOCKER_URI,
                 label_prefix: str = 'overseer.', defaults: Optional[Dict[str, Any]] = None,
                 retry_delay: float = 5.0, client=None):
        """初始化容器发现

        Args:
            registry: 目标注册表
            uri: Docker 守护进程地址
            label_prefix: 标签前缀
            defaults: 目标默认配置（global.defaults）
            retry_delay: 事件流中断后的重连间隔（秒）
            client: Docker 客户端，默认按 uri 创建
        """
        self.registry = registry
        self.uri = uri
        self.label_prefix = label_prefix
        self.defaults = defaults or {}
        self.retry_delay = retry_delay
        self._client = client
        self._owns_client = client is None
        self._owned: Dict[str, Target] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._stream = None
        self._stopping = threading.Event()
        self.events_handled = 0
        self.logger = get_logger('docker_discovery')

    @property
    def client(self):
        if self._client is None:
            self._client = docker.DockerClient(base_url=self.uri)
        return self._client

    def target_from_labels(self, container_name: str,
                           labels: Dict[str, str]) -> Optional[Target]:
        """
        根据容器标签构造目标

        Returns:
            Optional[Target]: 没有带前缀的标签时返回 None

        Raises:
            InvalidConfigError: 标签不足以构成有效目标
        """
        values = {key[len(self.label_prefix):]: value for key, value in labels.items()
                  if key.startswith(self.label_prefix)}
        if not values:
            return None

        config: Dict[str, Any] = {'id': values.pop('id', container_name)}
        options = {}
        for key, value in values.items():
            if key.startswith('option.'):
                options[key[len('option.'):]] = parse_label_value(value)
            elif key == 'address':
                config['address'] = value
            else:
                config[key] = parse_label_value(value)
        if options:
            config['options'] = options

        return ConfigValidator.build_target(config, self.defaults)

    def container_target(self, container) -> Optional[Target]:
        """将容器转换为目标，标签无效时记录警告并返回 None"""
        try:
            return self.target_from_labels(container.name, container.labels or {})
        except InvalidConfigError as e:
            self.logger.warning(f"容器 {container.name} 的标签无效，已忽略: {e.format_error()}")
            return None

    def list_targets(self) -> Dict[str, Target]:
        """
        列出运行中容器对应的目标（阻塞调用）

        Returns:
            Dict[str, Target]: 容器ID -> 目标
        """
        discovered = {}
        for container in self.client.containers.list():
            target = self.container_target(container)
            if target is not None:
                discovered[container.id] = target
        return discovered

    def lookup_target(self, container_id: str) -> Optional[Target]:
        """查询单个容器对应的目标（阻塞调用）"""
        try:
            container = self.client.containers.get(container_id)
        except NotFound:
            self.logger.debug(f"容器 {container_id[:12]} 已不存在")
            return None
        if container.status != 'running':
            return None
        return self.container_target(container)

    def sync(self, discovered: Dict[str, Target]):
        """按完整的容器列表同步已发现的目标"""
        for container_id in list(self._owned):
            if container_id not in discovered:
                self.remove(container_id)

        for container_id, target in discovered.items():
            self.add(container_id, target)

    def add(self, container_id: str, target: Target):
        """注册容器对应的目标；目标变化时先注销旧目标"""
        current = self._owned.get(container_id)
        if current == target:
            return
        if current is not None:
            self.remove(container_id)

        try:
            self.registry.register(target)
        except DuplicateTargetError:
            self.logger.warning(f"容器 {container_id[:12]} 的目标ID {target.id} 已存在，忽略")
            return
        except InvalidConfigError as e:
            self.logger.warning(f"容器 {container_id[:12]} 的目标无效，忽略: {e.format_error()}")
            return

        self._owned[container_id] = target
        self.logger.info(f"发现容器目标 {target.id} ({container_id[:12]})")

    def remove(self, container_id: str):
        """注销容器对应的目标"""
        target = self._owned.pop(container_id, None)
        if target is None:
            return
        try:
            self.registry.deregister(target.id)
        except TargetNotFoundError:
            self.logger.debug(f"容器目标 {target.id} 已被注销")
            return
        self.logger.info(f"容器 {container_id[:12]} 已停止，注销目标 {target.id}")

    def owns(self, target_id: str) -> bool:
        """目标是否由容器发现注册"""
        return any(target.id == target_id for target in self._owned.values())

    def handle_event(self, event: Dict[str, Any]):
        """处理一条容器事件（事件监听线程）"""
        action = event.get('Action') or event.get('status') or ''
        container_id = (event.get('Actor') or {}).get('ID') or event.get('id')
        if not container_id:
            return

        self.events_handled += 1
        if action in self.START_ACTIONS:
            target = self.lookup_target(container_id)
            if target is not None:
                self._call_soon(self.add, container_id, target)
        elif action in self.STOP_ACTIONS:
            self._call_soon(self.remove, container_id)
        else:
            self.logger.debug(f"忽略容器事件 {action} ({container_id[:12]})")

    def _call_soon(self, callback, *args):
        if self._loop is None:
            callback(*args)
        else:
            self._loop.call_soon_threadsafe(callback, *args)

    async def refresh(self):
        """
        重新列出容器并同步目标

        Raises:
            OverseerError: 无法访问 Docker
        """
        loop = asyncio.get_running_loop()
        try:
            discovered = await loop.run_in_executor(None, self.list_targets)
        except (DockerException, OSError) as e:
            raise OverseerError(f"无法从 Docker 获取容器列表: {self.uri}",
                                ErrorCode.INITIALIZATION_ERROR, cause=e, recoverable=False)
        self.sync(discovered)

    async def start(self):
        """首次同步并启动事件监听线程

        Raises:
            OverseerError: 无法访问 Docker
        """
        self._loop = asyncio.get_running_loop()
        self._stopping.clear()
        await self.refresh()
        self.logger.info(f"从 {self.uri} 发现 {len(self._owned)} 个容器目标")

        self._thread = threading.Thread(target=self._watch_events, name='docker-discovery',
                                        daemon=True)
        self._thread.start()

    def _watch_events(self):
        while not self._stopping.is_set():
            try:
                self._stream = self.client.events(decode=True, filters={'type': 'container'})
                for event in self._stream:
                    if self._stopping.is_set():
                        break
                    self.handle_event(event)
            except Exception as e:
                if self._stopping.is_set():
                    break
                self.logger.error(f"Docker 事件流中断: {e}")
            finally:
                self._stream = None

            if self._stopping.wait(self.retry_delay):
                break
            # 断开期间可能漏掉事件，重连前整体同步一次
            self._resync()

    def _resync(self):
        try:
            discovered = self.list_targets()
        except (DockerException, OSError) as e:
            self.logger.error(f"重新同步容器列表失败: {e}")
            return
        self._call_soon(self.sync, discovered)

    async def stop(self):
        """停止事件监听"""
        self._stopping.set()
        stream = self._stream
        if stream is not None:
            stream.close()

        thread = self._thread
        self._thread = None
        if thread is not None:
            await asyncio.get_running_loop().run_in_executor(None, thread.join, 5)

        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None
        self.logger.info("容器发现已停止")

    def get_stats(self) -> Dict[str, Any]:
        """获取容器发现统计"""
        return {
            'uri': self.uri,
            'discovered_targets': sorted(target.id for target in self._owned.values()),
            'events_handled': self.events_handled,
            'watching': self._thread is not None and self._thread.is_alive()
        }
