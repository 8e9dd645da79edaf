"""配置文件监控器"""

import os
from typing import Callable, Optional, List

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .config_manager import ConfigManager
from ..utils.exceptions import OverseerError
from ..utils.log_manager import get_logger


class ConfigFileHandler(FileSystemEventHandler):
    """配置文件变更事件处理器

    编辑器常用“写临时文件再改名”的方式保存，所以同时处理修改、创建和移动事件。
    """

    def __init__(self, config_path: str, callback: Callable[[], None]):
        """
        初始化事件处理器

        Args:
            config_path: 配置文件绝对路径
            callback: 配置变更回调函数
        """
        self.config_path = config_path
        self.callback = callback
        self.logger = get_logger('config_watcher')

    def _matches(self, path) -> bool:
        if isinstance(path, bytes):
            path = os.fsdecode(path)
        return os.path.abspath(path) == self.config_path

    def _handle(self, path):
        if self._matches(path):
            self.logger.info(f"检测到配置文件变更: {self.config_path}")
            self.callback()

    def on_modified(self, event):
        if not event.is_directory:
            self._handle(event.src_path)

    def on_created(self, event):
        if not event.is_directory:
            self._handle(event.src_path)

    def on_moved(self, event):
        if not event.is_directory:
            self._handle(event.dest_path)


class ConfigWatcher:
    """配置文件监控器，支持热更新

    回调在 watchdog 线程中执行；需要操作事件循环的回调自行转交。
    """

    def __init__(self, config_manager: ConfigManager):
        """
        初始化配置监控器

        Args:
            config_manager: 配置管理器实例
        """
        self.config_manager = config_manager
        self.observer: Optional[Observer] = None
        self.change_callbacks: List[Callable] = []
        self.reload_failures = 0
        self._running = False
        self.logger = get_logger('config_watcher')

    def add_change_callback(self, callback: Callable):
        """
        添加配置变更回调函数

        Args:
            callback: 回调函数，参数为 (old_config, new_config)
        """
        self.change_callbacks.append(callback)

    def remove_change_callback(self, callback: Callable):
        """移除配置变更回调函数"""
        if callback in self.change_callbacks:
            self.change_callbacks.remove(callback)

    def on_config_changed(self):
        """重新加载配置并通知回调；新配置无效时保留旧配置"""
        if not self.config_manager.is_config_changed():
            self.logger.debug("配置文件修改时间未变化，跳过重新加载")
            return

        old_config = self.config_manager.config
        try:
            new_config = self.config_manager.reload_config()
        except OverseerError as e:
            self.reload_failures += 1
            self.logger.error(f"配置重新加载失败，继续使用当前配置: {e.format_error()}")
            return

        self.logger.info("配置文件已重新加载")

        for callback in list(self.change_callbacks):
            try:
                callback(old_config, new_config)
            except Exception as e:
                self.logger.exception(f"配置变更回调执行失败: {e}")

    def start_watching(self):
        """开始监控配置文件"""
        if self._running:
            self.logger.warning("配置监控器已经在运行")
            return

        config_path = os.path.abspath(self.config_manager.config_path)
        self.observer = Observer()
        self.observer.schedule(ConfigFileHandler(config_path, self.on_config_changed),
                               os.path.dirname(config_path), recursive=False)
        self.observer.daemon = True
        self.observer.start()
        self._running = True

        self.logger.info(f"开始监控配置文件: {config_path}")

    def stop_watching(self):
        """停止监控配置文件"""
        if not self._running:
            return

        if self.observer:
            self.observer.stop()
            self.observer.join(timeout=5)
            self.observer = None

        self._running = False
        self.logger.info("配置文件监控已停止")

    def is_running(self) -> bool:
        return self._running

    def __enter__(self):
        self.start_watching()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop_watching()
