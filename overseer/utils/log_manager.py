"""
日志管理器模块

提供统一的日志记录功能，支持控制台和文件输出、日志级别配置和日志轮转。
"""

import logging
import logging.handlers
import os
import sys
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any


class LogLevel(Enum):
    """日志级别枚举"""
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL


class LogManager:
    """
    日志管理器类（单例）

    所有组件通过 get_logger 获取以 ``overseer.`` 为前缀的日志记录器，
    处理器统一挂在 ``overseer`` 根记录器上，便于运行时重新配置。
    """

    ROOT_LOGGER_NAME = 'overseer'

    _instance: Optional['LogManager'] = None
    _initialized: bool = False

    def __new__(cls) -> 'LogManager':
        """单例模式实现"""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        """初始化日志管理器"""
        if self._initialized:
            return

        self._file_format = (
            '%(asctime)s - %(name)s - %(levelname)s - '
            '[%(filename)s:%(lineno)d] - %(message)s'
        )
        self._console_format = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'
        self._date_format = '%Y-%m-%d %H:%M:%S'

        self._log_level = LogLevel.INFO
        self._log_file: Optional[str] = None
        self._max_file_size = 10 * 1024 * 1024  # 10MB
        self._backup_count = 5
        self._enable_console = True
        self._enable_file = False

        self._root = logging.getLogger(self.ROOT_LOGGER_NAME)
        self._root.propagate = False
        self._apply()

        self._initialized = True

    def configure(self, config: Dict[str, Any]) -> None:
        """
        配置日志管理器

        Args:
            config: 日志配置字典，包含以下可选键：
                - log_level: 日志级别 (DEBUG, INFO, WARNING, ERROR, CRITICAL)
                - log_file: 日志文件路径
                - max_file_size: 最大文件大小（字节）
                - backup_count: 备份文件数量
                - enable_console: 是否启用控制台输出
                - enable_file: 是否启用文件输出
                - format / console_format / date_format: 格式配置

        Raises:
            ValueError: 日志级别无效
        """
        if 'log_level' in config:
            level_str = str(config['log_level']).upper()
            if not hasattr(LogLevel, level_str):
                raise ValueError(f"无效的日志级别: {level_str}")
            self._log_level = LogLevel[level_str]

        if config.get('log_file'):
            self._log_file = config['log_file']
            self._enable_file = True

        if 'max_file_size' in config:
            self._max_file_size = config['max_file_size']
        if 'backup_count' in config:
            self._backup_count = config['backup_count']
        if 'enable_console' in config:
            self._enable_console = config['enable_console']
        if 'enable_file' in config:
            self._enable_file = config['enable_file']
        if 'format' in config:
            self._file_format = config['format']
        if 'console_format' in config:
            self._console_format = config['console_format']
        if 'date_format' in config:
            self._date_format = config['date_format']

        self._apply()

    def _apply(self) -> None:
        """按当前配置重建根记录器的处理器"""
        for handler in list(self._root.handlers):
            self._root.removeHandler(handler)
            handler.close()

        self._root.setLevel(self._log_level.value)

        if self._enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(self._log_level.value)
            console_handler.setFormatter(
                logging.Formatter(self._console_format, datefmt=self._date_format))
            self._root.addHandler(console_handler)

        if self._enable_file and self._log_file:
            Path(self._log_file).parent.mkdir(parents=True, exist_ok=True)
            # 使用RotatingFileHandler实现日志轮转
            file_handler = logging.handlers.RotatingFileHandler(
                self._log_file,
                maxBytes=self._max_file_size,
                backupCount=self._backup_count,
                encoding='utf-8'
            )
            file_handler.setLevel(self._log_level.value)
            file_handler.setFormatter(
                logging.Formatter(self._file_format, datefmt=self._date_format))
            self._root.addHandler(file_handler)

    def get_logger(self, name: str) -> logging.Logger:
        """
        获取指定名称的日志记录器

        Args:
            name: 日志记录器名称（不含 overseer 前缀）

        Returns:
            logging.Logger: 日志记录器实例
        """
        if name == self.ROOT_LOGGER_NAME or name.startswith(self.ROOT_LOGGER_NAME + '.'):
            return logging.getLogger(name)
        return logging.getLogger(f'{self.ROOT_LOGGER_NAME}.{name}')

    def set_level(self, level: LogLevel) -> None:
        """
        设置全局日志级别

        Args:
            level: 新的日志级别
        """
        self._log_level = level
        self._root.setLevel(level.value)
        for handler in self._root.handlers:
            handler.setLevel(level.value)

    def get_log_stats(self) -> Dict[str, Any]:
        """获取日志配置信息"""
        stats = {
            'log_level': self._log_level.name,
            'file_logging_enabled': self._enable_file,
            'console_logging_enabled': self._enable_console,
            'log_file': self._log_file,
            'max_file_size': self._max_file_size,
            'backup_count': self._backup_count,
            'handlers_count': len(self._root.handlers)
        }

        if self._log_file and os.path.exists(self._log_file):
            stats['current_log_size'] = os.path.getsize(self._log_file)

        return stats

    def cleanup(self) -> None:
        """刷新并关闭所有处理器"""
        for handler in self._root.handlers:
            handler.flush()
            handler.close()


# 全局日志管理器实例
log_manager = LogManager()


def get_logger(name: str) -> logging.Logger:
    """
    获取日志记录器的便捷函数

    Args:
        name: 日志记录器名称

    Returns:
        logging.Logger: 日志记录器实例
    """
    return log_manager.get_logger(name)


def configure_logging(config: Dict[str, Any]) -> None:
    """
    配置日志系统的便捷函数

    Args:
        config: 日志配置字典
    """
    log_manager.configure(config)
