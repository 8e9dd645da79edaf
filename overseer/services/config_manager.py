"""配置管理器"""

import os
from typing import Dict, Any, List, Optional

import yaml

from ..alerts.factory import action_factory
from ..models.target import Target
from ..probes.factory import probe_factory
from ..utils.config_validator import ConfigValidator, parse_bind_address, parse_duration
from ..utils.exceptions import ErrorCode, InvalidConfigError
from ..utils.log_manager import get_logger

DEFAULT_BIND = '0.0.0.0:3000'
BIND_ENV_VAR = 'OVERSEER_BIND_URI'
CONFIG_ENV_VAR = 'OVERSEER_CONFIG'
DOCKER_ENV_VAR = 'OVERSEER_DOCKER_URI'
DEFAULT_DOCKER_URI = 'unix:///var/run/docker.sock'


class ConfigManager:
    """配置管理器，负责YAML配置文件的加载、解析和验证

    只有完整通过验证的配置才会替换当前配置。
    """

    def __init__(self, config_path: str):
        """
        初始化配置管理器

        Args:
            config_path: 配置文件路径
        """
        self.config_path = config_path
        self.config: Dict[str, Any] = {}
        self.targets: List[Target] = []
        self.last_modified: Optional[float] = None
        self.logger = get_logger('config_manager')

    def load_config(self) -> Dict[str, Any]:
        """
        加载YAML配置文件

        Returns:
            Dict[str, Any]: 配置字典

        Raises:
            InvalidConfigError: 配置加载或验证失败
        """
        self.logger.info(f"开始加载配置文件: {self.config_path}")

        try:
            with open(self.config_path, 'r', encoding='utf-8') as file:
                config = yaml.safe_load(file)
        except FileNotFoundError:
            raise InvalidConfigError(f"配置文件不存在: {self.config_path}",
                                     ErrorCode.CONFIG_FILE_NOT_FOUND,
                                     config_path=self.config_path)
        except PermissionError:
            raise InvalidConfigError(f"没有权限读取配置文件: {self.config_path}",
                                     ErrorCode.CONFIG_FILE_NOT_FOUND,
                                     config_path=self.config_path)
        except yaml.YAMLError as e:
            raise InvalidConfigError(f"YAML格式错误: {e}", ErrorCode.CONFIG_PARSE_ERROR,
                                     config_path=self.config_path, cause=e)
        except OSError as e:
            raise InvalidConfigError(f"读取配置文件失败: {e}", ErrorCode.CONFIG_FILE_NOT_FOUND,
                                     config_path=self.config_path, cause=e)

        if config is None:
            raise InvalidConfigError("配置文件为空", config_path=self.config_path)

        targets = self._validate_config(config)

        old_config = self.config
        self.config = config
        self.targets = targets
        self.last_modified = os.path.getmtime(self.config_path)

        self.logger.info(
            f"配置验证成功，包含 {len(targets)} 个目标和 {len(self.get_actions_config())} 个通知动作")
        if old_config:
            self._log_config_changes(old_config, config)

        return self.config

    def _validate_config(self, config: Any) -> List[Target]:
        """
        验证配置文件内容

        Returns:
            List[Target]: 构造好的目标列表

        Raises:
            InvalidConfigError: 配置验证失败
            DuplicateTargetError: 目标ID重复
        """
        if not isinstance(config, dict):
            raise InvalidConfigError("配置文件根节点必须是字典类型")

        unknown_sections = set(config) - {'global', 'targets', 'actions'}
        if unknown_sections:
            self.logger.warning(f"忽略未知的配置段: {', '.join(sorted(unknown_sections))}")

        global_config = config.get('global') or {}
        ConfigValidator.validate_global_config(global_config)

        targets_config = config.get('targets') or []
        ConfigValidator.validate_targets_config(targets_config)

        actions_config = config.get('actions') or []
        ConfigValidator.validate_actions_config(actions_config)

        defaults = global_config.get('defaults') or {}
        min_interval = parse_duration(global_config.get('min_interval', 1.0), 'min_interval')

        targets = []
        for target_config in targets_config:
            target = ConfigValidator.build_target(target_config, defaults)
            ConfigValidator.validate_target(target, min_interval)
            probe_factory.create_probe(target)
            targets.append(target)

        action_factory.create_actions(actions_config)
        return targets

    def get_global_config(self) -> Dict[str, Any]:
        """获取全局配置"""
        return self.config.get('global') or {}

    def get_targets_config(self) -> List[Dict[str, Any]]:
        """获取原始目标配置列表"""
        return self.config.get('targets') or []

    def get_actions_config(self) -> List[Dict[str, Any]]:
        """获取通知动作配置列表"""
        return self.config.get('actions') or []

    def get_worker_pool_size(self) -> int:
        return self.get_global_config().get('worker_pool_size', 32)

    def get_min_interval(self) -> float:
        return parse_duration(self.get_global_config().get('min_interval', 1.0), 'min_interval')

    def get_shutdown_grace_period(self) -> float:
        return parse_duration(self.get_global_config().get('shutdown_grace_period', 10),
                              'shutdown_grace_period')

    def get_logging_config(self) -> Dict[str, Any]:
        """获取日志配置，键名转换为 LogManager.configure 使用的名称"""
        global_config = self.get_global_config()
        key_map = {
            'log_level': 'log_level',
            'log_file': 'log_file',
            'max_log_size': 'max_file_size',
            'log_backup_count': 'backup_count',
            'log_format': 'format',
            'date_format': 'date_format',
        }
        return {
            target_key: global_config[source_key]
            for source_key, target_key in key_map.items()
            if source_key in global_config
        }

    def get_status_server_config(self) -> Dict[str, Any]:
        """
        获取状态服务配置

        监听地址优先取 OVERSEER_BIND_URI 环境变量。

        Returns:
            Dict[str, Any]: {'enabled', 'host', 'port'}
        """
        server_config = self.get_global_config().get('status_server') or {}
        bind = os.environ.get(BIND_ENV_VAR) or server_config.get('bind', DEFAULT_BIND)
        host, port = parse_bind_address(bind)
        return {
            'enabled': server_config.get('enabled', True),
            'host': host,
            'port': port
        }

    def get_docker_discovery_config(self) -> Dict[str, Any]:
        """
        获取容器发现配置

        Docker 地址优先取 OVERSEER_DOCKER_URI 环境变量。

        Returns:
            Dict[str, Any]: {'enabled', 'uri', 'label_prefix', 'retry_delay', 'defaults'}
        """
        discovery_config = self.get_global_config().get('docker_discovery') or {}
        return {
            'enabled': discovery_config.get('enabled', False),
            'uri': (os.environ.get(DOCKER_ENV_VAR) or discovery_config.get('uri')
                    or DEFAULT_DOCKER_URI),
            'label_prefix': discovery_config.get('label_prefix', 'overseer.'),
            'retry_delay': parse_duration(discovery_config.get('retry_delay', 5),
                                          'docker_discovery.retry_delay'),
            'defaults': self.get_global_config().get('defaults') or {}
        }

    def is_config_changed(self) -> bool:
        """
        检查配置文件是否已修改

        Returns:
            bool: 配置文件是否已修改
        """
        try:
            current_modified = os.path.getmtime(self.config_path)
        except OSError:
            return False
        return self.last_modified is None or current_modified != self.last_modified

    def reload_config(self) -> Dict[str, Any]:
        """
        重新加载配置文件，失败时保留当前配置

        Raises:
            InvalidConfigError: 配置重新加载失败
        """
        self.logger.info("重新加载配置文件")
        return self.load_config()

    def _log_config_changes(self, old_config: Dict[str, Any], new_config: Dict[str, Any]) -> None:
        old_targets = {t.get('id'): t for t in old_config.get('targets') or []}
        new_targets = {t.get('id'): t for t in new_config.get('targets') or []}

        added = set(new_targets) - set(old_targets)
        if added:
            self.logger.info(f"新增目标: {', '.join(sorted(map(str, added)))}")

        removed = set(old_targets) - set(new_targets)
        if removed:
            self.logger.info(f"删除目标: {', '.join(sorted(map(str, removed)))}")

        for target_id in set(old_targets) & set(new_targets):
            if old_targets[target_id] != new_targets[target_id]:
                self.logger.info(f"目标配置已修改: {target_id}")

        if (old_config.get('actions') or []) != (new_config.get('actions') or []):
            self.logger.info("通知动作配置已修改")

        if (old_config.get('global') or {}) != (new_config.get('global') or {}):
            self.logger.info("全局配置已修改，部分设置需重启后生效")
