#!/usr/bin/env python3
"""
overseer 主应用程序入口

组装注册表、调度器、状态机、通知器和状态服务，
处理信号并按顺序优雅关闭。
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import Optional, Dict, Any, List

from overseer.alerts.factory import action_factory
from overseer.alerts.notifier import Notifier
from overseer.models.health_check import HealthStatus
from overseer.models.target import Target
from overseer.probes.factory import probe_factory
from overseer.services.aggregator import StatusAggregator
from overseer.services.config_manager import ConfigManager, CONFIG_ENV_VAR
from overseer.services.config_watcher import ConfigWatcher
from overseer.services.docker_discovery import DockerDiscovery
from overseer.services.registry import TargetRegistry
from overseer.services.scheduler import ProbeScheduler
from overseer.services.status_server import StatusServer
from overseer.utils.config_validator import ConfigValidator
from overseer.utils.exceptions import ErrorCode, OverseerError, InvariantViolationError
from overseer.utils.log_manager import log_manager, get_logger

# 注册全部探测器和通知动作
import overseer.probes  # noqa: F401
import overseer.alerts  # noqa: F401

# 版本信息
__version__ = "1.0.0"


class OverseerApp:
    """overseer 主应用程序类"""

    def __init__(self, config_path: str, log_overrides: Optional[Dict[str, Any]] = None):
        """初始化应用程序

        Args:
            config_path: 配置文件路径
            log_overrides: 命令行提供的日志配置，覆盖配置文件
        """
        self.config_path = config_path
        self.log_overrides = log_overrides or {}
        self.logger: Optional[logging.Logger] = None
        self.is_running = False
        self.shutdown_event: Optional[asyncio.Event] = None
        self.exit_code = 0

        # 核心组件
        self.config_manager: Optional[ConfigManager] = None
        self.config_watcher: Optional[ConfigWatcher] = None
        self.registry: Optional[TargetRegistry] = None
        self.scheduler: Optional[ProbeScheduler] = None
        self.notifier: Optional[Notifier] = None
        self.aggregator: Optional[StatusAggregator] = None
        self.status_server: Optional[StatusServer] = None
        self.discovery: Optional[DockerDiscovery] = None
        self.server_config: Dict[str, Any] = {'enabled': False}

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._scheduler_task: Optional[asyncio.Task] = None

    def initialize(self):
        """初始化应用程序组件

        Raises:
            InvalidConfigError: 配置无效，不允许部分运行
        """
        self.config_manager = ConfigManager(self.config_path)
        self.config_manager.load_config()

        self._configure_logging()
        self.logger = get_logger('main')
        self.logger.info("开始初始化 overseer")

        self.server_config = self.config_manager.get_status_server_config()
        self.registry = TargetRegistry(min_interval=self.config_manager.get_min_interval())
        for target in self.config_manager.targets:
            self.registry.register(target)

        actions = action_factory.create_actions(self.config_manager.get_actions_config())
        self.notifier = Notifier(actions)
        self.aggregator = StatusAggregator(self.registry)

        self.scheduler = ProbeScheduler(self.registry,
                                        worker_pool_size=self.config_manager.get_worker_pool_size())
        self.scheduler.add_transition_listener(self.aggregator.record_transition)
        self.scheduler.add_transition_listener(self.notifier.publish)

        discovery_config = self.config_manager.get_docker_discovery_config()
        if discovery_config['enabled']:
            self.discovery = DockerDiscovery(self.registry,
                                             uri=discovery_config['uri'],
                                             label_prefix=discovery_config['label_prefix'],
                                             defaults=discovery_config['defaults'],
                                             retry_delay=discovery_config['retry_delay'])

        self.config_watcher = ConfigWatcher(self.config_manager)
        self.config_watcher.add_change_callback(self._on_config_changed)

        self.logger.info(
            f"组件初始化完成: {len(self.registry)} 个目标, {len(actions)} 个通知动作")

    def _configure_logging(self):
        log_config = self.config_manager.get_logging_config()
        log_config.update(self.log_overrides)
        log_manager.configure(log_config)

    def _on_config_changed(self, old_config: Dict[str, Any], new_config: Dict[str, Any]):
        """配置文件变更回调（watchdog 线程）"""
        targets = list(self.config_manager.targets)
        actions_config = self.config_manager.get_actions_config()
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self.apply_config, targets, actions_config)

    def apply_config(self, targets: List[Target], actions_config: List[Dict[str, Any]]):
        """按新配置调整注册表和通知动作

        新配置中有任何无效目标或动作时整体忽略，保持当前运行状态。
        """
        try:
            for target in targets:
                ConfigValidator.validate_target(target, self.registry.min_interval)
                probe_factory.create_probe(target)
            actions = action_factory.create_actions(actions_config)
        except OverseerError as e:
            self.logger.error(f"新配置无效，忽略本次重新加载: {e.format_error()}")
            return

        self.reconcile_targets(targets)
        self.notifier.set_actions(actions)
        self.logger.info("配置重新加载完成")

    def reconcile_targets(self, targets: List[Target]):
        """注销已删除或已修改的目标，注册新增的目标

        容器发现注册的目标不受配置文件影响。
        """
        wanted = {target.id: target for target in targets}

        for current in self.registry.list():
            if self.discovery is not None and self.discovery.owns(current.id):
                continue
            if wanted.get(current.id) != current:
                self.registry.deregister(current.id)

        for target in targets:
            if target.id not in self.registry:
                self.registry.register(target)
            elif self.discovery is not None and self.discovery.owns(target.id):
                self.logger.warning(f"目标 {target.id} 已由容器发现注册，忽略配置文件中的同名目标")

    async def start(self):
        """启动应用程序并等待关闭信号

        Raises:
            OverseerError: 状态服务无法监听指定地址，或无法访问 Docker
        """
        if self.is_running:
            self.logger.warning("应用程序已经在运行")
            return

        self._loop = asyncio.get_running_loop()
        self.shutdown_event = asyncio.Event()
        self.is_running = True
        self.logger.info("启动 overseer")

        self._install_signal_handlers()
        self.notifier.start()

        try:
            if self.server_config['enabled']:
                await self._start_status_server()

            if self.discovery is not None:
                await self.discovery.start()

            self.config_watcher.start_watching()
            self._scheduler_task = asyncio.create_task(self.scheduler.start())
            shutdown_task = asyncio.create_task(self.shutdown_event.wait())
            try:
                await asyncio.wait([self._scheduler_task, shutdown_task],
                                   return_when=asyncio.FIRST_COMPLETED)
            finally:
                shutdown_task.cancel()
        finally:
            await self.stop()

    async def _start_status_server(self):
        host, port = self.server_config['host'], self.server_config['port']
        self.status_server = StatusServer(self.aggregator, host, port,
                                          stats_provider=self.get_status)
        try:
            await self.status_server.start()
        except OSError as e:
            self.exit_code = 1
            raise OverseerError(f"状态服务无法监听 {host}:{port}",
                                ErrorCode.INITIALIZATION_ERROR, cause=e, recoverable=False)

    def _install_signal_handlers(self):
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                self._loop.add_signal_handler(signum, self.shutdown, signum)
            except (NotImplementedError, RuntimeError):
                signal.signal(signum, lambda received, frame: self._loop.call_soon_threadsafe(
                    self.shutdown, received))

    def _remove_signal_handlers(self):
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                self._loop.remove_signal_handler(signum)
            except (NotImplementedError, RuntimeError):
                signal.signal(signum, signal.SIG_DFL)

    async def stop(self):
        """停止应用程序

        依次：停止派发并等待在途探测、强制取消剩余探测、刷新待发通知。
        """
        if not self.is_running:
            return

        self.logger.info("正在停止 overseer...")
        self.is_running = False
        grace_period = self.config_manager.get_shutdown_grace_period()

        self.config_watcher.stop_watching()
        if self.discovery is not None:
            await self.discovery.stop()

        task = self._scheduler_task
        self._scheduler_task = None
        if task is not None:
            if not task.done():
                task.cancel()
            results = await asyncio.gather(task, return_exceptions=True)
            if isinstance(results[0], InvariantViolationError):
                self.logger.critical(f"调度器因内部错误停止: {results[0].format_error()}")
                self.exit_code = 1

        await self.scheduler.stop(grace_period)

        await self.notifier.stop(flush_timeout=grace_period)

        if self.status_server is not None:
            await self.status_server.stop()

        self._remove_signal_handlers()
        self.logger.info("overseer 已停止")
        log_manager.cleanup()

    def shutdown(self, signum: Optional[int] = None):
        """触发应用程序关闭"""
        if signum is not None:
            self.logger.info(f"收到信号 {signal.Signals(signum).name}，开始关闭")
        if self.shutdown_event is not None:
            self.shutdown_event.set()

    def get_status(self) -> Dict[str, Any]:
        """获取应用程序运行状态"""
        status = {
            'is_running': self.is_running,
            'config_path': self.config_path,
            'version': __version__
        }
        if self.scheduler:
            status['scheduler'] = self.scheduler.get_scheduler_stats()
        if self.notifier:
            status['notifier'] = self.notifier.get_stats()
        if self.discovery:
            status['discovery'] = self.discovery.get_stats()
        return status


def create_argument_parser() -> argparse.ArgumentParser:
    """创建命令行参数解析器"""
    parser = argparse.ArgumentParser(
        prog='overseer',
        description='overseer - 周期探测网络目标的健康状态，并在状态变化时触发通知',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
示例用法:
  %(prog)s config.yaml                    # 使用指定配置文件启动
  %(prog)s --validate config.yaml        # 验证配置文件
  %(prog)s --check-once config.yaml      # 对所有目标探测一次后退出
  %(prog)s --test-alerts config.yaml     # 测试通知动作

未指定配置文件时读取环境变量 {CONFIG_ENV_VAR}。
支持的探测类型: dns, icmp, tcp, http
        """
    )

    parser.add_argument('config_file', nargs='?', help='YAML配置文件路径')
    parser.add_argument('--version', '-v', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--validate', action='store_true', help='验证配置文件并退出')
    parser.add_argument('--test-alerts', action='store_true', help='测试通知动作并退出')
    parser.add_argument('--check-once', action='store_true', help='对所有目标探测一次后退出')
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='设置日志级别（覆盖配置文件设置）'
    )
    parser.add_argument('--log-file', help='日志文件路径（覆盖配置文件设置）')

    return parser


def validate_config_file(config_path: str) -> bool:
    """验证配置文件

    Returns:
        验证是否成功
    """
    print(f"正在验证配置文件: {config_path}")
    try:
        config_manager = ConfigManager(config_path)
        config_manager.load_config()
        for target in config_manager.targets:
            probe_factory.create_probe(target)
        action_factory.create_actions(config_manager.get_actions_config())
    except OverseerError as e:
        print(f"❌ 配置文件验证失败: {e.format_error()}")
        return False

    print("✅ 配置文件验证成功!")
    print(f"   - 目标数量: {len(config_manager.targets)}")
    for target in config_manager.targets:
        print(f"     * {target.id} ({target.probe_kind.value}, 间隔 {target.interval}秒)")
    actions = config_manager.get_actions_config()
    print(f"   - 通知动作数量: {len(actions)}")
    for action in actions:
        print(f"     * {action['name']} ({action['type']})")
    return True


async def run_alert_test(app: OverseerApp) -> bool:
    """测试所有通知动作

    Returns:
        是否全部发送成功
    """
    results = await app.notifier.test_actions()
    if not results:
        print("没有配置通知动作")
        return False

    for name, success in results.items():
        print(f"   {'✅' if success else '❌'} {name}")
    return all(results.values())


async def check_once(app: OverseerApp) -> bool:
    """对所有目标执行一次探测

    Returns:
        是否全部探测成功
    """
    if app.discovery is not None:
        await app.discovery.refresh()
    results = await app.scheduler.check_all_now()
    print(f"健康检查完成，共检查 {len(results)} 个目标:")

    all_healthy = True
    for target_id, result in sorted(results.items()):
        if result.success:
            print(f"   ✅ {target_id}: 成功 (延迟: {result.latency:.3f}s)")
        else:
            print(f"   ❌ {target_id}: {result.outcome} - {result.message}")
            all_healthy = False

    overall = app.aggregator.overall_status()
    print(f"整体状态: {overall.value}")
    return all_healthy and overall == HealthStatus.HEALTHY


async def main(argv: Optional[List[str]] = None) -> int:
    """主函数

    Returns:
        进程退出码
    """
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    config_path = args.config_file or os.environ.get(CONFIG_ENV_VAR)
    if not config_path:
        parser.print_help()
        return 1

    if args.validate:
        return 0 if validate_config_file(config_path) else 1

    log_overrides = {}
    if args.log_level:
        log_overrides['log_level'] = args.log_level
    if args.log_file:
        log_overrides['log_file'] = args.log_file

    app = OverseerApp(config_path, log_overrides)
    try:
        app.initialize()
    except OverseerError as e:
        print(f"配置错误: {e.format_error()}", file=sys.stderr)
        return 1

    try:
        if args.test_alerts:
            return 0 if await run_alert_test(app) else 1

        if args.check_once:
            try:
                return 0 if await check_once(app) else 1
            finally:
                await app.notifier.stop(flush_timeout=app.config_manager.get_shutdown_grace_period())
                if app.discovery is not None:
                    await app.discovery.stop()

        print(f"overseer v{__version__} 已启动")
        print(f"配置文件: {config_path}")
        print("按 Ctrl+C 停止程序")
        await app.start()
        return app.exit_code

    except InvariantViolationError as e:
        print(f"内部错误: {e.format_error()}", file=sys.stderr)
        return 1
    except OverseerError as e:
        print(f"启动失败: {e.format_error()}", file=sys.stderr)
        return 1


def run():
    """命令行入口"""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
