"""状态查询HTTP服务

只读接口，数据全部来自状态汇总器的快照。
"""

from typing import Optional

from aiohttp import web

from ..models.health_check import HealthStatus
from ..utils.exceptions import TargetNotFoundError
from ..utils.log_manager import get_logger
from .aggregator import StatusAggregator


def create_app(aggregator: StatusAggregator, stats_provider=None) -> web.Application:
    """
    创建状态查询应用

    Args:
        aggregator: 状态汇总器
        stats_provider: 可选，返回运行统计信息的函数

    Returns:
        web.Application: aiohttp 应用
    """
    api = StatusAPI(aggregator, stats_provider)
    app = web.Application()
    app.router.add_get('/status', api.get_status)
    app.router.add_get('/targets', api.get_targets)
    app.router.add_get('/targets/{target_id}', api.get_target)
    app.router.add_get('/health', api.health)
    app.router.add_get('/transitions', api.get_transitions)
    return app


class StatusAPI:
    """状态查询接口处理函数"""

    def __init__(self, aggregator: StatusAggregator, stats_provider=None):
        self.aggregator = aggregator
        self.stats_provider = stats_provider

    async def get_status(self, request: web.Request) -> web.Response:
        """GET /status"""
        report = self.aggregator.get_status_report()
        if self.stats_provider is not None:
            report['stats'] = self.stats_provider()
        return web.json_response(report)

    async def get_targets(self, request: web.Request) -> web.Response:
        """GET /targets"""
        return web.json_response({'targets': self.aggregator.get_target_reports()})

    async def get_target(self, request: web.Request) -> web.Response:
        """GET /targets/{target_id}"""
        target_id = request.match_info['target_id']
        try:
            return web.json_response(self.aggregator.get_target_report(target_id))
        except TargetNotFoundError as e:
            return web.json_response({'error': e.to_dict()['message'],
                                      'error_code': e.error_code.name}, status=404)

    async def health(self, request: web.Request) -> web.Response:
        """GET /health，整体状态为 unhealthy 时返回 503"""
        overall = self.aggregator.overall_status()
        status = 503 if overall == HealthStatus.UNHEALTHY else 200
        return web.json_response({'status': overall.value}, status=status)

    async def get_transitions(self, request: web.Request) -> web.Response:
        """GET /transitions?limit=N"""
        limit_param = request.query.get('limit', '50')
        try:
            limit = int(limit_param)
        except ValueError:
            return web.json_response({'error': f"limit 参数无效: {limit_param}"}, status=400)

        events = self.aggregator.recent_transitions(limit)
        return web.json_response({'transitions': [event.to_dict() for event in events]})


class StatusServer:
    """状态查询HTTP服务"""

    def __init__(self, aggregator: StatusAggregator, host: str = '0.0.0.0', port: int = 3000,
                 stats_provider=None):
        """
        初始化状态服务

        Args:
            aggregator: 状态汇总器
            host: 监听地址
            port: 监听端口
            stats_provider: 可选，返回运行统计信息的函数
        """
        self.aggregator = aggregator
        self.host = host
        self.port = port
        self.app = create_app(aggregator, stats_provider)
        self._runner: Optional[web.AppRunner] = None
        self.logger = get_logger('status_server')

    async def start(self):
        """启动HTTP服务"""
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        self.logger.info(f"状态服务已启动: http://{self.host}:{self.port}")

    async def stop(self):
        """停止HTTP服务"""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            self.logger.info("状态服务已停止")
