"""TCP连通性探测器"""

import asyncio
from typing import Dict, Any, Optional

from .base import BaseProbe, ProbeFailure, classify_os_error, split_host_port
from .factory import register_probe
from ..models.health_check import FailureKind, ProbeKind
from ..models.target import Target


@register_probe(ProbeKind.TCP)
class TCPProbe(BaseProbe):
    """TCP连通性探测器

    建立连接即视为健康；配置 expect_banner 时还要求服务端首包中包含该内容。
    """

    def validate_config(self) -> bool:
        """
        验证TCP探测参数

        Returns:
            bool: 配置是否有效
        """
        try:
            host, port = split_host_port(self.target.address, self.options.get('port'))
        except ValueError as e:
            self.logger.error(f"TCP探测地址无效: {self.target.address} ({e})")
            return False

        if not host or port is None:
            self.logger.error(f"TCP探测缺少主机或端口: {self.target.address}")
            return False

        banner = self.options.get('expect_banner')
        if banner is not None and not isinstance(banner, str):
            return False

        read_bytes = self.options.get('read_bytes', 1024)
        if not isinstance(read_bytes, int) or read_bytes <= 0:
            return False

        return True

    async def _probe(self, target: Target, deadline: float,
                     metadata: Dict[str, Any]) -> Optional[float]:
        """建立TCP连接"""
        host, port = split_host_port(target.address, self.options.get('port'))
        metadata['host'] = host
        metadata['port'] = port

        try:
            reader, writer = await asyncio.open_connection(host, port)
        except OSError as e:
            raise ProbeFailure(classify_os_error(e), f"TCP连接 {host}:{port} 失败: {e}")

        try:
            banner = self.options.get('expect_banner')
            if banner:
                data = await reader.read(self.options.get('read_bytes', 1024))
                metadata['banner'] = data.decode('utf-8', errors='replace')[:200]
                if banner.encode('utf-8') not in data:
                    raise ProbeFailure(FailureKind.UNEXPECTED_RESPONSE,
                                       f"服务端响应中未包含期望内容: {banner!r}")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as e:
                self.logger.debug(f"关闭TCP连接时出错: {e}")

        return None
