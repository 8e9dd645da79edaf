"""HTTP存活探测器"""

import asyncio
from typing import Dict, Any, Optional

import aiohttp

from .base import BaseProbe, ProbeFailure, classify_os_error
from .factory import register_probe
from ..models.health_check import FailureKind, ProbeKind
from ..models.target import Target


@register_probe(ProbeKind.HTTP)
class HTTPProbe(BaseProbe):
    """HTTP存活探测器"""

    VALID_METHODS = ['GET', 'POST', 'PUT', 'DELETE', 'HEAD', 'OPTIONS', 'PATCH']

    def validate_config(self) -> bool:
        """
        验证HTTP探测参数

        Returns:
            bool: 配置是否有效
        """
        url = self.target.address
        if not isinstance(url, str) or not url.startswith(('http://', 'https://')):
            self.logger.error(f"HTTP探测地址必须是http(s) URL: {url}")
            return False

        method = str(self.options.get('method', 'GET')).upper()
        if method not in self.VALID_METHODS:
            return False

        expected_status = self.options.get('expected_status', 200)
        if not isinstance(expected_status, (int, list)):
            return False

        if isinstance(expected_status, list):
            if not expected_status:
                return False
            for status in expected_status:
                if not isinstance(status, int) or status < 100 or status > 599:
                    return False
        elif not (100 <= expected_status <= 599):
            return False

        headers = self.options.get('headers', {})
        if not isinstance(headers, dict):
            return False

        expected_content = self.options.get('expected_content')
        if expected_content is not None and not isinstance(expected_content, str):
            return False

        return True

    def _is_status_expected(self, status_code: int) -> bool:
        """
        检查状态码是否符合期望

        Args:
            status_code: HTTP状态码

        Returns:
            bool: 是否符合期望
        """
        expected_status = self.options.get('expected_status', 200)

        if isinstance(expected_status, list):
            return status_code in expected_status
        return status_code == expected_status

    async def _probe(self, target: Target, deadline: float,
                     metadata: Dict[str, Any]) -> Optional[float]:
        """发送HTTP请求"""
        method = str(self.options.get('method', 'GET')).upper()
        headers = self.options.get('headers', {})
        timeout = aiohttp.ClientTimeout(total=self.remaining(deadline))
        connector = aiohttp.TCPConnector(
            ssl=None if self.options.get('verify_ssl', True) else False)

        try:
            async with aiohttp.ClientSession(timeout=timeout, connector=connector) as session:
                async with session.request(
                        method,
                        target.address,
                        headers=headers,
                        allow_redirects=self.options.get('follow_redirects', True)
                ) as response:
                    metadata['status_code'] = response.status

                    if not self._is_status_expected(response.status):
                        raise ProbeFailure(FailureKind.UNEXPECTED_RESPONSE,
                                           f"HTTP状态码不符合期望: {response.status}")

                    expected_content = self.options.get('expected_content')
                    if expected_content:
                        content = await response.text()
                        metadata['response_length'] = len(content)
                        if expected_content not in content:
                            raise ProbeFailure(FailureKind.UNEXPECTED_RESPONSE,
                                               f"响应内容中未包含: {expected_content!r}")

        except asyncio.TimeoutError:
            # aiohttp 的超时异常同时继承 ClientError，交给基类按超时处理
            raise
        except aiohttp.ClientConnectorError as e:
            kind = classify_os_error(getattr(e, 'os_error', None))
            raise ProbeFailure(kind, f"HTTP连接失败: {e}")
        except aiohttp.ClientError as e:
            raise ProbeFailure(FailureKind.UNREACHABLE, f"HTTP客户端错误: {e}")

        return None
