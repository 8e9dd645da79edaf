"""DNS解析探测器"""

import asyncio
import socket
from typing import Dict, Any, Optional, List

from .base import BaseProbe, ProbeFailure
from .factory import register_probe
from ..models.health_check import FailureKind, ProbeKind
from ..models.target import Target


@register_probe(ProbeKind.DNS)
class DNSProbe(BaseProbe):
    """DNS解析探测器

    解析成功且（如果配置了 expected_addresses）解析结果匹配时视为健康。
    """

    FAMILIES = {
        'any': socket.AF_UNSPEC,
        'ipv4': socket.AF_INET,
        'ipv6': socket.AF_INET6,
    }
    MATCH_MODES = ('any', 'all')

    def validate_config(self) -> bool:
        """
        验证DNS探测参数

        Returns:
            bool: 配置是否有效
        """
        hostname = self.target.address.strip()
        if not hostname or ' ' in hostname or '/' in hostname:
            self.logger.error(f"DNS探测地址无效: {self.target.address}")
            return False

        if self.options.get('family', 'any') not in self.FAMILIES:
            self.logger.error(f"DNS探测地址族无效: {self.options.get('family')}")
            return False

        if self.options.get('match', 'any') not in self.MATCH_MODES:
            self.logger.error(f"DNS探测匹配模式无效: {self.options.get('match')}")
            return False

        expected = self.options.get('expected_addresses')
        if expected is not None:
            if not isinstance(expected, list) or not expected:
                return False
            if not all(isinstance(address, str) for address in expected):
                return False

        return True

    def _match_expected(self, addresses: List[str]) -> Optional[str]:
        """
        检查解析结果是否符合期望

        Returns:
            Optional[str]: 不匹配时返回错误描述
        """
        expected = self.options.get('expected_addresses')
        if not expected:
            return None

        resolved = set(addresses)
        if self.options.get('match', 'any') == 'all':
            missing = [address for address in expected if address not in resolved]
            if missing:
                return f"解析结果缺少期望地址: {', '.join(missing)}"
        elif not resolved.intersection(expected):
            return f"解析结果 {addresses} 不包含任何期望地址"

        return None

    async def _probe(self, target: Target, deadline: float,
                     metadata: Dict[str, Any]) -> Optional[float]:
        """执行DNS解析"""
        hostname = target.address.strip()
        family = self.FAMILIES[self.options.get('family', 'any')]
        loop = asyncio.get_running_loop()

        try:
            infos = await loop.getaddrinfo(hostname, None, family=family,
                                           type=socket.SOCK_STREAM)
        except socket.gaierror as e:
            raise ProbeFailure(FailureKind.RESOLUTION_FAILURE, f"域名解析失败: {e}")
        except UnicodeError as e:
            raise ProbeFailure(FailureKind.RESOLUTION_FAILURE, f"域名格式无效: {e}")

        addresses = sorted({info[4][0] for info in infos})
        metadata['addresses'] = addresses

        if not addresses:
            raise ProbeFailure(FailureKind.RESOLUTION_FAILURE, "域名解析结果为空")

        mismatch = self._match_expected(addresses)
        if mismatch:
            raise ProbeFailure(FailureKind.UNEXPECTED_RESPONSE, mismatch)

        return None
