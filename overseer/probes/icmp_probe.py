"""ICMP可达性探测器

通过系统 ping 命令（iputils-ping）发送回显请求，无需原始套接字权限。
"""

import asyncio
import math
import re
from typing import Dict, Any, Optional, List

from .base import BaseProbe, ProbeFailure
from .factory import register_probe
from ..models.health_check import FailureKind, ProbeKind
from ..models.target import Target

_RTT_PATTERN = re.compile(r'time[=<]\s*([\d.]+)\s*ms')
_RESOLUTION_ERRORS = (
    'unknown host',
    'name or service not known',
    'temporary failure in name resolution',
    'cannot resolve',
)


@register_probe(ProbeKind.ICMP)
class ICMPProbe(BaseProbe):
    """ICMP可达性探测器"""

    def validate_config(self) -> bool:
        """
        验证ICMP探测参数

        Returns:
            bool: 配置是否有效
        """
        host = self.target.address.strip()
        if not host or ' ' in host or host.startswith('-'):
            self.logger.error(f"ICMP探测地址无效: {self.target.address}")
            return False

        ping_command = self.options.get('ping_command', 'ping')
        if not isinstance(ping_command, str) or not ping_command:
            return False

        return True

    def build_command(self, host: str, wait_seconds: int) -> List[str]:
        """构造ping命令行"""
        return [
            self.options.get('ping_command', 'ping'),
            '-n',
            '-c', '1',
            '-W', str(wait_seconds),
            host,
        ]

    @staticmethod
    def parse_rtt(output: str) -> Optional[float]:
        """
        从ping输出中解析往返时间

        Returns:
            Optional[float]: 往返时间（秒）
        """
        match = _RTT_PATTERN.search(output)
        if match:
            return float(match.group(1)) / 1000.0
        return None

    async def _probe(self, target: Target, deadline: float,
                     metadata: Dict[str, Any]) -> Optional[float]:
        """发送一次ICMP回显请求"""
        host = target.address.strip()
        wait_seconds = max(1, math.ceil(self.remaining(deadline)))
        command = self.build_command(host, wait_seconds)

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except FileNotFoundError:
            raise ProbeFailure(FailureKind.UNREACHABLE, f"未找到ping命令: {command[0]}")

        try:
            stdout, stderr = await process.communicate()
        finally:
            # 截止时间到达时任务被取消，必须结束子进程
            if process.returncode is None:
                process.kill()
                await process.wait()

        output = stdout.decode('utf-8', errors='replace')
        error_output = stderr.decode('utf-8', errors='replace')
        metadata['returncode'] = process.returncode

        if process.returncode == 0:
            rtt = self.parse_rtt(output)
            if rtt is not None:
                metadata['rtt'] = rtt
            return rtt

        combined = f"{output}\n{error_output}".lower()
        if any(marker in combined for marker in _RESOLUTION_ERRORS):
            raise ProbeFailure(FailureKind.RESOLUTION_FAILURE,
                               f"无法解析主机: {host}")

        if process.returncode == 1:
            raise ProbeFailure(FailureKind.UNREACHABLE, f"主机 {host} 无回显应答")

        detail = error_output.strip() or output.strip()
        raise ProbeFailure(FailureKind.UNREACHABLE,
                           f"ping 执行失败 (退出码 {process.returncode}): {detail[:200]}")
