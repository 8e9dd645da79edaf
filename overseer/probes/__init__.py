"""探测器模块"""

from .base import BaseProbe, ProbeFailure, classify_os_error, split_host_port
from .factory import ProbeFactory, probe_factory, register_probe
from .dns_probe import DNSProbe
from .icmp_probe import ICMPProbe
from .tcp_probe import TCPProbe
from .http_probe import HTTPProbe

__all__ = ['BaseProbe', 'ProbeFailure', 'classify_os_error', 'split_host_port',
           'ProbeFactory', 'probe_factory', 'register_probe',
           'DNSProbe', 'ICMPProbe', 'TCPProbe', 'HTTPProbe']
