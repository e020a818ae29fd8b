"""
BBR configuration methods package.

This package contains the configuration procedures that can be loaded
dynamically. Each method module should export NAME, DESCRIPTION and the
functions is_installed(target), install(target, progress=None) and
uninstall(target, progress=None), where target is a ConfigurationTarget.
"""

from typing import Optional, Tuple

__version__ = "1.0.0"

CONGESTION_CONTROL_KEY = 'net.ipv4.tcp_congestion_control'
QDISC_KEY = 'net.core.default_qdisc'

BBR = 'bbr'
FQ = 'fq'
DEFAULT_CONGESTION_CONTROL = 'cubic'
DEFAULT_QDISC = 'pfifo_fast'

BBR_MODULE = 'tcp_bbr'


def sysctl_line(key: str, value: str) -> str:
    """Format a sysctl assignment the way the config files are written"""
    return f"{key} = {value}"


def parse_sysctl_line(line: str) -> Optional[Tuple[str, str]]:
    """Parse 'key = value' into a tuple, None for comments and blanks"""
    line = line.strip()
    if not line or line.startswith(('#', ';')) or '=' not in line:
        return None
    key, value = line.split('=', 1)
    return key.strip(), value.strip()


def reset_runtime_defaults(target) -> bool:
    """Put congestion control and qdisc back to the kernel defaults"""
    cc_ok = target.write(CONGESTION_CONTROL_KEY, DEFAULT_CONGESTION_CONTROL)
    qdisc_ok = target.write(QDISC_KEY, DEFAULT_QDISC)
    return cc_ok and qdisc_ok


def report(progress, current: int, total: int, message: str):
    if progress:
        progress(current, total, message)
