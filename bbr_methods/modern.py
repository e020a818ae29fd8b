"""
Modern BBR configuration method (kernel 5.4+).

Loads tcp_bbr at boot through modules-load.d and installs a dedicated
sysctl.d file with BBR plus buffer and TCP tuning, then reloads every
sysctl source.
"""

from typing import List, Tuple

from bbr_methods import (
    BBR,
    BBR_MODULE,
    CONGESTION_CONTROL_KEY,
    FQ,
    QDISC_KEY,
    report,
    reset_runtime_defaults,
    sysctl_line,
)

NAME = "modern"
DESCRIPTION = "Dedicated sysctl.d profile with TCP tuning (kernel 5.4+)"

MODULES_LOAD_FILE = '/etc/modules-load.d/bbr-smart.conf'
SYSCTL_FILE = '/etc/sysctl.d/99-bbr-smart.conf'

SETTINGS: List[Tuple[str, List[Tuple[str, str]]]] = [
    ('BBR TCP Congestion Control', [
        (QDISC_KEY, FQ),
        (CONGESTION_CONTROL_KEY, BBR),
    ]),
    ('Advanced TCP Optimizations', [
        ('net.ipv4.tcp_notsent_lowat', '16384'),
        ('net.ipv4.tcp_fastopen', '3'),
        ('net.ipv4.tcp_mtu_probing', '1'),
        ('net.ipv4.tcp_slow_start_after_idle', '0'),
        ('net.ipv4.tcp_window_scaling', '1'),
    ]),
    ('Buffer sizes', [
        ('net.ipv4.tcp_rmem', '4096 87380 67108864'),
        ('net.ipv4.tcp_wmem', '4096 65536 67108864'),
        ('net.core.rmem_max', '67108864'),
        ('net.core.wmem_max', '67108864'),
    ]),
    ('Network performance', [
        ('net.core.netdev_max_backlog', '5000'),
    ]),
]


def render_config() -> str:
    """Render the sysctl.d file content"""
    blocks = []
    for title, params in SETTINGS:
        lines = [f"# {title}"]
        lines.extend(sysctl_line(key, value) for key, value in params)
        blocks.append('\n'.join(lines))
    return '\n\n'.join(blocks) + '\n'


def is_installed(target) -> bool:
    return target.exists(SYSCTL_FILE)


def install(target, progress=None) -> bool:
    """Install the modern profile; returns False if a write or reload failed"""
    report(progress, 1, 5, "Loading BBR kernel module...")
    # Built-in tcp_bbr makes modprobe fail, the sysctl reload still works
    target.load_module(BBR_MODULE)

    report(progress, 2, 5, "Configuring module auto-load...")
    if not target.write_file(MODULES_LOAD_FILE, f"{BBR_MODULE}\n"):
        return False

    report(progress, 3, 5, "Creating optimized configuration...")
    if not target.write_file(SYSCTL_FILE, render_config()):
        return False

    report(progress, 4, 5, "Applying system settings...")
    reloaded = target.reload()

    report(progress, 5, 5, "Installation completed!")
    return reloaded


def uninstall(target, progress=None) -> bool:
    report(progress, 1, 4, "Removing sysctl configuration...")
    target.remove_file(SYSCTL_FILE)

    report(progress, 2, 4, "Removing module configuration...")
    target.remove_file(MODULES_LOAD_FILE)

    report(progress, 3, 4, "Resetting to default settings...")
    reset = reset_runtime_defaults(target)

    report(progress, 4, 4, "Uninstallation completed!")
    return reset
