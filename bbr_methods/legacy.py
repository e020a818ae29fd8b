"""
Legacy BBR configuration method (kernel 4.9 to 5.3).

Rewrites the two BBR assignments in the general /etc/sysctl.conf and
reloads only that file.
"""

from bbr_methods import (
    BBR,
    CONGESTION_CONTROL_KEY,
    FQ,
    QDISC_KEY,
    parse_sysctl_line,
    report,
    reset_runtime_defaults,
    sysctl_line,
)

NAME = "legacy"
DESCRIPTION = "Two assignments appended to /etc/sysctl.conf (kernel 4.9+)"

SYSCTL_CONF = '/etc/sysctl.conf'

MANAGED_KEYS = (QDISC_KEY, CONGESTION_CONTROL_KEY)
APPENDED = ((QDISC_KEY, FQ), (CONGESTION_CONTROL_KEY, BBR))


def _read_lines(target):
    return (target.read_file(SYSCTL_CONF) or '').splitlines()


def _join(lines) -> str:
    return '\n'.join(lines) + '\n' if lines else ''


def is_installed(target) -> bool:
    return any(parse_sysctl_line(line) == (CONGESTION_CONTROL_KEY, BBR)
               for line in _read_lines(target))


def install(target, progress=None) -> bool:
    report(progress, 1, 4, "Cleaning old configurations...")
    lines = []
    for line in _read_lines(target):
        parsed = parse_sysctl_line(line)
        if parsed and parsed[0] in MANAGED_KEYS:
            continue
        lines.append(line)

    report(progress, 2, 4, "Adding BBR configuration...")
    lines.extend(sysctl_line(key, value) for key, value in APPENDED)
    if not target.write_file(SYSCTL_CONF, _join(lines), backup=True):
        return False

    report(progress, 3, 4, "Applying settings...")
    reloaded = target.reload(SYSCTL_CONF)

    report(progress, 4, 4, "Installation completed!")
    return reloaded


def uninstall(target, progress=None) -> bool:
    report(progress, 1, 3, "Cleaning sysctl.conf...")
    lines = [line for line in _read_lines(target)
             if parse_sysctl_line(line) not in APPENDED]
    written = target.write_file(SYSCTL_CONF, _join(lines), backup=True)

    report(progress, 2, 3, "Resetting to default settings...")
    reset = reset_runtime_defaults(target)

    report(progress, 3, 3, "Uninstallation completed!")
    return written and reset
