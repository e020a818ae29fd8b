#!/usr/bin/env python3
"""
BBR Smart - TCP BBR Installation and Management Tool
====================================================

Enables and tunes the BBR TCP congestion control algorithm on Linux hosts,
choosing the configuration method from the running kernel, and measures
network performance before and after activation.

Version: 1.0.0
License: MIT
Python: 3.7+

Features:
- Automatic system detection (kernel, distribution, architecture, virtualization)
- Smart method selection (modern sysctl.d profile vs legacy sysctl.conf)
- No reboot required
- Interactive menu and one-shot CLI modes
- Network performance testing with a before/after log
- Dry-run mode and YAML configuration
"""

import argparse
import importlib
import json
import logging
import os
import pkgutil
import re
import shutil
import subprocess
import sys
import tempfile
import time
from dataclasses import dataclass, fields
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple, Union

import yaml

from bbr_methods import (
    BBR,
    BBR_MODULE,
    CONGESTION_CONTROL_KEY,
    QDISC_KEY,
)

# Tool version
VERSION = "1.0.0"

MODES = ('install', 'uninstall', 'status', 'info', 'test-before', 'test-after',
         'compare', 'install-tools', 'show-log')

DEFAULT_CONFIG_PATH = '/etc/bbr-smart/config.yaml'

MIN_BBR_KERNEL = (4, 9)
MODERN_KERNEL = (5, 4)

PLACEHOLDER = 'N/A'

# Tools the performance tests rely on
TEST_TOOLS = ('curl', 'ping', 'iperf3')

# Probed in order, the first one found is used
PACKAGE_MANAGERS = (
    ('apt-get', {'ping': 'iputils-ping'}),
    ('yum', {'ping': 'iputils'}),
    ('dnf', {'ping': 'iputils'}),
)

# Color codes for terminal output
class Colors:
    RED = '\033[91m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    BLUE = '\033[94m'
    BOLD = '\033[1m'
    RESET = '\033[0m'

    BRIGHT_RED = '\033[1;31m'
    BRIGHT_GREEN = '\033[1;32m'
    BRIGHT_YELLOW = '\033[1;33m'
    BRIGHT_CYAN = '\033[1;36m'

class Severity(Enum):
    """Severity levels for operator messages"""
    CRITICAL = "CRITICAL"
    WARNING = "WARNING"
    INFO = "INFO"
    SUCCESS = "SUCCESS"

# Severity icons (text-based, no emojis)
class SeverityIcons:
    CRITICAL = "[!]"
    WARNING = "[⚠]"
    INFO = "[i]"
    SUCCESS = "[✓]"

class ColorManager:
    """Manages color output based on terminal capabilities and user preferences"""

    def __init__(self):
        self.colors_enabled = self._should_use_colors()

    def _should_use_colors(self) -> bool:
        """Determine if colors should be used based on terminal and environment"""
        # Check NO_COLOR environment variable (per no-color.org)
        if os.environ.get('NO_COLOR'):
            return False

        if not sys.stdout.isatty():
            return False

        term = os.environ.get('TERM', '')
        if term in ['dumb', 'unknown']:
            return False

        return True

    def set_colors_enabled(self, enabled: bool):
        """Override color settings (for --no-color flag)"""
        self.colors_enabled = enabled

    def colorize(self, text: str, severity: Severity) -> str:
        """Apply color coding based on severity"""
        if not self.colors_enabled:
            return text

        color_map = {
            Severity.CRITICAL: f"{Colors.BRIGHT_RED}{Colors.BOLD}",
            Severity.WARNING: f"{Colors.BRIGHT_YELLOW}{Colors.BOLD}",
            Severity.INFO: f"{Colors.BRIGHT_CYAN}",
            Severity.SUCCESS: f"{Colors.BRIGHT_GREEN}{Colors.BOLD}"
        }

        color = color_map[severity]
        return f"{color}{text}{Colors.RESET}"

    def color(self, color_code: str, text: str) -> str:
        """Apply specific color if colors are enabled"""
        if not self.colors_enabled:
            return text
        return f"{color_code}{text}{Colors.RESET}"

    def status(self, severity: Severity, message: str) -> str:
        """Colored severity icon followed by the message"""
        icon_map = {
            Severity.CRITICAL: SeverityIcons.CRITICAL,
            Severity.WARNING: SeverityIcons.WARNING,
            Severity.INFO: SeverityIcons.INFO,
            Severity.SUCCESS: SeverityIcons.SUCCESS
        }
        icon = icon_map.get(severity, SeverityIcons.INFO)
        return f"{self.colorize(icon, severity)} {message}"

    def print_progress(self, current: int, total: int, message: str, width: int = 40):
        """Print a one-line progress bar"""
        total = max(total, 1)
        current = min(max(current, 0), total)
        completed = current * width // total
        bar = '█' * completed + '░' * (width - completed)
        label = self.color(Colors.BLUE, '[PROGRESS]')
        print(f"{label} {message} [{bar}] {current * 100 // total}%")

class FatalPrecondition(Exception):
    """Host cannot run BBR or the program lacks privileges; nothing was changed"""

class VirtualizationKind(Enum):
    NONE = 'none'
    KVM = 'kvm'
    VMWARE = 'vmware'
    XEN = 'xen'
    OPENVZ = 'openvz'
    LXC = 'lxc'
    OTHER = 'other'

    @classmethod
    def from_detector(cls, raw: str) -> 'VirtualizationKind':
        """Map systemd-detect-virt / virt-what output to a kind"""
        value = raw.strip().lower()
        if value in ('', 'none'):
            return cls.NONE
        if value in ('kvm', 'qemu'):
            return cls.KVM
        if value == 'vmware':
            return cls.VMWARE
        if value.startswith('xen'):
            return cls.XEN
        if value == 'openvz':
            return cls.OPENVZ
        if value.startswith('lxc'):
            return cls.LXC
        return cls.OTHER

UNSUPPORTED_VIRTUALIZATION = (VirtualizationKind.OPENVZ, VirtualizationKind.LXC)

class InstallationState(Enum):
    NONE = 'none'
    LEGACY = 'legacy'
    MODERN = 'modern'

class Action(Enum):
    UNSUPPORTED = 'unsupported'
    ALREADY_ACTIVE = 'already_active'
    MODERN = 'modern'
    LEGACY = 'legacy'

class RunLabel(Enum):
    BEFORE = 'BEFORE'
    AFTER = 'AFTER'
    CURRENT = 'CURRENT'

def kernel_at_least(major: int, minor: int, required: Tuple[int, int]) -> bool:
    """Compare major first, minor only when the majors are equal"""
    required_major, required_minor = required
    if major != required_major:
        return major > required_major
    return minor >= required_minor

def parse_kernel_version(release: str) -> Tuple[int, int]:
    """Extract (major, minor) from a release string like '5.10.0-21-amd64'"""
    base = release.strip().split('-', 1)[0]
    numbers = []
    for part in base.split('.')[:2]:
        match = re.match(r'\d+', part)
        numbers.append(int(match.group(0)) if match else 0)
    while len(numbers) < 2:
        numbers.append(0)
    return numbers[0], numbers[1]

@dataclass(frozen=True)
class SystemFacts:
    """Host facts gathered once per run"""
    kernel_release: str
    kernel_major: int
    kernel_minor: int
    os_name: str
    architecture: str
    virtualization: VirtualizationKind

    @property
    def supports_bbr(self) -> bool:
        return kernel_at_least(self.kernel_major, self.kernel_minor, MIN_BBR_KERNEL)

    @property
    def modern_kernel(self) -> bool:
        return kernel_at_least(self.kernel_major, self.kernel_minor, MODERN_KERNEL)

@dataclass
class Decision:
    """What to do with this host"""
    action: Action
    reason: str

def decide(facts: SystemFacts, current_congestion_control: Optional[str]) -> Decision:
    """Pick unsupported, already active, modern or legacy for the host"""
    if facts.virtualization in UNSUPPORTED_VIRTUALIZATION:
        return Decision(
            Action.UNSUPPORTED,
            f"Virtualization method '{facts.virtualization.value}' is not supported for BBR"
        )

    if not facts.supports_bbr:
        return Decision(
            Action.UNSUPPORTED,
            f"Your kernel version is too old ({facts.kernel_release}). "
            f"Please upgrade to kernel 4.9+ and run this program again."
        )

    if current_congestion_control == BBR:
        return Decision(Action.ALREADY_ACTIVE, "BBR is already active on this system!")

    if facts.modern_kernel:
        return Decision(Action.MODERN, "Modern kernel detected - using optimized BBR method")

    return Decision(Action.LEGACY, "Legacy kernel detected - using compatible BBR method")

def detect_installation_state(modern_present: bool, legacy_present: bool) -> InstallationState:
    """Installed variant from what is on disk; the modern profile wins"""
    if modern_present:
        return InstallationState.MODERN
    if legacy_present:
        return InstallationState.LEGACY
    return InstallationState.NONE

@dataclass
class Settings:
    """Runtime settings, overridable from the YAML config file"""
    performance_log: str = '/tmp/bbr-performance.log'
    download_url: str = 'http://cachefly.cachefly.net/100mb.test'
    latency_target: str = '8.8.8.8'
    ping_count: int = 4
    connect_url: str = 'http://www.google.com'
    iperf_server: str = 'iperf.he.net'
    iperf_duration: int = 5
    iperf_timeout: int = 10
    backup_files: bool = True

def load_settings(config_path: Optional[str], logger: logging.Logger) -> Settings:
    """Load settings from YAML; anything missing or invalid keeps its default"""
    settings = Settings()
    path = config_path or DEFAULT_CONFIG_PATH

    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        if config_path:
            logger.warning(f"Config file {path} not found, using defaults")
        else:
            logger.debug(f"No config file found at {path}")
        return settings
    except yaml.YAMLError as e:
        logger.error(f"Failed to parse config {path}: {e}")
        return settings
    except OSError as e:
        logger.error(f"Failed to read config {path}: {e}")
        return settings

    if data is None:
        return settings
    if not isinstance(data, dict):
        logger.warning(f"Config {path} is not a mapping, ignoring it")
        return settings

    known = {field.name for field in fields(Settings)}
    for key, value in data.items():
        if key not in known:
            logger.warning(f"Unknown config key '{key}' in {path}")
            continue
        default = getattr(settings, key)
        if type(value) is not type(default):
            logger.warning(f"Config key '{key}' should be {type(default).__name__}, "
                           f"got {type(value).__name__}; keeping {default!r}")
            continue
        setattr(settings, key, value)

    logger.info(f"Loaded settings from {path}")
    return settings

def setup_logging(verbose: bool = False) -> logging.Logger:
    """Configure logging"""
    logger = logging.getLogger('bbr_smart')
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '%(asctime)s - %(levelname)s - %(message)s'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger

class CommandRunner:
    """Runs external commands, never raises"""

    # Missing ones are reported by the caller, not as errors here
    OPTIONAL_TOOLS = ('curl', 'ping', 'iperf3', 'systemd-detect-virt', 'virt-what', 'lsmod')

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def run(self, cmd: Union[str, List[str]],
            timeout: Optional[float] = 30) -> Tuple[int, str, str]:
        """Execute system command, returning (exit code, stdout, stderr)"""
        if isinstance(cmd, str):
            cmd = cmd.split()

        try:
            self.logger.debug(f"Executing command: {' '.join(cmd)}")

            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout
            )

            self.logger.debug(f"Command exit code: {result.returncode}")
            if result.stdout:
                self.logger.debug(f"Command stdout: {result.stdout[:500]}...")
            if result.stderr:
                self.logger.debug(f"Command stderr: {result.stderr[:500]}...")

            return result.returncode, result.stdout, result.stderr

        except subprocess.TimeoutExpired:
            self.logger.warning(f"Command timed out after {timeout}s: {' '.join(cmd)}")
            return -1, "", f"Command timed out after {timeout}s"
        except FileNotFoundError as e:
            if cmd[0] in self.OPTIONAL_TOOLS:
                self.logger.debug(f"Optional tool not found: {cmd[0]}")
            else:
                self.logger.error(f"Required command not found: {' '.join(cmd)}")
            return -1, "", str(e)
        except OSError as e:
            self.logger.error(f"Failed to run {' '.join(cmd)}: {e}")
            return -1, "", str(e)

    def available(self, tool: str) -> bool:
        return shutil.which(tool) is not None

class SystemProber:
    """Read-only queries about the host"""

    def __init__(self, runner: CommandRunner,
                 os_release_path: str = '/etc/os-release',
                 redhat_release_path: str = '/etc/redhat-release'):
        self.runner = runner
        self.os_release_path = os_release_path
        self.redhat_release_path = redhat_release_path

    def kernel_release(self) -> str:
        code, stdout, _ = self.runner.run(['uname', '-r'])
        if code == 0 and stdout.strip():
            return stdout.strip()
        return os.uname().release

    def architecture(self) -> str:
        code, stdout, _ = self.runner.run(['uname', '-m'])
        return stdout.strip() if code == 0 and stdout.strip() else 'unknown'

    def os_name(self) -> str:
        """Distribution name from os-release, then redhat-release"""
        try:
            values = {}
            with open(self.os_release_path, 'r') as f:
                for line in f:
                    line = line.strip()
                    if '=' in line and not line.startswith('#'):
                        key, value = line.split('=', 1)
                        values[key] = value.strip().strip('"\'')
            return f"{values.get('NAME', 'Linux')} {values.get('VERSION_ID', '')}".strip()
        except OSError:
            pass

        try:
            with open(self.redhat_release_path, 'r') as f:
                first_line = f.readline().strip()
            if first_line:
                return first_line
        except OSError:
            pass

        return 'Unknown Linux'

    def virtualization(self) -> VirtualizationKind:
        """Use the first available detector, else assume bare metal"""
        raw = ''
        if self.runner.available('systemd-detect-virt'):
            # Exits 1 and prints "none" on bare metal
            _, stdout, _ = self.runner.run(['systemd-detect-virt'])
            raw = stdout.strip()
        elif self.runner.available('virt-what'):
            _, stdout, _ = self.runner.run(['virt-what'])
            lines = stdout.strip().splitlines()
            raw = lines[0] if lines else ''
        return VirtualizationKind.from_detector(raw)

    def probe(self) -> SystemFacts:
        release = self.kernel_release()
        major, minor = parse_kernel_version(release)
        return SystemFacts(
            kernel_release=release,
            kernel_major=major,
            kernel_minor=minor,
            os_name=self.os_name(),
            architecture=self.architecture(),
            virtualization=self.virtualization()
        )

class ConfigurationTarget:
    """Host configuration the BBR methods read and change"""

    def read(self, key: str) -> Optional[str]:
        """Current runtime value of a kernel parameter"""
        raise NotImplementedError

    def write(self, key: str, value: str) -> bool:
        """Set a kernel parameter at runtime"""
        raise NotImplementedError

    def reload(self, path: Optional[str] = None) -> bool:
        """Apply one config file, or every config source when path is None"""
        raise NotImplementedError

    def load_module(self, name: str) -> bool:
        raise NotImplementedError

    def module_loaded(self, name: str) -> bool:
        raise NotImplementedError

    def exists(self, path: str) -> bool:
        raise NotImplementedError

    def read_file(self, path: str) -> Optional[str]:
        """None when the file does not exist; other read errors raise OSError"""
        raise NotImplementedError

    def write_file(self, path: str, content: str, backup: bool = False) -> bool:
        raise NotImplementedError

    def remove_file(self, path: str) -> bool:
        raise NotImplementedError

class SysctlTarget(ConfigurationTarget):
    """The live host: sysctl, modprobe and files under /etc"""

    def __init__(self, runner: CommandRunner, color_manager: ColorManager,
                 logger: logging.Logger, dry_run: bool = False, backup_files: bool = True):
        self.runner = runner
        self.color_manager = color_manager
        self.logger = logger
        self.dry_run = dry_run
        self.backup_files = backup_files

    def _simulate(self, action: str):
        print(f"  {self.color_manager.color(Colors.BRIGHT_CYAN, f'→ Would {action}')}")

    def read(self, key: str) -> Optional[str]:
        code, stdout, stderr = self.runner.run(['sysctl', '-n', key])
        if code != 0:
            self.logger.debug(f"Failed to read sysctl parameter {key}: {stderr.strip()}")
            return None
        return stdout.strip()

    def write(self, key: str, value: str) -> bool:
        if self.dry_run:
            self._simulate(f"run 'sysctl -w {key}={value}'")
            return True

        code, _, stderr = self.runner.run(['sysctl', '-w', f"{key}={value}"])
        if code != 0:
            self.logger.warning(f"Failed to set {key}={value}: {stderr.strip()}")
            return False
        return True

    def reload(self, path: Optional[str] = None) -> bool:
        cmd = ['sysctl', '--system'] if path is None else ['sysctl', '-p', path]
        if self.dry_run:
            self._simulate(f"run '{' '.join(cmd)}'")
            return True

        code, _, stderr = self.runner.run(cmd)
        if code != 0:
            self.logger.warning(f"'{' '.join(cmd)}' failed: {stderr.strip()}")
            return False
        return True

    def load_module(self, name: str) -> bool:
        if self.dry_run:
            self._simulate(f"run 'modprobe {name}'")
            return True

        code, _, stderr = self.runner.run(['modprobe', name])
        if code != 0:
            self.logger.debug(f"modprobe {name} failed: {stderr.strip()}")
            return False
        return True

    def module_loaded(self, name: str) -> bool:
        code, stdout, _ = self.runner.run(['lsmod'])
        if code != 0:
            # Fall back to the file lsmod reads
            try:
                stdout = self.read_file('/proc/modules') or ''
            except OSError:
                return False
        return any(line.split()[0] == name for line in stdout.splitlines() if line.strip())

    def exists(self, path: str) -> bool:
        return os.path.exists(path)

    def read_file(self, path: str) -> Optional[str]:
        try:
            # Bytes that are not UTF-8 survive a read/write round trip
            with open(path, 'r', encoding='utf-8', errors='surrogateescape') as f:
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            self.logger.error(f"Failed to read {path}: {e}")
            raise

    def _create_timestamped_backup(self, file_path: str) -> Optional[str]:
        """Create a timestamped backup of a file"""
        if not os.path.exists(file_path):
            self.logger.debug(f"File {file_path} does not exist, no backup needed")
            return None

        timestamp = datetime.now().strftime("%Y-%m-%dT%H:%M:%S")
        backup_path = f"{file_path}.bak.{timestamp}"
        try:
            shutil.copy2(file_path, backup_path)
        except OSError as e:
            self.logger.error(f"Failed to create backup of {file_path}: {e}")
            return None

        self.logger.info(f"Created backup: {backup_path}")
        return backup_path

    def write_file(self, path: str, content: str, backup: bool = False) -> bool:
        """Atomic write through a temp file in the same directory"""
        if self.dry_run:
            line_count = len(content.splitlines())
            self._simulate(f"write {path} ({line_count} lines)")
            return True

        tmp_path = None
        try:
            dir_path = os.path.dirname(path) or '.'
            os.makedirs(dir_path, exist_ok=True)

            if backup and self.backup_files:
                self._create_timestamped_backup(path)

            with tempfile.NamedTemporaryFile(mode='w', encoding='utf-8', errors='surrogateescape',
                                             dir=dir_path, delete=False,
                                             prefix=f".{os.path.basename(path)}.tmp") as tmp_file:
                tmp_path = tmp_file.name
                tmp_file.write(content)
                tmp_file.flush()
                os.fsync(tmp_file.fileno())

            # NamedTemporaryFile is 0600, config files must stay world-readable
            if os.path.exists(path):
                shutil.copymode(path, tmp_path)
            else:
                os.chmod(tmp_path, 0o644)

            os.replace(tmp_path, path)
        except OSError as e:
            self.logger.error(f"Failed to write {path}: {e}")
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            return False

        self.logger.debug(f"Successfully wrote {path}")
        print(f"  {self.color_manager.color(Colors.BRIGHT_GREEN, f'✓ Updated {path}')}")
        return True

    def remove_file(self, path: str) -> bool:
        if not os.path.exists(path):
            return False
        if self.dry_run:
            self._simulate(f"remove {path}")
            return True

        try:
            os.remove(path)
        except OSError as e:
            self.logger.error(f"Failed to remove {path}: {e}")
            return False

        print(f"  {self.color_manager.color(Colors.BRIGHT_GREEN, f'✓ Removed {path}')}")
        return True

class MethodRegistry:
    """Registry for dynamically loaded BBR configuration methods"""

    REQUIRED_FUNCTIONS = ('is_installed', 'install', 'uninstall')

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.methods = {}

    def load_methods(self, methods_package: str = "bbr_methods"):
        """Import every public module of the methods package"""
        try:
            package = importlib.import_module(methods_package)
        except ImportError as e:
            self.logger.error(f"Failed to load methods from {methods_package}: {e}")
            return

        for module_info in pkgutil.iter_modules(package.__path__):
            module_name = module_info.name
            if module_name.startswith('_'):
                continue

            try:
                module = importlib.import_module(f"{methods_package}.{module_name}")
            except Exception as e:
                self.logger.error(f"Failed to load method module {module_name}: {e}")
                continue

            missing = [name for name in self.REQUIRED_FUNCTIONS
                       if not callable(getattr(module, name, None))]
            if missing:
                self.logger.warning(f"Method module {module_name} missing {', '.join(missing)}()")
                continue

            name = getattr(module, 'NAME', module_name)
            self.methods[name] = module
            self.logger.debug(f"Loaded method module: {name}")

    def get(self, name: str):
        return self.methods.get(name)

    def get_available_methods(self) -> List[str]:
        return sorted(self.methods.keys())

    def is_installed(self, name: str, target: ConfigurationTarget) -> bool:
        method = self.get(name)
        return bool(method and method.is_installed(target))

def format_value(value: Optional[float], precision: int = 2) -> str:
    return PLACEHOLDER if value is None else f"{value:.{precision}f}"

def parse_value(text: Optional[str]) -> Optional[float]:
    """Placeholders and garbage read back as None"""
    if not text or text == PLACEHOLDER:
        return None
    try:
        return float(text)
    except ValueError:
        return None

LOG_LINE_PATTERN = re.compile(
    r'^\[(?P<timestamp>[^\]]+)\] (?P<label>[A-Z]+) - '
    r'Download: (?P<download>\S*?)MB/s, '
    r'Latency: (?P<latency>\S*?)ms, '
    r'Connect: (?P<connect>\S*?)s'
    r'(?:, Total: (?P<total>\S*?)s)?'
    r'(?:, Bandwidth: (?P<bandwidth>\S*?)MB/s)?$'
)

@dataclass
class PerformanceRecord:
    """One labelled performance test run"""
    timestamp: str
    label: RunLabel
    download_mbs: Optional[float] = None
    latency_ms: Optional[float] = None
    connect_s: Optional[float] = None
    total_s: Optional[float] = None
    bandwidth_mbs: Optional[float] = None

    def to_line(self) -> str:
        return (f"[{self.timestamp}] {self.label.value} - "
                f"Download: {format_value(self.download_mbs)}MB/s, "
                f"Latency: {format_value(self.latency_ms, 3)}ms, "
                f"Connect: {format_value(self.connect_s, 6)}s, "
                f"Total: {format_value(self.total_s, 6)}s, "
                f"Bandwidth: {format_value(self.bandwidth_mbs)}MB/s")

    @classmethod
    def from_line(cls, line: str) -> Optional['PerformanceRecord']:
        match = LOG_LINE_PATTERN.match(line.strip())
        if not match:
            return None
        try:
            label = RunLabel(match.group('label'))
        except ValueError:
            return None
        return cls(
            timestamp=match.group('timestamp'),
            label=label,
            download_mbs=parse_value(match.group('download')),
            latency_ms=parse_value(match.group('latency')),
            connect_s=parse_value(match.group('connect')),
            total_s=parse_value(match.group('total')),
            bandwidth_mbs=parse_value(match.group('bandwidth'))
        )

# attribute, display name, unit, higher is better
PERFORMANCE_METRICS = (
    ('download_mbs', 'Download', 'MB/s', True),
    ('latency_ms', 'Latency', 'ms', False),
    ('connect_s', 'TCP Connect', 's', False),
    ('total_s', 'Total Request', 's', False),
    ('bandwidth_mbs', 'Bandwidth', 'MB/s', True),
)

# Changes smaller than this are noise
CHANGE_THRESHOLD = 0.05

@dataclass
class PerformanceComparison:
    """Latest BEFORE and AFTER runs"""
    before: Optional[PerformanceRecord]
    after: Optional[PerformanceRecord]
    complete: bool
    improvements: Dict[str, str]
    regressions: Dict[str, str]

def compare_records(before: PerformanceRecord,
                    after: PerformanceRecord) -> Tuple[Dict[str, str], Dict[str, str]]:
    """Per-metric changes beyond the threshold, split into improvements and regressions"""
    improvements = {}
    regressions = {}

    for attribute, name, unit, higher_is_better in PERFORMANCE_METRICS:
        old = getattr(before, attribute)
        new = getattr(after, attribute)
        # Placeholders never take part in the comparison
        if old is None or new is None or old <= 0:
            continue

        change = (new - old) / old
        if abs(change) < CHANGE_THRESHOLD:
            continue

        text = f"{change * 100:+.1f}% ({old:g} → {new:g} {unit})"
        improved = change > 0 if higher_is_better else change < 0
        if improved:
            improvements[name] = text
        else:
            regressions[name] = text

    return improvements, regressions

class PerformanceLog:
    """Append-only performance records in a flat text file"""

    def __init__(self, path: str, logger: logging.Logger):
        self.path = path
        self.logger = logger

    def exists(self) -> bool:
        return os.path.isfile(self.path)

    def append(self, record: PerformanceRecord):
        # No locking: concurrent runs may interleave lines
        with open(self.path, 'a') as f:
            f.write(record.to_line() + '\n')

    def read_text(self) -> str:
        if not self.exists():
            return ''
        with open(self.path, 'r') as f:
            return f.read()

    def records(self) -> List[PerformanceRecord]:
        records = []
        for number, line in enumerate(self.read_text().splitlines(), 1):
            if not line.strip():
                continue
            record = PerformanceRecord.from_line(line)
            if record is None:
                self.logger.debug(f"Skipping unparsable line {number} in {self.path}")
                continue
            records.append(record)
        return records

    def by_label(self, label: RunLabel) -> List[PerformanceRecord]:
        return [record for record in self.records() if record.label is label]

    def count(self, label: RunLabel) -> int:
        return len(self.by_label(label))

    def latest(self, label: RunLabel) -> Optional[PerformanceRecord]:
        records = self.by_label(label)
        return records[-1] if records else None

    def compare(self) -> PerformanceComparison:
        before = self.latest(RunLabel.BEFORE)
        after = self.latest(RunLabel.AFTER)
        complete = before is not None and after is not None

        improvements, regressions = {}, {}
        if complete:
            improvements, regressions = compare_records(before, after)

        return PerformanceComparison(
            before=before,
            after=after,
            complete=complete,
            improvements=improvements,
            regressions=regressions
        )

class PerformanceHarness:
    """Sequential network probes; a failed probe becomes a placeholder"""

    def __init__(self, runner: CommandRunner, settings: Settings, log: PerformanceLog,
                 color_manager: ColorManager, logger: logging.Logger):
        self.runner = runner
        self.settings = settings
        self.log = log
        self.color_manager = color_manager
        self.logger = logger

    def measure_download(self) -> Optional[float]:
        """Download throughput in MB/s"""
        code, stdout, stderr = self.runner.run([
            'curl', '-o', '/dev/null', '-s', '-w', '%{speed_download}',
            self.settings.download_url
        ], timeout=None)

        if code != 0:
            self.logger.warning(f"Download test failed: {stderr.strip() or f'curl exit code {code}'}")
            return None

        try:
            bytes_per_second = float(stdout.strip())
        except ValueError:
            self.logger.warning(f"Unexpected curl output: {stdout.strip()!r}")
            return None

        return round(bytes_per_second / 1024 / 1024, 2)

    def measure_latency(self) -> Optional[float]:
        """Average ICMP round trip in ms"""
        _, stdout, stderr = self.runner.run([
            'ping', '-c', str(self.settings.ping_count), self.settings.latency_target
        ], timeout=None)

        # Some packets lost still prints the summary line
        for line in stdout.split('\n'):
            if 'min/avg/max' in line:
                # rtt min/avg/max/mdev = 12.345/23.456/34.567/1.234 ms
                avg_match = re.search(r'= [0-9.]+/([0-9.]+)/', line)
                if avg_match:
                    return float(avg_match.group(1))

        self.logger.warning(f"Latency test failed: {stderr.strip() or 'no ping summary'}")
        return None

    def measure_tcp(self) -> Tuple[Optional[float], Optional[float]]:
        """TCP connect time and total request time in seconds"""
        code, stdout, stderr = self.runner.run([
            'curl', '-o', '/dev/null', '-s', '-w', '%{time_connect},%{time_total}',
            self.settings.connect_url
        ], timeout=None)

        if code != 0:
            self.logger.warning(f"TCP connection test failed: {stderr.strip() or f'curl exit code {code}'}")
            return None, None

        parts = stdout.strip().split(',')
        if len(parts) != 2:
            self.logger.warning(f"Unexpected curl output: {stdout.strip()!r}")
            return None, None
        return parse_value(parts[0]), parse_value(parts[1])

    def measure_bandwidth(self) -> Optional[float]:
        """iperf3 sender bandwidth in MB/s, None when iperf3 is absent"""
        if not self.runner.available('iperf3'):
            print(self.color_manager.status(Severity.WARNING, "iperf3 not available for bandwidth testing"))
            return None

        code, stdout, stderr = self.runner.run([
            'iperf3', '-c', self.settings.iperf_server,
            '-t', str(self.settings.iperf_duration), '-J'
        ], timeout=self.settings.iperf_timeout)

        if code != 0:
            self.logger.warning(f"Bandwidth test failed: {stderr.strip() or f'iperf3 exit code {code}'}")
            return None

        try:
            result = json.loads(stdout)
            bits_per_second = result['end']['sum_sent']['bits_per_second']
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            self.logger.warning(f"Failed to parse iperf3 output: {e}")
            return None

        return round(bits_per_second / 8 / 1024 / 1024, 2)

    def run(self, label: RunLabel) -> PerformanceRecord:
        """Run every probe in order and append the result to the log"""
        progress = self.color_manager.print_progress
        print(f"\n{self.color_manager.color(Colors.BOLD, f'=== Network Performance Test ({label.value}) ===')}")

        progress(1, 5, "Testing download speed...")
        download = self.measure_download()
        print(f"  Download Speed: {format_value(download)} MB/s")

        progress(2, 5, f"Testing latency to {self.settings.latency_target}...")
        latency = self.measure_latency()
        print(f"  Average Latency: {format_value(latency, 3)} ms")

        progress(3, 5, "Testing TCP connection performance...")
        connect, total = self.measure_tcp()
        print(f"  TCP Connect Time: {format_value(connect, 6)}s")
        print(f"  Total Request Time: {format_value(total, 6)}s")

        progress(4, 5, "Testing bandwidth with iperf3...")
        bandwidth = self.measure_bandwidth()
        if bandwidth is not None:
            print(f"  Bandwidth: {format_value(bandwidth)} MB/s")

        progress(5, 5, "Saving test results...")
        record = PerformanceRecord(
            timestamp=time.strftime('%Y-%m-%d %H:%M:%S'),
            label=label,
            download_mbs=download,
            latency_ms=latency,
            connect_s=connect,
            total_s=total,
            bandwidth_mbs=bandwidth
        )
        self.log.append(record)
        return record

@dataclass
class MenuOption:
    key: str
    label: str
    action: Callable[[], object]

def human_size(size: int) -> str:
    value = float(size)
    for unit in ('B', 'K', 'M', 'G'):
        if value < 1024 or unit == 'G':
            return f"{value:.0f}{unit}" if unit == 'B' else f"{value:.1f}{unit}"
        value /= 1024
    return f"{size}B"

class BBRManager:
    """Main BBR management class"""

    def __init__(self, settings: Optional[Settings] = None, verbose: bool = False,
                 no_color: bool = False, dry_run: bool = False,
                 run_tests: Optional[bool] = None,
                 runner: Optional[CommandRunner] = None,
                 target: Optional[ConfigurationTarget] = None,
                 prober: Optional[SystemProber] = None):
        self.verbose = verbose
        self.dry_run = dry_run
        self.run_tests = run_tests
        self.logger = setup_logging(verbose)
        self.settings = settings or Settings()
        self.color_manager = ColorManager()

        # Override color settings if --no-color flag is used
        if no_color:
            self.color_manager.set_colors_enabled(False)

        self.runner = runner or CommandRunner(self.logger)
        self.target = target or SysctlTarget(
            self.runner, self.color_manager, self.logger,
            dry_run=dry_run, backup_files=self.settings.backup_files
        )
        self.prober = prober or SystemProber(self.runner)

        self.registry = MethodRegistry(self.logger)
        self.registry.load_methods()

        self.performance_log = PerformanceLog(self.settings.performance_log, self.logger)
        self.harness = PerformanceHarness(
            self.runner, self.settings, self.performance_log,
            self.color_manager, self.logger
        )

        self._facts: Optional[SystemFacts] = None

    # Output helpers

    def _header(self, title: str):
        print(f"\n{self.color_manager.color(Colors.BOLD, f'=== {title} ===')}")

    def _log(self, message: str):
        timestamp = self.color_manager.color(Colors.GREEN, f"[{time.strftime('%Y-%m-%d %H:%M:%S')}]")
        print(f"{timestamp} {message}")

    def _success(self, message: str):
        print(self.color_manager.status(Severity.SUCCESS, message))

    def _info(self, message: str):
        print(self.color_manager.status(Severity.INFO, message))

    def _warn(self, message: str):
        print(self.color_manager.status(Severity.WARNING, message))

    # State

    @property
    def facts(self) -> SystemFacts:
        if self._facts is None:
            self._facts = self.prober.probe()
            self.logger.debug(f"System facts: {self._facts}")
        return self._facts

    def is_root(self) -> bool:
        return os.geteuid() == 0

    def check_preconditions(self):
        """Fatal unless on Linux and root (root is not needed for --dry-run)"""
        if not sys.platform.startswith('linux'):
            raise FatalPrecondition("BBR can only be managed on Linux")
        if not self.dry_run and not self.is_root():
            raise FatalPrecondition("This program must be run as root")

    def current_congestion_control(self) -> Optional[str]:
        return self.target.read(CONGESTION_CONTROL_KEY)

    def is_bbr_active(self) -> bool:
        return self.current_congestion_control() == BBR

    def installation_state(self) -> InstallationState:
        return detect_installation_state(
            self.registry.is_installed(InstallationState.MODERN.value, self.target),
            self.registry.is_installed(InstallationState.LEGACY.value, self.target)
        )

    def missing_tools(self) -> List[str]:
        return [tool for tool in TEST_TOOLS if not self.runner.available(tool)]

    # Install / uninstall

    def _print_facts(self, facts: SystemFacts):
        self._info(f"OS: {facts.os_name}")
        self._info(f"Kernel: {facts.kernel_release}")
        self._info(f"Architecture: {facts.architecture}")
        self._info(f"Virtualization: {facts.virtualization.value}")

    def analyze_system(self) -> Decision:
        """Print the system analysis and decide; raises for unsupported hosts"""
        facts = self.facts
        self._header("System Analysis")
        self._print_facts(facts)
        print()

        decision = decide(facts, self.current_congestion_control())
        self.logger.debug(f"Decision: {decision.action.value} ({decision.reason})")
        if decision.action is Action.UNSUPPORTED:
            raise FatalPrecondition(decision.reason)
        return decision

    def apply_decision(self, decision: Decision) -> bool:
        """Run the configuration method the decision selected"""
        if decision.action is Action.ALREADY_ACTIVE:
            self._log(decision.reason)
            print(f"{CONGESTION_CONTROL_KEY} = {self.current_congestion_control()}")
            return True

        method = self.registry.get(decision.action.value)
        if method is None:
            raise FatalPrecondition(f"Configuration method '{decision.action.value}' is not available")

        self._info(decision.reason)
        self._info(f"Installing BBR with {method.NAME} method: {method.DESCRIPTION}")
        if method.install(self.target, progress=self.color_manager.print_progress):
            self._log(f"BBR with {method.NAME} method installed successfully!")
            return True

        self._warn(f"Some steps of the {method.NAME} method failed, run with --verbose for details")
        return False

    def install(self, run_tests: Optional[bool] = None) -> Optional[Decision]:
        """Install BBR, optionally wrapped in before/after performance tests"""
        self._header("BBR Installation")

        # Unsupported hosts abort before anything is installed or tested,
        # even when bbr is already the active algorithm
        decision = self.analyze_system()
        if decision.action is Action.ALREADY_ACTIVE:
            self.apply_decision(decision)
            return decision

        if run_tests is None:
            run_tests = self.run_tests
        if run_tests is None:
            answer = input("Do you want to run performance tests before and after BBR installation? (y/n): ")
            run_tests = answer.strip().lower() in ('y', 'yes')

        if run_tests:
            self._info("Performance testing enabled. This will:")
            print("  1. Test network performance before BBR installation")
            print("  2. Install BBR")
            print("  3. Test network performance after BBR installation")
            print("  4. Compare and show results")
            self._info("Checking and installing required testing tools...")
            self.install_test_tools()
            self._info("Running performance test before BBR installation...")
            self.run_performance_test(RunLabel.BEFORE)

        self.apply_decision(decision)

        if self.dry_run:
            self._info("Dry-run mode: no system changes were made")
            return decision

        if self.is_bbr_active():
            self.verify()
            print()
            self._log("BBR installation completed successfully!")

            if run_tests:
                self._info("Running performance test after BBR installation...")
                self.run_performance_test(RunLabel.AFTER)
                print()
                self._info("Comparing performance results...")
                self.compare_performance()
        else:
            print()
            self._warn("BBR installation may have failed. Please check system compatibility.")
            self.verify()

        return decision

    def uninstall(self) -> bool:
        state = self.installation_state()
        if state is InstallationState.NONE:
            self._warn("No BBR installation detected")
            return False

        self._header("BBR Uninstallation")
        self._info(f"Detected installation type: {state.value}")

        method = self.registry.get(state.value)
        self._info(f"Removing BBR {state.value} configuration...")
        if method.uninstall(self.target, progress=self.color_manager.print_progress):
            self._log(f"BBR {state.value} configuration removed successfully!")
        else:
            self._warn(f"Some steps of removing the {state.value} configuration failed")

        if self.dry_run:
            self._info("Dry-run mode: no system changes were made")
            return True

        if not self.is_bbr_active():
            self._success("BBR has been successfully removed")
            self._info(f"Current congestion control: {self.current_congestion_control() or 'unknown'}")
        else:
            self._warn("BBR might still be active. Please reboot the system.")
        return True

    # Reports

    def verify(self) -> bool:
        self._header("BBR Verification")
        current = self.current_congestion_control()

        if current == BBR:
            self._success("BBR is ACTIVE!")
            self._info(f"Current congestion control: {current}")
            self._info(f"Current queueing discipline: {self.target.read(QDISC_KEY) or 'unknown'}")

            if self.target.module_loaded(BBR_MODULE):
                self._success(f"{BBR_MODULE} module is loaded")
            else:
                self._warn(f"{BBR_MODULE} module is not loaded")

            state = self.installation_state()
            if state is not InstallationState.NONE:
                self._info(f"Installation type: {state.value}")

            if self.facts.modern_kernel:
                self._info("Modern kernel optimizations applied - no reboot needed")
            else:
                self._info("Legacy optimizations applied - no reboot needed")
            return True

        self._warn("BBR is not active")
        self._info(f"Current congestion control: {current or 'unknown'}")
        if self.facts.supports_bbr:
            self._info("System supports BBR but it's not currently active")
        else:
            self._warn("System does not support BBR (kernel 4.9+ required)")
        return False

    def show_system_info(self):
        facts = self.facts
        self._header("System Information")
        self._print_facts(facts)

        if facts.supports_bbr:
            self._success("System supports BBR")
        else:
            self._warn("System does not support BBR (kernel 4.9+ required)")

        if facts.virtualization in UNSUPPORTED_VIRTUALIZATION:
            self._warn(f"Virtualization method '{facts.virtualization.value}' is not supported for BBR")

        if facts.modern_kernel:
            self._info("Modern kernel detected - optimized method available")
        else:
            self._info("Legacy kernel detected - compatible method available")

    # Performance

    def run_performance_test(self, label: RunLabel) -> Optional[PerformanceRecord]:
        try:
            record = self.harness.run(label)
        except OSError as e:
            self.logger.error(f"Failed to write {self.performance_log.path}: {e}")
            self._warn("Performance results could not be saved")
            return None
        print()
        return record

    def run_after_test(self) -> Optional[PerformanceRecord]:
        """AFTER run, only once a BEFORE run exists"""
        if self.performance_log.count(RunLabel.BEFORE) == 0:
            print()
            self._warn("You must run 'Test Network Performance (Before BBR)' first!")
            self._info("Please follow this order:")
            print("  1. Run 'Test Network Performance (Before BBR)'")
            print("  2. Install BBR (if not already installed)")
            print("  3. Run 'Test Network Performance (After BBR)'")
            print()
            return None
        return self.run_performance_test(RunLabel.AFTER)

    def _print_record(self, title: str, record: PerformanceRecord):
        print(f"\n{self.color_manager.color(Colors.BOLD, title)} {record.timestamp}")
        print(f"  Download: {format_value(record.download_mbs)} MB/s")
        print(f"  Latency: {format_value(record.latency_ms, 3)} ms")
        print(f"  TCP Connect: {format_value(record.connect_s, 6)} s")
        print(f"  Total Request: {format_value(record.total_s, 6)} s")
        print(f"  Bandwidth: {format_value(record.bandwidth_mbs)} MB/s")

    def compare_performance(self) -> Optional[PerformanceComparison]:
        self._header("Performance Comparison")

        if not self.performance_log.exists():
            self._warn("No performance test data found")
            return None

        self._info("Performance test results:")
        print(self.performance_log.read_text())

        comparison = self.performance_log.compare()
        if not comparison.complete:
            self._warn("Incomplete test data. Run both before and after tests.")
            return comparison

        self._print_record("Before BBR:", comparison.before)
        self._print_record("After BBR:", comparison.after)

        if comparison.improvements:
            print(f"\n{self.color_manager.color(Colors.BOLD, 'Improvements:')}")
            for metric, change in comparison.improvements.items():
                print(f"  • {metric}: {self.color_manager.color(Colors.GREEN, change)}")

        if comparison.regressions:
            print(f"\n{self.color_manager.color(Colors.BOLD, 'Regressions:')}")
            for metric, change in comparison.regressions.items():
                print(f"  • {metric}: {self.color_manager.color(Colors.RED, change)}")

        if not comparison.improvements and not comparison.regressions:
            threshold = f"{CHANGE_THRESHOLD * 100:.0f}%"
            print(f"\n{self.color_manager.color(Colors.YELLOW, f'No significant changes detected (>{threshold} threshold)')}")

        print()
        self._log("Performance comparison completed!")
        self._info("Check the results above to see BBR impact")
        return comparison

    def show_performance_log(self) -> bool:
        self._header("Performance Test Log")
        path = self.performance_log.path

        if not self.performance_log.exists():
            self._warn(f"No performance log file found at {path}")
            self._info("Run performance tests first to generate log data")
            return False

        self._info("Complete performance test history:")
        print()
        print(self.performance_log.read_text())

        stat = os.stat(path)
        modified = datetime.fromtimestamp(stat.st_mtime).strftime('%Y-%m-%d %H:%M:%S')
        self._info(f"Log file: {path} ({human_size(stat.st_size)}, last modified: {modified})")

        before_count = self.performance_log.count(RunLabel.BEFORE)
        after_count = self.performance_log.count(RunLabel.AFTER)
        self._info(f"Test entries: {before_count} BEFORE tests, {after_count} AFTER tests")
        return True

    def install_test_tools(self) -> bool:
        """Install curl, ping and iperf3 with the first package manager found"""
        self._info("Checking and installing network testing tools...")
        missing = self.missing_tools()

        if not missing:
            self._log("All network testing tools are already installed!")
            self._info(f"Installed tools: {', '.join(TEST_TOOLS)}")
            return True

        self._info(f"Missing tools: {' '.join(missing)}")

        for manager, package_map in PACKAGE_MANAGERS:
            if self.runner.available(manager):
                break
        else:
            self._warn(f"Package manager not detected. Please install manually: {' '.join(missing)}")
            return False

        packages = [package_map.get(tool, tool) for tool in missing]
        if self.dry_run:
            print(f"  {self.color_manager.color(Colors.BRIGHT_CYAN, f'→ Would run {manager} install -y ' + ' '.join(packages))}")
            return True

        self._info("Installing missing tools...")
        if manager == 'apt-get':
            self.color_manager.print_progress(0, len(packages), "Updating package list...")
            self.runner.run(['apt-get', 'update'], timeout=None)

        failed = []
        for number, package in enumerate(packages, 1):
            self.color_manager.print_progress(number, len(packages), f"Installing {package}...")
            code, _, stderr = self.runner.run([manager, 'install', '-y', package], timeout=None)
            if code != 0:
                self.logger.warning(f"Failed to install {package}: {stderr.strip()}")
                failed.append(package)

        if failed:
            self._warn(f"Could not install: {' '.join(failed)}")
            return False

        self._log("Network testing tools installed successfully!")
        return True

    # Menu

    def menu_options(self) -> List[MenuOption]:
        """Options for the current state; numbering after 4 depends on it"""
        options = [
            MenuOption('1', 'Install/Activate BBR', self.install),
            MenuOption('2', 'Uninstall/Deactivate BBR', self.uninstall),
            MenuOption('3', 'Show System Information', self.show_system_info),
            MenuOption('4', 'Verify BBR Status', self.verify),
        ]

        def add(label: str, action: Callable[[], object]):
            options.append(MenuOption(str(len(options) + 1), label, action))

        if self.is_bbr_active():
            add('Test Network Performance', lambda: self.run_performance_test(RunLabel.CURRENT))
        else:
            add('Test Network Performance (Before BBR)', lambda: self.run_performance_test(RunLabel.BEFORE))
            add('Test Network Performance (After BBR)', self.run_after_test)

        if self.performance_log.compare().complete:
            add('Compare Performance Results', self.compare_performance)

        if self.missing_tools():
            add('Install Testing Tools', self.install_test_tools)

        if self.performance_log.exists():
            add('Show Performance Log', self.show_performance_log)

        return options

    def print_menu(self, options: List[MenuOption]):
        width = 62
        border = '═' * width

        def row(text: str = ''):
            print(f"║  {text:<{width - 2}}║")

        print(f"╔{border}╗")
        print(f"║{'BBR Smart Installation':^{width}}║")
        print(f"║{'Management Tool':^{width}}║")
        print(f"╠{border}╣")
        row("Current Status:")
        current = self.current_congestion_control()
        if current == BBR:
            row("BBR Status: ACTIVE")
            row(f"Installation Type: {self.installation_state().value}")
            row(f"Congestion Control: {current}")
        else:
            row("BBR Status: INACTIVE")
        print(f"╠{border}╣")
        for option in options:
            row(f"{option.key}) {option.label}")
        row("0) Exit")
        print(f"╚{border}╝")
        print()

    def run_menu(self):
        """Interactive menu loop"""
        while True:
            if sys.stdout.isatty():
                print("\033[2J\033[H", end='')

            options = self.menu_options()
            self.print_menu(options)

            try:
                choice = input(f"Please select an option [0-{len(options)}]: ").strip()
            except EOFError:
                print()
                return

            if choice == '0':
                print()
                self._log("Thank you for using BBR Smart!")
                return

            selected = next((option for option in options if option.key == choice), None)
            if selected is None:
                self._warn("Invalid option. Please try again.")
                time.sleep(2)
                continue

            selected.action()
            try:
                input("Press Enter to continue...")
            except EOFError:
                return

    def run_mode(self, mode: str):
        """Run a single non-interactive mode"""
        actions = {
            'install': self.install,
            'uninstall': self.uninstall,
            'status': self.verify,
            'info': self.show_system_info,
            'test-before': lambda: self.run_performance_test(RunLabel.BEFORE),
            'test-after': lambda: self.run_performance_test(RunLabel.AFTER),
            'compare': self.compare_performance,
            'install-tools': self.install_test_tools,
            'show-log': self.show_performance_log,
        }
        return actions[mode]()

class ArgumentParser(argparse.ArgumentParser):
    """Usage errors exit with status 1 like every other failure"""

    def error(self, message: str):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")

def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog='bbr-smart',
        description="Smart TCP BBR installation and management for Linux",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Modes:
  (none)          Interactive menu
  install         Install BBR with optional performance testing
  uninstall       Remove the BBR configuration
  status          Check BBR status
  info            Show system information
  test-before     Test network performance before BBR
  test-after      Test network performance after BBR
  compare         Compare performance results
  install-tools   Install network testing tools
  show-log        Show performance test log

Examples:
  %(prog)s install --no-tests     # Install without performance tests
  %(prog)s install --dry-run      # Show what would be changed
  %(prog)s status --verbose       # Verbose status check
  %(prog)s --config config.yaml   # Use custom configuration file
        """
    )

    parser.add_argument(
        'mode',
        nargs='?',
        metavar='MODE',
        help='Mode to run; omit for the interactive menu'
    )

    parser.add_argument(
        '--config',
        help=f'Path to configuration YAML file (default: {DEFAULT_CONFIG_PATH})'
    )

    tests = parser.add_mutually_exclusive_group()
    tests.add_argument(
        '--with-tests',
        dest='run_tests',
        action='store_true',
        default=None,
        help='Run performance tests around installation without asking'
    )
    tests.add_argument(
        '--no-tests',
        dest='run_tests',
        action='store_false',
        help='Skip performance tests during installation without asking'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Simulate changes without modifying system (show what would be done)'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output'
    )

    parser.add_argument(
        '--no-color',
        action='store_true',
        help='Disable colored output'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'BBR Smart v{VERSION}'
    )

    return parser

def main(argv: Optional[List[str]] = None):
    """Main entry point"""
    if sys.version_info < (3, 7):
        print("Error: This tool requires Python 3.7 or higher", file=sys.stderr)
        print(f"Current version: {sys.version}", file=sys.stderr)
        sys.exit(1)

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.mode is not None and args.mode not in MODES:
        parser.error(f"invalid mode '{args.mode}' (choose from {', '.join(MODES)})")

    logger = setup_logging(args.verbose)
    settings = load_settings(args.config, logger)

    manager = BBRManager(
        settings=settings,
        verbose=args.verbose,
        no_color=args.no_color,
        dry_run=args.dry_run,
        run_tests=args.run_tests
    )
    colors = manager.color_manager

    try:
        manager.check_preconditions()

        if args.dry_run:
            print(f"{colors.color(Colors.BRIGHT_CYAN, 'Dry-run mode: No system changes will be made')}\n")

        if args.mode is None:
            manager.run_menu()
        else:
            manager.run_mode(args.mode)

    except FatalPrecondition as e:
        print(colors.status(Severity.CRITICAL, colors.color(Colors.RED, f"Error: {e}")), file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print(f"\n{colors.color(Colors.YELLOW, 'Operation cancelled by user')}")
        sys.exit(1)
    except Exception as e:
        print(f"\n{colors.color(Colors.RED, f'Error: {e}')}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)

if __name__ == '__main__':
    main()
