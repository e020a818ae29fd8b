"""Shared fixtures: an in-memory host and a scripted command runner"""

import logging

import pytest

from bbr_methods import (
    CONGESTION_CONTROL_KEY,
    DEFAULT_CONGESTION_CONTROL,
    DEFAULT_QDISC,
    QDISC_KEY,
    parse_sysctl_line,
)
from bbr_smart import (
    BBRManager,
    ConfigurationTarget,
    Settings,
    SystemFacts,
    VirtualizationKind,
)

SYSCTL_CONF = '/etc/sysctl.conf'
SYSCTL_D = '/etc/sysctl.d/'


class FakeTarget(ConfigurationTarget):
    """Kernel parameters, modules and files kept in dictionaries"""

    def __init__(self, files=None, params=None):
        self.files = dict(files or {})
        self.params = {
            CONGESTION_CONTROL_KEY: DEFAULT_CONGESTION_CONTROL,
            QDISC_KEY: DEFAULT_QDISC,
        }
        self.params.update(params or {})
        self.modules = set()
        self.reloads = []
        self.backups = []

    def read(self, key):
        return self.params.get(key)

    def write(self, key, value):
        self.params[key] = value
        return True

    def _apply(self, path):
        for line in self.files.get(path, '').splitlines():
            parsed = parse_sysctl_line(line)
            if parsed:
                self.params[parsed[0]] = parsed[1]

    def reload(self, path=None):
        self.reloads.append(path)
        if path is not None:
            self._apply(path)
            return True
        # sysctl --system reads sysctl.d first and sysctl.conf last
        for name in sorted(self.files):
            if name.startswith(SYSCTL_D) and name.endswith('.conf'):
                self._apply(name)
        self._apply(SYSCTL_CONF)
        return True

    def load_module(self, name):
        self.modules.add(name)
        return True

    def module_loaded(self, name):
        return name in self.modules

    def exists(self, path):
        return path in self.files

    def read_file(self, path):
        return self.files.get(path)

    def write_file(self, path, content, backup=False):
        if backup and path in self.files:
            self.backups.append((path, self.files[path]))
        self.files[path] = content
        return True

    def remove_file(self, path):
        return self.files.pop(path, None) is not None


class FakeRunner:
    """Answers commands from a table keyed by command prefix"""

    def __init__(self, responses=None, tools=()):
        self.responses = dict(responses or {})
        self.tools = set(tools)
        self.calls = []

    def run(self, cmd, timeout=30):
        if isinstance(cmd, str):
            cmd = cmd.split()
        self.calls.append(list(cmd))
        for length in range(len(cmd), 0, -1):
            key = tuple(cmd[:length])
            if key in self.responses:
                return self.responses[key]
        return -1, "", f"{cmd[0]}: not scripted"

    def available(self, tool):
        return tool in self.tools


class StaticProber:
    def __init__(self, facts):
        self.facts = facts
        self.calls = 0

    def probe(self):
        self.calls += 1
        return self.facts


def make_facts(major=5, minor=10, virtualization=VirtualizationKind.KVM, release=None):
    return SystemFacts(
        kernel_release=release or f"{major}.{minor}.0-generic",
        kernel_major=major,
        kernel_minor=minor,
        os_name='Ubuntu 22.04',
        architecture='x86_64',
        virtualization=virtualization
    )


@pytest.fixture
def logger():
    return logging.getLogger('bbr_smart.tests')


@pytest.fixture
def target():
    return FakeTarget(files={SYSCTL_CONF: '# kernel tunables\nvm.swappiness = 10\n'})


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def settings(tmp_path):
    return Settings(performance_log=str(tmp_path / 'bbr-performance.log'))


@pytest.fixture
def make_manager(settings, target, runner):
    """Build a manager wired to the fakes for the given host facts"""
    def factory(facts=None, **kwargs):
        return BBRManager(
            settings=settings,
            no_color=True,
            runner=runner,
            target=target,
            prober=StaticProber(facts or make_facts()),
            **kwargs
        )
    return factory
