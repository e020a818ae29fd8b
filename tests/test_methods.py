import logging

from bbr_methods import (
    BBR_MODULE,
    CONGESTION_CONTROL_KEY,
    QDISC_KEY,
    legacy,
    modern,
    parse_sysctl_line,
)
from bbr_smart import MethodRegistry, decide

from conftest import SYSCTL_CONF, FakeTarget, make_facts


def test_registry_loads_both_methods():
    registry = MethodRegistry(logging.getLogger('bbr_smart.tests'))
    registry.load_methods()
    assert registry.get_available_methods() == ['legacy', 'modern']
    assert registry.get('modern') is modern


def test_parse_sysctl_line():
    assert parse_sysctl_line('net.core.default_qdisc=fq') == (QDISC_KEY, 'fq')
    assert parse_sysctl_line('  net.core.default_qdisc = fq  ') == (QDISC_KEY, 'fq')
    assert parse_sysctl_line('# net.core.default_qdisc = fq') is None
    assert parse_sysctl_line('; comment') is None
    assert parse_sysctl_line('') is None


def test_modern_config_has_single_congestion_control_line():
    lines = [parse_sysctl_line(line) for line in modern.render_config().splitlines()]
    keys = [parsed[0] for parsed in lines if parsed]
    assert keys.count(CONGESTION_CONTROL_KEY) == 1
    assert keys.count(QDISC_KEY) == 1
    assert 'net.ipv4.tcp_fastopen' in keys
    assert 'net.core.netdev_max_backlog' in keys


def test_modern_install_activates_bbr(target):
    steps = []
    assert modern.install(target, progress=lambda *args: steps.append(args))

    assert target.read(CONGESTION_CONTROL_KEY) == 'bbr'
    assert target.read(QDISC_KEY) == 'fq'
    assert target.read('net.ipv4.tcp_rmem') == '4096 87380 67108864'
    assert target.files[modern.MODULES_LOAD_FILE] == 'tcp_bbr\n'
    assert target.module_loaded(BBR_MODULE)
    assert target.reloads == [None]
    assert modern.is_installed(target)
    assert steps[-1][:2] == (5, 5)


def test_modern_uninstall_removes_exactly_its_files(target):
    before = set(target.files)
    modern.install(target)
    assert set(target.files) - before == {modern.SYSCTL_FILE, modern.MODULES_LOAD_FILE}

    assert modern.uninstall(target)
    assert set(target.files) == before
    assert target.read(CONGESTION_CONTROL_KEY) == 'cubic'
    assert target.read(QDISC_KEY) == 'pfifo_fast'
    assert not modern.is_installed(target)


def test_legacy_install_appends_two_lines(target):
    original = target.files[SYSCTL_CONF]
    assert legacy.install(target)

    content = target.files[SYSCTL_CONF]
    assert content.startswith(original)
    assert content[len(original):].splitlines() == [
        'net.core.default_qdisc = fq',
        'net.ipv4.tcp_congestion_control = bbr',
    ]
    assert target.reloads == [SYSCTL_CONF]
    assert target.read(CONGESTION_CONTROL_KEY) == 'bbr'
    assert target.read(QDISC_KEY) == 'fq'
    assert legacy.is_installed(target)
    assert target.backups == [(SYSCTL_CONF, original)]


def test_legacy_install_replaces_existing_assignments():
    target = FakeTarget(files={SYSCTL_CONF: (
        '# net.ipv4.tcp_congestion_control = reno\n'
        'net.ipv4.tcp_congestion_control=cubic\n'
        'vm.swappiness = 10\n'
        'net.core.default_qdisc = fq_codel\n'
    )})
    legacy.install(target)
    legacy.install(target)

    lines = target.files[SYSCTL_CONF].splitlines()
    assert lines == [
        '# net.ipv4.tcp_congestion_control = reno',
        'vm.swappiness = 10',
        'net.core.default_qdisc = fq',
        'net.ipv4.tcp_congestion_control = bbr',
    ]


def test_legacy_install_without_existing_file():
    target = FakeTarget()
    assert legacy.install(target)
    assert target.files[SYSCTL_CONF].splitlines() == [
        'net.core.default_qdisc = fq',
        'net.ipv4.tcp_congestion_control = bbr',
    ]
    assert target.backups == []


def test_legacy_uninstall_restores_file(target):
    original = target.files[SYSCTL_CONF]
    legacy.install(target)

    assert legacy.uninstall(target)
    assert target.files[SYSCTL_CONF] == original
    assert target.read(CONGESTION_CONTROL_KEY) == 'cubic'
    assert target.read(QDISC_KEY) == 'pfifo_fast'
    assert not legacy.is_installed(target)


def test_modern_host_scenario(target):
    facts = make_facts(release='5.10.0-generic', major=5, minor=10)
    decision = decide(facts, target.read(CONGESTION_CONTROL_KEY))

    registry = MethodRegistry(logging.getLogger('bbr_smart.tests'))
    registry.load_methods()
    registry.get(decision.action.value).install(target)

    assert target.read(CONGESTION_CONTROL_KEY) == 'bbr'
    assert target.read(QDISC_KEY) == 'fq'
