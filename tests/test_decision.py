import pytest

from bbr_smart import (
    Action,
    InstallationState,
    VirtualizationKind,
    decide,
    detect_installation_state,
    kernel_at_least,
)

from conftest import make_facts


@pytest.mark.parametrize("major,minor", [(2, 6), (3, 10), (3, 99), (4, 0), (4, 8)])
def test_old_kernels_are_unsupported(major, minor):
    decision = decide(make_facts(major, minor), 'cubic')
    assert decision.action is Action.UNSUPPORTED
    assert "4.9+" in decision.reason


@pytest.mark.parametrize("major,minor", [(4, 9), (4, 14), (4, 19), (4, 255), (5, 0), (5, 3)])
def test_middle_kernels_use_legacy(major, minor):
    assert decide(make_facts(major, minor), 'cubic').action is Action.LEGACY


@pytest.mark.parametrize("major,minor", [(5, 4), (5, 10), (5, 15), (6, 0), (6, 1), (10, 0)])
def test_recent_kernels_use_modern(major, minor):
    assert decide(make_facts(major, minor), 'cubic').action is Action.MODERN


@pytest.mark.parametrize("kind", [VirtualizationKind.OPENVZ, VirtualizationKind.LXC])
def test_container_virtualization_is_unsupported_on_any_kernel(kind):
    decision = decide(make_facts(6, 5, virtualization=kind), 'cubic')
    assert decision.action is Action.UNSUPPORTED
    assert kind.value in decision.reason


@pytest.mark.parametrize("kind", [VirtualizationKind.NONE, VirtualizationKind.KVM,
                                  VirtualizationKind.XEN, VirtualizationKind.VMWARE,
                                  VirtualizationKind.OTHER])
def test_other_virtualization_is_allowed(kind):
    assert decide(make_facts(5, 10, virtualization=kind), 'cubic').action is Action.MODERN


def test_active_bbr_is_reported_without_changes():
    assert decide(make_facts(5, 10), 'bbr').action is Action.ALREADY_ACTIVE
    assert decide(make_facts(4, 14), 'bbr').action is Action.ALREADY_ACTIVE


def test_old_kernel_wins_over_active_bbr():
    assert decide(make_facts(4, 4), 'bbr').action is Action.UNSUPPORTED


def test_unknown_congestion_control_is_not_active():
    assert decide(make_facts(5, 10), None).action is Action.MODERN


def test_minor_only_compared_when_major_equal():
    assert kernel_at_least(6, 0, (5, 4))
    assert kernel_at_least(5, 4, (5, 4))
    assert not kernel_at_least(5, 3, (5, 4))
    assert not kernel_at_least(4, 99, (5, 4))


@pytest.mark.parametrize("modern,legacy,expected", [
    (False, False, InstallationState.NONE),
    (False, True, InstallationState.LEGACY),
    (True, False, InstallationState.MODERN),
    (True, True, InstallationState.MODERN),
])
def test_installation_state(modern, legacy, expected):
    assert detect_installation_state(modern, legacy) is expected
