import logging

from bbr_smart import Settings, load_settings

LOGGER = logging.getLogger('bbr_smart.tests')


def test_defaults_when_file_missing(tmp_path):
    assert load_settings(str(tmp_path / 'missing.yaml'), LOGGER) == Settings()


def test_overrides_from_yaml(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text(
        "performance_log: /var/log/bbr.log\n"
        "iperf_server: iperf.example.net\n"
        "ping_count: 10\n"
        "backup_files: false\n"
    )
    settings = load_settings(str(path), LOGGER)

    assert settings.performance_log == '/var/log/bbr.log'
    assert settings.iperf_server == 'iperf.example.net'
    assert settings.ping_count == 10
    assert settings.backup_files is False
    assert settings.latency_target == '8.8.8.8'


def test_unknown_and_mistyped_keys_are_ignored(tmp_path, caplog):
    path = tmp_path / 'config.yaml'
    path.write_text("colour: blue\nping_count: many\niperf_timeout: 20\n")

    with caplog.at_level(logging.WARNING, logger='bbr_smart.tests'):
        settings = load_settings(str(path), LOGGER)

    assert settings.ping_count == 4
    assert settings.iperf_timeout == 20
    assert "Unknown config key 'colour'" in caplog.text
    assert "ping_count" in caplog.text


def test_invalid_yaml_keeps_defaults(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text("ping_count: [1, 2\n")
    assert load_settings(str(path), LOGGER) == Settings()


def test_non_mapping_document_keeps_defaults(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text("- one\n- two\n")
    assert load_settings(str(path), LOGGER) == Settings()


def test_empty_document_keeps_defaults(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text("")
    assert load_settings(str(path), LOGGER) == Settings()
