import os

from pvemon.config import load_settings


def write_settings(tmp_path, text):
    path = os.path.join(tmp_path, "settings.yaml")
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)
    return path


def test_missing_file_uses_defaults(tmp_path):
    settings = load_settings(os.path.join(tmp_path, "missing.yaml"), environ={})

    assert settings['collection']['check_interval'] == '*/5 * * * *'
    assert settings['collection']['initial_timeout_seconds'] == 30
    assert settings['alerts']['cooldown_minutes'] == 15
    assert settings['storage']['retention_days'] == 7


def test_yaml_values_merge_over_defaults(tmp_path):
    path = write_settings(tmp_path, "collection:\n  check_interval: '*/1 * * * *'\nweb:\n  port: 8080\n")

    settings = load_settings(path, environ={})

    assert settings['collection']['check_interval'] == '*/1 * * * *'
    assert settings['collection']['request_timeout_seconds'] == 15
    assert settings['web'] == {'host': '0.0.0.0', 'port': 8080}


def test_environment_overrides_file(tmp_path):
    path = write_settings(tmp_path, "alerts:\n  discord_webhook_url: https://from-file\n")

    settings = load_settings(path, environ={
        'ALERT_CHECK_INTERVAL': '0 * * * *',
        'DISCORD_WEBHOOK_URL': 'https://from-env',
        'DATA_DIR': '/var/lib/pvemon',
    })

    assert settings['collection']['check_interval'] == '0 * * * *'
    assert settings['alerts']['discord_webhook_url'] == 'https://from-env'
    assert settings['storage']['data_dir'] == '/var/lib/pvemon'


def test_invalid_yaml_falls_back_to_defaults(tmp_path, caplog):
    path = write_settings(tmp_path, "collection: [unclosed\n")

    settings = load_settings(path, environ={})

    assert settings['collection']['check_interval'] == '*/5 * * * *'
    assert "Failed to load settings" in caplog.text
