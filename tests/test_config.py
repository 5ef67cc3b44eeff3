from datetime import timedelta

from evtracker.config import DEFAULT_CONFIG_PATH, load_config


def test_defaults_when_file_missing(tmp_path):
    config = load_config(tmp_path / "missing.yaml")

    assert config.default_rate_pence == 7.5
    assert config.smart_charging_rate_pence == 7.0
    assert config.vehicle is None
    assert config.consumption.threshold_kwh == 2.0
    assert config.consumption.rule.gap == timedelta(minutes=60)
    assert config.dispatch.rule.gap == timedelta(minutes=240)
    assert config.dispatch.rule.threshold_kwh is None
    assert config.dispatch.preview_same_location is True
    assert config.dispatch.lookback_days == 3


def test_bundled_config_loads():
    assert DEFAULT_CONFIG_PATH.exists()
    config = load_config()
    assert config.dispatch.gap_minutes == 240


def test_yaml_overrides(tmp_path):
    path = tmp_path / "evtracker.yaml"
    path.write_text(
        "tariff:\n"
        "  default_rate_pence: 8.2\n"
        "vehicle: Zoe\n"
        "consumption:\n"
        "  threshold_kwh: 1.5\n"
        "dispatch:\n"
        "  gap_minutes: 120\n"
        "  same_location: true\n"
    )

    config = load_config(path)
    assert config.default_rate_pence == 8.2
    assert config.smart_charging_rate_pence == 7.0
    assert config.vehicle == "Zoe"
    assert config.consumption.rule.threshold_kwh == 1.5
    assert config.dispatch.rule.gap == timedelta(minutes=120)
    assert config.dispatch.rule.same_location is True


def test_env_vehicle_wins(tmp_path, monkeypatch):
    path = tmp_path / "evtracker.yaml"
    path.write_text("vehicle: Zoe\n")
    monkeypatch.setenv("DEFAULT_VEHICLE", "Kona")

    assert load_config(path).vehicle == "Kona"


def test_empty_file(tmp_path):
    path = tmp_path / "evtracker.yaml"
    path.write_text("")
    assert load_config(path).default_rate_pence == 7.5
