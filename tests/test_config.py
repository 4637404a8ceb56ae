import logging

import pytest

from sketches.config import DEFAULTS, configure_logging, load_config
from sketches.errors import DeserializationFailure, InvalidConfiguration
from sketches.hyper_log_log import HyperLogLog


class TestLoadConfig:
    def test_defaults_without_file(self, tmp_path):
        assert load_config() == DEFAULTS
        assert load_config(str(tmp_path / "missing.yaml")) == DEFAULTS

    def test_defaults_are_not_shared(self):
        cfg = load_config()
        cfg["register_count"] = 16
        assert DEFAULTS["register_count"] == 1024

    def test_overlays_yaml(self, tmp_path):
        path = tmp_path / "sketch.yaml"
        path.write_text("register_count: 64\nstrict_decode: true\n")
        cfg = load_config(str(path))
        assert cfg == {"register_count": 64, "strict_decode": True, "log_level": "WARNING"}
        assert HyperLogLog.from_config(cfg).register_count == 64

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(str(path)) == DEFAULTS

    def test_rejects_unknown_keys(self, tmp_path):
        path = tmp_path / "sketch.yaml"
        path.write_text("registers: 64\n")
        with pytest.raises(InvalidConfiguration, match="registers"):
            load_config(str(path))

    def test_rejects_non_mapping(self, tmp_path):
        path = tmp_path / "sketch.yaml"
        path.write_text("- 64\n- 128\n")
        with pytest.raises(InvalidConfiguration):
            load_config(str(path))

    def test_bad_register_count_fails_at_construction(self, tmp_path):
        path = tmp_path / "sketch.yaml"
        path.write_text("register_count: 100\n")
        with pytest.raises(InvalidConfiguration):
            HyperLogLog.from_config(load_config(str(path)))

    def test_strict_decode_setting_applies_to_snapshots(self, tmp_path):
        text = '{"M":10,"B":4,"A":0.5,"R":[0,0,0,0,0,0,0,0,0,0]}'
        assert HyperLogLog.from_config(load_config(), text).register_count == 10

        path = tmp_path / "sketch.yaml"
        path.write_text("strict_decode: true\n")
        with pytest.raises(DeserializationFailure):
            HyperLogLog.from_config(load_config(str(path)), text)

    def test_from_config_decodes_valid_snapshot(self, tmp_path):
        path = tmp_path / "sketch.yaml"
        path.write_text("strict_decode: true\n")
        source = HyperLogLog(64)
        source.add(0x80000000)
        assert HyperLogLog.from_config(load_config(str(path)), source.serialize()) == source


class TestConfigureLogging:
    def test_sets_package_levels(self):
        configure_logging({"log_level": "debug"})
        assert logging.getLogger("sketches").level == logging.DEBUG
        assert logging.getLogger("analytics").level == logging.DEBUG
        configure_logging()
        assert logging.getLogger("sketches").level == logging.WARNING

    def test_rejects_unknown_level(self):
        with pytest.raises(InvalidConfiguration):
            configure_logging({"log_level": "chatty"})

    def test_saturation_warning_is_logged(self, caplog):
        hll = HyperLogLog(16)
        hll.add_batch([j << 28 for j in range(16)])
        with caplog.at_level(logging.WARNING, logger="sketches.hyper_log_log"):
            hll.count()
        assert "saturates" in caplog.text
