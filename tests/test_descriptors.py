"""
Tests for the descriptor directory scanner.
"""

import json

import pytest

from oxide_supervisor.descriptors import (
    DescriptorError, load_descriptor, parse_type, scan_descriptors,
)
from oxide_supervisor.models.application import ApplicationType


@pytest.fixture
def descriptor_dir(tmp_path):
    path = tmp_path / "applications"
    path.mkdir()
    return path


class TestParseType:
    def test_names_are_case_insensitive(self):
        assert parse_type("Background") == ApplicationType.BACKGROUND
        assert parse_type("BACKGROUNDABLE") == ApplicationType.BACKGROUNDABLE
        assert parse_type("foreground") == ApplicationType.FOREGROUND

    def test_missing_is_foreground(self):
        assert parse_type(None) == ApplicationType.FOREGROUND
        assert parse_type("") == ApplicationType.FOREGROUND

    def test_unknown_falls_back_with_warning(self, caplog):
        assert parse_type("sideways", source="x.oxide") == ApplicationType.FOREGROUND
        assert "sideways" in caplog.text


class TestLoadDescriptor:
    """Conversion of one descriptor into a settings record."""

    def test_yaml_descriptor(self, descriptor_dir, make_executable):
        bin_path = make_executable("erode")
        path = descriptor_dir / "codes.eeems.erode.oxide"
        path.write_text(
            f"type: background\n"
            f"bin: {bin_path}\n"
            f"displayName: Process Manager\n"
            f"flags: [exclusive, system]\n"
            f"events:\n"
            f"  stop: /bin/true --stop\n"
            f"environment:\n"
            f"  QT_QUICK_BACKEND: epaper\n"
        )

        record = load_descriptor(path)

        assert record["name"] == "codes.eeems.erode"
        assert record["type"] == int(ApplicationType.BACKGROUND)
        assert record["flags"] == ["system", "exclusive"]
        assert record["displayName"] == "Process Manager"
        assert record["onStop"] == "/bin/true --stop"
        assert record["environment"] == {"QT_QUICK_BACKEND": "epaper"}

    def test_json_descriptor(self, descriptor_dir):
        path = descriptor_dir / "codes.eeems.fret.oxide"
        path.write_text(json.dumps({"bin": "/opt/bin/fret", "type": "backgroundable"}))

        record = load_descriptor(path)

        assert record["name"] == "codes.eeems.fret"
        assert record["type"] == int(ApplicationType.BACKGROUNDABLE)
        assert record["flags"] == ["system"]

    def test_missing_bin(self, descriptor_dir):
        path = descriptor_dir / "broken.oxide"
        path.write_text("type: foreground\n")
        with pytest.raises(DescriptorError):
            load_descriptor(path)

    def test_not_a_mapping(self, descriptor_dir):
        path = descriptor_dir / "list.oxide"
        path.write_text("- a\n- b\n")
        with pytest.raises(DescriptorError):
            load_descriptor(path)

    def test_malformed_yaml(self, descriptor_dir):
        path = descriptor_dir / "bad.oxide"
        path.write_text("bin: [unterminated\n")
        with pytest.raises(DescriptorError):
            load_descriptor(path)


class TestScanDescriptors:
    """Directory scans."""

    def test_missing_directory(self, tmp_path):
        scan = scan_descriptors(tmp_path / "nope")
        assert scan.records == {}
        assert scan.present == set()

    def test_only_suffix_matches(self, descriptor_dir, make_executable):
        bin_path = make_executable("clock")
        (descriptor_dir / "clock.oxide").write_text(f"bin: {bin_path}\n")
        (descriptor_dir / "README").write_text("not a descriptor")

        scan = scan_descriptors(descriptor_dir)

        assert set(scan.records) == {"clock"}

    def test_missing_binary_is_skipped_but_present(self, descriptor_dir, tmp_path):
        """A vanished binary does not retire the application."""
        (descriptor_dir / "ghost.oxide").write_text(f"bin: {tmp_path / 'missing'}\n")

        scan = scan_descriptors(descriptor_dir)

        assert "ghost" not in scan.records
        assert "ghost" in scan.present
        assert len(scan.errors) == 1

    def test_bad_descriptor_does_not_stop_scan(self, descriptor_dir, make_executable):
        bin_path = make_executable("good")
        (descriptor_dir / "bad.oxide").write_text("bin: [unterminated\n")
        (descriptor_dir / "good.oxide").write_text(f"bin: {bin_path}\n")

        scan = scan_descriptors(descriptor_dir)

        assert set(scan.records) == {"good"}
        assert scan.present == {"bad", "good"}

    def test_custom_suffix(self, descriptor_dir, make_executable):
        bin_path = make_executable("app")
        (descriptor_dir / "my.app.desc").write_text(f"bin: {bin_path}\n")

        scan = scan_descriptors(descriptor_dir, suffix=".desc")

        assert set(scan.records) == {"my.app"}
