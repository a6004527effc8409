"""Tests for scan sessions and their data sources."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from core.cache import ProductCache
from core.config import ScanConfig
from core.exceptions import (
    ArchiveReadError,
    ConfigurationException,
    DockerCommandError,
    ImageNotFoundError,
    ScanException,
)
from core.models import ExtractAction, to_text
from core.session import ImageSession
from core.sources import LiveSource, StaticSource

IMAGE = "example/app:1.0"

ACTIONS = [
    ExtractAction(name="os-release", pattern="/etc/os-release", callback=to_text),
    ExtractAction(name="dpkg", pattern="/var/lib/dpkg/status", callback=to_text),
]


@pytest.fixture
def image_archive(tmp_path, layer_builder, docker_archive_builder):
    """Docker archive with an os-release file."""
    return docker_archive_builder(tmp_path / "image.tar", [
        ("aaa/layer.tar", layer_builder({"etc/os-release": "ID=debian\n"})),
    ])


@pytest.fixture
def saving_client(mock_client, layer_builder, docker_archive_builder):
    """Mock client whose save writes a small archive to the destination."""
    saved = []

    def fake_save(image, destination):
        saved.append(destination)
        docker_archive_builder(Path(destination), [
            ("aaa/layer.tar", layer_builder({"etc/os-release": "ID=alpine\n"})),
        ])

    mock_client.get_image_size.return_value = 1024
    mock_client.save.side_effect = fake_save
    mock_client.saved = saved
    return mock_client


class TestStaticSource:
    """Tests for StaticSource class."""

    def test_product_from_cache(self):
        cache = ProductCache()
        cache.merge({"/etc/os-release": {"os-release": "ID=alpine"}})
        source = StaticSource(cache)

        assert source.name() == "static"
        assert source.product("/etc/os-release", "os-release") == "ID=alpine"
        assert source.product("/etc/missing", "os-release") is None


class TestLiveSource:
    """Tests for LiveSource class."""

    def test_applies_callback(self, mock_client):
        mock_client.cat_bytes.return_value = b"ID=alpine\n"
        source = LiveSource(mock_client, IMAGE)

        assert source.name() == "live"
        assert source.product("/etc/os-release", "os-release", to_text) == "ID=alpine\n"
        mock_client.cat_bytes.assert_called_once_with(IMAGE, "/etc/os-release")

    def test_raw_bytes_without_callback(self, mock_client):
        mock_client.cat_bytes.return_value = b"\x00\x01"

        assert LiveSource(mock_client, IMAGE).product("/x", "raw") == b"\x00\x01"

    def test_absent_file(self, mock_client):
        mock_client.cat_bytes.return_value = None

        assert LiveSource(mock_client, IMAGE).product("/x", "raw", to_text) is None


class TestScanDecision:
    """Tests for ImageSession.scan_statically_if_needed."""

    @pytest.mark.parametrize("size", [None, 0])
    def test_unknown_size_goes_live(self, mock_client, size):
        """Test an unknown or zero size skips the static scan."""
        mock_client.get_image_size.return_value = size
        session = ImageSession(IMAGE, docker_client=mock_client)

        assert session.scan_statically_if_needed(ACTIONS) is False
        assert session.source.name() == "live"
        mock_client.save.assert_not_called()

    def test_too_large_goes_live(self, mock_client):
        mock_client.get_image_size.return_value = 101
        session = ImageSession(IMAGE, docker_client=mock_client, config=ScanConfig(static_scan_max_size=100))

        assert session.scan_statically_if_needed(ACTIONS) is False
        assert session.source.name() == "live"
        mock_client.save.assert_not_called()

    def test_size_at_limit_is_scanned(self, tmp_path, saving_client):
        config = ScanConfig(static_scan_max_size=1024, temp_dir=str(tmp_path))
        session = ImageSession(IMAGE, docker_client=saving_client, config=config)

        assert session.scan_statically_if_needed(ACTIONS) is True

    def test_saves_and_extracts(self, tmp_path, saving_client):
        """Test a small image is saved, walked and the saved archive removed."""
        session = ImageSession(IMAGE, docker_client=saving_client, config=ScanConfig(temp_dir=str(tmp_path)))

        assert session.scan_statically_if_needed(ACTIONS) is True

        assert session.source.name() == "static"
        assert session.cache.get("/etc/os-release", "os-release") == "ID=alpine\n"
        destination = saving_client.saved[0]
        assert os.path.basename(destination).startswith("docker-")
        assert destination.endswith(".image")
        assert not os.path.exists(destination)
        assert list(tmp_path.iterdir()) == []

    def test_saved_archive_removed_when_extraction_fails(self, tmp_path, mock_client):
        saved = []

        def write_garbage(image, destination):
            saved.append(destination)
            Path(destination).write_bytes(b"not a tar" * 100)

        mock_client.get_image_size.return_value = 1024
        mock_client.save.side_effect = write_garbage
        session = ImageSession(IMAGE, docker_client=mock_client, config=ScanConfig(temp_dir=str(tmp_path)))

        with pytest.raises(ArchiveReadError):
            session.scan_statically_if_needed(ACTIONS)

        assert not os.path.exists(saved[0])

    def test_save_failure_propagates(self, tmp_path, mock_client):
        mock_client.get_image_size.return_value = 1024
        mock_client.save.side_effect = ImageNotFoundError(IMAGE, ["docker", "save"], "No such image")
        session = ImageSession(IMAGE, docker_client=mock_client, config=ScanConfig(temp_dir=str(tmp_path)))

        with pytest.raises(ImageNotFoundError):
            session.scan_statically_if_needed(ACTIONS)

        mock_client.classify_error_type.assert_called_once_with("No such image")
        assert list(tmp_path.iterdir()) == []

    def test_supplied_archive(self, mock_client, image_archive):
        """Test a supplied archive is walked without asking the runtime."""
        session = ImageSession(IMAGE, docker_client=mock_client)

        assert session.scan_statically_if_needed(ACTIONS, archive_path=image_archive) is True

        assert session.source.name() == "static"
        mock_client.get_image_size.assert_not_called()
        mock_client.save.assert_not_called()


class TestFileLookup:
    """Tests for ImageSession file lookups."""

    def test_static_hit_skips_runtime(self, mock_client, image_archive):
        session = ImageSession(IMAGE, docker_client=mock_client)
        session.scan_statically_if_needed(ACTIONS, archive_path=image_archive)

        product = session.get_action_product_by_file_name("/etc/os-release", "os-release", to_text)

        assert product == "ID=debian\n"
        mock_client.cat_bytes.assert_not_called()

    def test_supplied_archive_never_runs_image(self, mock_client, image_archive):
        """Test a file missing from a supplied archive is absent, not read from the runtime."""
        mock_client.cat_bytes.side_effect = DockerCommandError(["docker", "run"], stderr="pull access denied")
        session = ImageSession(IMAGE, docker_client=mock_client)
        session.scan_statically_if_needed(ACTIONS, archive_path=image_archive)

        assert session.get_action_product_by_file_name("/etc/alpine-release", "os-release", to_text) is None
        assert session.get_text_file("/etc/alpine-release") == ""
        assert session.live_available is False
        mock_client.cat_bytes.assert_not_called()
        mock_client.run_safe.assert_not_called()

    def test_saved_image_miss_falls_back_to_live(self, tmp_path, saving_client):
        """Test a file missing from a saved image is read from the runtime."""
        saving_client.cat_bytes.return_value = b"3.19.0\n"
        session = ImageSession(IMAGE, docker_client=saving_client, config=ScanConfig(temp_dir=str(tmp_path)))
        session.scan_statically_if_needed(ACTIONS)

        product = session.get_action_product_by_file_name("/etc/alpine-release", "os-release", to_text)

        assert product == "3.19.0\n"
        assert session.live_available is True
        saving_client.cat_bytes.assert_called_once_with(IMAGE, "/etc/alpine-release")

    def test_absent_everywhere(self, tmp_path, saving_client):
        saving_client.cat_bytes.return_value = None
        session = ImageSession(IMAGE, docker_client=saving_client, config=ScanConfig(temp_dir=str(tmp_path)))
        session.scan_statically_if_needed(ACTIONS)

        assert session.get_action_product_by_file_name("/etc/alpine-release", "os-release") is None
        assert session.get_text_file("/etc/alpine-release") == ""

    def test_live_only(self, mock_client):
        mock_client.get_image_size.return_value = None
        mock_client.cat_bytes.return_value = b"ID=alpine\n"
        session = ImageSession(IMAGE, docker_client=mock_client)
        session.scan_statically_if_needed(ACTIONS)

        assert session.get_text_file("/etc/os-release") == "ID=alpine\n"

    def test_lookup_before_scan_decision_reads_live(self, mock_client):
        mock_client.cat_bytes.return_value = b"x"
        session = ImageSession(IMAGE, docker_client=mock_client)

        assert session.get_action_product_by_file_name("/x", "raw") == b"x"

    def test_get_action_products(self, mock_client, image_archive):
        session = ImageSession(IMAGE, docker_client=mock_client)
        session.scan_statically_if_needed(ACTIONS, archive_path=image_archive)

        assert session.get_action_products("os-release") == {"/etc/os-release": "ID=debian\n"}


class TestNoRuntime:
    """Tests for sessions without a container runtime."""

    @pytest.fixture
    def session(self):
        with patch("core.session.DockerClient", side_effect=ConfigurationException("no runtime")):
            session = ImageSession(IMAGE)
            assert session.client is None
        return session

    def test_files_treated_as_absent(self, session):
        assert session.scan_statically_if_needed(ACTIONS) is False
        assert session.get_action_product_by_file_name("/etc/os-release", "os-release") is None
        assert session.get_text_file("/etc/os-release") == ""

    def test_size_unknown(self, session):
        assert session.size_safe() is None

    def test_inspect_without_metadata(self, session):
        with pytest.raises(ScanException, match="no container runtime"):
            session.inspect()

    def test_inspect_from_archive(self, session, image_archive):
        session.scan_statically_if_needed(ACTIONS, archive_path=image_archive)

        data = session.inspect()

        assert data["RootFS"]["Layers"]
        assert data["RepoTags"] == ["test/image:latest"]


class TestInspect:
    """Tests for ImageSession.inspect."""

    def test_runtime_inspect(self, mock_client):
        mock_client.inspect.return_value = {"Id": "sha256:abc", "RootFS": {"Layers": []}}
        session = ImageSession(IMAGE, docker_client=mock_client)

        assert session.inspect()["Id"] == "sha256:abc"
        mock_client.inspect.assert_called_once_with(IMAGE)

    def test_supplied_archive_synthesizes_inspect(self, mock_client, image_archive):
        session = ImageSession(IMAGE, docker_client=mock_client)
        session.scan_statically_if_needed(ACTIONS, archive_path=image_archive)

        data = session.inspect()

        assert data["Id"].startswith("sha256:")
        mock_client.inspect.assert_not_called()


class TestSizeSafe:
    """Tests for ImageSession.size_safe."""

    def test_returns_size(self, mock_client):
        mock_client.get_image_size.return_value = 2048

        assert ImageSession(IMAGE, docker_client=mock_client).size_safe() == 2048

    @pytest.mark.parametrize("error", [
        DockerCommandError(["docker", "inspect"], stderr="boom"),
        ValueError("not a number"),
    ])
    def test_never_raises(self, mock_client, error):
        mock_client.get_image_size.side_effect = error

        assert ImageSession(IMAGE, docker_client=mock_client).size_safe() is None
