"""
Pytest fixtures and configuration for Strata tests.

Provides builders for synthetic layer tars and image archives (docker save
and OCI layouts) plus shared sample data.
"""

import gzip
import hashlib
import io
import json
import tarfile
from pathlib import Path
from typing import Optional
from unittest.mock import Mock, patch

import pytest

from core.cache import ProductCache
from utils.docker_utils import DockerClient


def _add_file(tar: tarfile.TarFile, name: str, content: bytes) -> None:
    info = tarfile.TarInfo(name=name)
    info.size = len(content)
    tar.addfile(info, io.BytesIO(content))


def build_layer(
    files: Optional[dict] = None,
    whiteouts: tuple = (),
    symlinks: Optional[dict] = None,
    compress: bool = False,
) -> bytes:
    """Build a layer tar in memory from {path: content}."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        for name, content in (files or {}).items():
            if isinstance(content, str):
                content = content.encode()
            _add_file(tar, name, content)
        for name in whiteouts:
            _add_file(tar, name, b"")
        for name, target in (symlinks or {}).items():
            info = tarfile.TarInfo(name=name)
            info.type = tarfile.SYMTYPE
            info.linkname = target
            tar.addfile(info)
    data = buffer.getvalue()
    return gzip.compress(data) if compress else data


def build_docker_archive(
    path: Path,
    layers: list,
    manifest_layers: Optional[list] = None,
    config: Optional[dict] = None,
    repo_tags: Optional[list] = None,
    include_manifest: bool = True,
) -> Path:
    """
    Write a `docker save` style archive.

    Args:
        path: Archive path to write
        layers: [(entry name, layer bytes)] in application order
        manifest_layers: Layer names listed in manifest.json (defaults to all)
        config: Image config written as <hex>.json
        repo_tags: RepoTags recorded in manifest.json
        include_manifest: Whether to write manifest.json
    """
    config_bytes = json.dumps(config or {"rootfs": {"type": "layers", "diff_ids": []}}).encode()
    config_name = hashlib.sha256(config_bytes).hexdigest() + ".json"

    with tarfile.open(path, mode="w") as tar:
        _add_file(tar, config_name, config_bytes)
        for name, data in layers:
            _add_file(tar, name, data)
        if include_manifest:
            manifest = [{
                "Config": config_name,
                "RepoTags": repo_tags or ["test/image:latest"],
                "Layers": manifest_layers if manifest_layers is not None else [name for name, _ in layers],
            }]
            _add_file(tar, "manifest.json", json.dumps(manifest).encode())
    return path


def build_oci_archive(path: Path, layers: list, config: Optional[dict] = None) -> Path:
    """
    Write an OCI image layout archive (index.json and blobs only).

    Args:
        path: Archive path to write
        layers: Layer bytes in application order
        config: Image config document
    """
    blobs = {}

    def add_blob(data: bytes) -> str:
        digest = hashlib.sha256(data).hexdigest()
        blobs[f"blobs/sha256/{digest}"] = data
        return f"sha256:{digest}"

    config_digest = add_blob(json.dumps(config or {"rootfs": {"diff_ids": []}}).encode())
    layer_digests = [add_blob(data) for data in layers]
    manifest_digest = add_blob(json.dumps({
        "schemaVersion": 2,
        "config": {"digest": config_digest},
        "layers": [{"digest": digest} for digest in layer_digests],
    }).encode())
    index = {"schemaVersion": 2, "manifests": [{"digest": manifest_digest}]}

    with tarfile.open(path, mode="w") as tar:
        _add_file(tar, "oci-layout", b'{"imageLayoutVersion": "1.0.0"}')
        _add_file(tar, "index.json", json.dumps(index).encode())
        for name, data in blobs.items():
            _add_file(tar, name, data)
    return path


@pytest.fixture
def layer_builder():
    """Factory for in-memory layer tars."""
    return build_layer


@pytest.fixture
def docker_archive_builder():
    """Factory for docker save style archives."""
    return build_docker_archive


@pytest.fixture
def oci_archive_builder():
    """Factory for OCI layout archives."""
    return build_oci_archive


@pytest.fixture
def docker_client():
    """DockerClient with runtime detection bypassed."""
    with patch.object(DockerClient, "_detect_runtime", return_value="docker"):
        return DockerClient()


@pytest.fixture
def mock_client():
    """Mock runtime client for session and analyzer tests."""
    client = Mock(spec=DockerClient)
    client.classify_error_type.return_value = "unknown"
    return client


@pytest.fixture
def file_session():
    """
    Factory for a session stub serving image files from {path: bytes}.

    Lookups behave like ImageSession: absent files yield None and the
    callback is applied to the raw bytes.
    """
    def make(files: dict, client=None, target_image: str = "test/image:latest"):
        session = Mock()
        session.target_image = target_image
        session.client = client
        session.live_available = client is not None
        session.cache = ProductCache()
        session.cache.merge({path: {"file": True} for path in files})

        def lookup(path, action_name, callback=None):
            content = files.get(path)
            if content is None:
                return None
            if isinstance(content, str):
                content = content.encode()
            return callback(content) if callback else content

        session.get_action_product_by_file_name.side_effect = lookup
        return session

    return make


@pytest.fixture
def sample_apk_db():
    """Sample apk installed database with two packages."""
    return (
        "C:Q1abc=\n"
        "P:musl\n"
        "V:1.2.4-r2\n"
        "A:x86_64\n"
        "o:musl\n"
        "p:so:libc.musl-x86_64.so.1=1\n"
        "\n"
        "P:curl\n"
        "V:8.5.0-r0\n"
        "o:curl\n"
        "D:ca-certificates-bundle so:libc.musl-x86_64.so.1 !curl-doc\n"
        "r:libcurl=8.5.0-r0\n"
        "p:cmd:curl=8.5.0-r0\n"
    )


@pytest.fixture
def sample_dpkg_status():
    """Sample dpkg status file."""
    return (
        "Package: libc6\n"
        "Status: install ok installed\n"
        "Version: 2.36-9+deb12u4\n"
        "Source: glibc (2.36-9)\n"
        "Depends: libgcc-s1, libcrypt1\n"
        "Description: GNU C Library\n"
        " Contains the standard libraries.\n"
        "\n"
        "Package: curl\n"
        "Version: 7.88.1-10\n"
        "Provides: curl-bin (= 7.88.1), http-client\n"
        "Pre-Depends: libc6 (>= 2.34)\n"
        "Depends: libcurl4 (= 7.88.1-10) | libcurl3, zlib1g\n"
        "\n"
    )


@pytest.fixture
def sample_extended_states():
    """Sample apt extended_states marking libc6 auto-installed."""
    return (
        "Package: libc6\n"
        "Architecture: amd64\n"
        "Auto-Installed: 1\n"
        "\n"
        "Package: curl\n"
        "Architecture: amd64\n"
        "Auto-Installed: 0\n"
    )


@pytest.fixture
def debian_os_release():
    """os-release content for Debian 12."""
    return (
        'PRETTY_NAME="Debian GNU/Linux 12 (bookworm)"\n'
        'NAME="Debian GNU/Linux"\n'
        'VERSION_ID="12"\n'
        "ID=debian\n"
    )
