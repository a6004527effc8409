"""Tests for runtime binary detection."""

from unittest.mock import Mock

import pytest

from core.exceptions import DockerCommandError
from core.models import AnalysisType, Binary
from integrations.binaries import RuntimeBinaryAnalyzer, parse_node_version, parse_openjdk_version

IMAGE = "example/app:1.0"

JAVA_OUTPUT = (
    'openjdk version "1.8.0_191"\n'
    "OpenJDK Runtime Environment (build 1.8.0_191-b12)\n"
    "OpenJDK 64-Bit Server VM (build 25.191-b12, mixed mode)\n"
)


class TestParseNodeVersion:
    """Tests for parse_node_version function."""

    def test_version(self):
        assert parse_node_version("v18.19.0\n") == Binary(name="node", version="18.19.0")

    def test_prerelease(self):
        assert parse_node_version("v21.0.0-rc.1") == Binary(name="node", version="21.0.0-rc.1")

    @pytest.mark.parametrize("output", ["", "node: not found", "v18"])
    def test_unparseable(self, output):
        assert parse_node_version(output) is None


class TestParseOpenjdkVersion:
    """Tests for parse_openjdk_version function."""

    def test_version(self):
        assert parse_openjdk_version(JAVA_OUTPUT) == Binary(name="openjdk-jre", version="1.8.0_191-b12")

    def test_wrong_line_count(self):
        assert parse_openjdk_version("OpenJDK Runtime Environment (build 17.0.9+9)") is None

    def test_no_build(self):
        assert parse_openjdk_version("a\nb\nc\n") is None


class TestRuntimeBinaryAnalyzer:
    """Tests for RuntimeBinaryAnalyzer class."""

    def test_no_runtime(self):
        result = RuntimeBinaryAnalyzer().analyze(IMAGE, [])

        assert result.analyze_type == AnalysisType.BINARIES
        assert result.analysis == ()

    def test_node_and_java_versions(self, mock_client):
        """Test node is read from stdout and java from stderr."""
        mock_client.run.side_effect = [
            Mock(stdout=b"v20.11.0\n", stderr=b""),
            Mock(stdout=b"", stderr=JAVA_OUTPUT.encode()),
        ]

        result = RuntimeBinaryAnalyzer(mock_client).analyze(IMAGE, [])

        assert result.analysis == (
            Binary(name="node", version="20.11.0"),
            Binary(name="openjdk-jre", version="1.8.0_191-b12"),
        )
        mock_client.run.assert_any_call(IMAGE, "node", ["--version"])
        mock_client.run.assert_any_call(IMAGE, "java", ["-version"])

    def test_skips_installed_packages(self, mock_client):
        """Test binaries owned by the package manager are not probed."""
        mock_client.run.return_value = Mock(stdout=b"", stderr=JAVA_OUTPUT.encode())

        result = RuntimeBinaryAnalyzer(mock_client).analyze(IMAGE, ["nodejs", "bash"], "apt")

        assert result.analysis == (Binary(name="openjdk-jre", version="1.8.0_191-b12"),)
        mock_client.run.assert_called_once_with(IMAGE, "java", ["-version"])

    def test_missing_binary(self, mock_client):
        mock_client.run.side_effect = DockerCommandError(
            ["docker", "run"], stderr='exec: "node": executable file not found in $PATH'
        )

        assert RuntimeBinaryAnalyzer(mock_client).analyze(IMAGE, []).analysis == ()

    def test_runtime_failure_propagates(self, mock_client):
        mock_client.run.side_effect = DockerCommandError(["docker", "run"], stderr="daemon unavailable")

        with pytest.raises(DockerCommandError):
            RuntimeBinaryAnalyzer(mock_client).analyze(IMAGE, [])
