"""
Docker/Podman utility functions for image operations.

Provides a unified interface for the container runtime calls the analysis
pipeline needs (inspect, save, and reading files from inside an image),
supporting both Docker and Podman automatically.
"""

import json
import logging
import subprocess
from dataclasses import dataclass
from typing import Optional

from constants import (
    INSPECT_TIMEOUT,
    RUN_TIMEOUT,
    SAVE_TIMEOUT,
    SUPPORTED_RUNTIMES,
    VERSION_CHECK_TIMEOUT,
)
from core.exceptions import ConfigurationException, DockerCommandError, ImageNotFoundError

logger = logging.getLogger(__name__)

NOT_FOUND_MARKERS = ("No such object", "No such image")
"""Runtime stderr fragments meaning the image itself does not exist."""

MISSING_FILE_MARKERS = ("No such file", "file not found")
"""Runtime stderr fragments meaning a file inside the image does not exist."""


@dataclass(frozen=True)
class DockerOptions:
    """Connection options passed to every runtime invocation."""

    host: Optional[str] = None
    tls_verify: Optional[str] = None
    tls_cert: Optional[str] = None
    tls_ca_cert: Optional[str] = None
    tls_key: Optional[str] = None

    def to_args(self) -> list[str]:
        """Render as global runtime flags."""
        args = []
        if self.host:
            args.append(f"--host={self.host}")
        if self.tls_cert:
            args.append(f"--tlscert={self.tls_cert}")
        if self.tls_ca_cert:
            args.append(f"--tlscacert={self.tls_ca_cert}")
        if self.tls_key:
            args.append(f"--tlskey={self.tls_key}")
        if self.tls_verify:
            args.append(f"--tlsverify={self.tls_verify}")
        return args


@dataclass(frozen=True)
class CmdOutput:
    """Captured output of a runtime command."""

    stdout: str
    stderr: str


class DockerClient:
    """
    Unified client for Docker/Podman operations.

    Automatically detects available container runtime (docker or podman)
    and provides a consistent interface for image operations.
    """

    def __init__(
        self,
        runtime: Optional[str] = None,
        options: Optional[DockerOptions] = None,
    ):
        """
        Initialize the client.

        Args:
            runtime: Runtime binary to use; detected from PATH when omitted
            options: Connection options (host, TLS material)

        Raises:
            ConfigurationException: If no container runtime is available
        """
        self.runtime = runtime or self._detect_runtime()
        if not self.runtime:
            raise ConfigurationException("Neither docker nor podman found in PATH")
        self.options = options or DockerOptions()
        logger.debug(f"Using container runtime: {self.runtime}")

    def _detect_runtime(self) -> Optional[str]:
        """Detect available container runtime."""
        for cmd in SUPPORTED_RUNTIMES:
            try:
                result = subprocess.run(
                    [cmd, "--version"],
                    capture_output=True,
                    timeout=VERSION_CHECK_TIMEOUT,
                )
                if result.returncode == 0:
                    return cmd
            except (subprocess.TimeoutExpired, FileNotFoundError):
                continue
        return None

    def _command(self, *args: str) -> list[str]:
        return [self.runtime, *self.options.to_args(), *args]

    def _execute(self, cmd: list[str], timeout: int) -> subprocess.CompletedProcess:
        """
        Run a runtime command and capture raw bytes output.

        Raises:
            DockerCommandError: On non-zero exit or timeout
        """
        try:
            result = subprocess.run(cmd, capture_output=True, timeout=timeout)
        except subprocess.TimeoutExpired as e:
            raise DockerCommandError(cmd, stderr="timeout") from e
        except FileNotFoundError as e:
            raise DockerCommandError(cmd, stderr=str(e)) from e

        if result.returncode != 0:
            raise DockerCommandError(
                cmd,
                stderr=_decode(result.stderr),
                stdout=_decode(result.stdout),
                returncode=result.returncode,
            )
        return result

    def _raise_if_image_missing(self, image: str, error: DockerCommandError) -> None:
        if any(marker in error.stderr for marker in NOT_FOUND_MARKERS):
            raise ImageNotFoundError(image, error.command, error.stderr) from error

    def inspect(self, image: str) -> dict:
        """
        Inspect an image.

        Args:
            image: Image reference

        Returns:
            First element of the runtime's inspect output ({Id, RootFS, Size, ...})

        Raises:
            ImageNotFoundError: If the image does not exist
            DockerCommandError: On any other runtime failure
        """
        cmd = self._command("inspect", image)
        try:
            result = self._execute(cmd, INSPECT_TIMEOUT)
        except DockerCommandError as e:
            self._raise_if_image_missing(image, e)
            raise

        try:
            return json.loads(_decode(result.stdout))[0]
        except (json.JSONDecodeError, IndexError, KeyError) as e:
            raise DockerCommandError(cmd, stdout=_decode(result.stdout),
                                     message=f"Unexpected inspect output for {image}") from e

    def get_image_size(self, image: str) -> int:
        """
        Get the image size in bytes as reported by the runtime.

        Raises:
            DockerCommandError: If the runtime call fails
            ValueError: If the reported size is not an integer
        """
        result = self._execute(
            self._command("inspect", "--format", "{{.Size}}", image),
            INSPECT_TIMEOUT,
        )
        return int(_decode(result.stdout).strip().strip("'\""))

    def save(self, image: str, destination: str) -> None:
        """
        Save an image to a tar archive.

        Args:
            image: Image reference
            destination: Archive path to write

        Raises:
            ImageNotFoundError: If the image does not exist
            DockerCommandError: On any other runtime failure
        """
        logger.debug(f"Saving {image} to {destination}")
        try:
            self._execute(self._command("save", "-o", destination, image), SAVE_TIMEOUT)
        except DockerCommandError as e:
            self._raise_if_image_missing(image, e)
            raise

    def run(self, image: str, cmd: str, args: Optional[list[str]] = None) -> subprocess.CompletedProcess:
        """
        Run a command inside a throwaway container of the image.

        The entrypoint is cleared and networking disabled so only the given
        command executes.
        """
        full_cmd = self._command(
            "run", "--rm", "--entrypoint", "", "--network", "none",
            image, cmd, *(args or []),
        )
        return self._execute(full_cmd, RUN_TIMEOUT)

    def run_safe(self, image: str, cmd: str, args: Optional[list[str]] = None) -> CmdOutput:
        """
        Run a command, returning missing-file errors as normal output.

        Raises:
            DockerCommandError: For failures other than a missing file
        """
        try:
            result = self.run(image, cmd, args)
        except DockerCommandError as e:
            if any(marker in e.stderr for marker in MISSING_FILE_MARKERS):
                return CmdOutput(stdout=e.stdout, stderr=e.stderr)
            raise
        return CmdOutput(stdout=_decode(result.stdout), stderr=_decode(result.stderr))

    def cat_bytes(self, image: str, path: str) -> Optional[bytes]:
        """
        Read a file from inside the image.

        Returns:
            File content, or None when the file does not exist

        Raises:
            DockerCommandError: For failures other than a missing file
        """
        try:
            return self.run(image, "cat", [path]).stdout
        except DockerCommandError as e:
            if any(marker in e.stderr for marker in MISSING_FILE_MARKERS):
                return None
            raise

    def cat_safe(self, image: str, path: str) -> CmdOutput:
        """Read a file as text; a missing file yields empty stdout and stderr."""
        content = self.cat_bytes(image, path)
        return CmdOutput(stdout=_decode(content or b""), stderr="")

    def classify_error_type(self, stderr: str) -> str:
        """
        Classify the type of error from stderr output.

        Args:
            stderr: Error output from a runtime command

        Returns:
            Error type: "timeout", "not_found", "auth", "daemon" or "unknown"
        """
        if stderr == "timeout":
            return "timeout"

        stderr_lower = stderr.lower()

        if any(marker.lower() in stderr_lower for marker in NOT_FOUND_MARKERS):
            return "not_found"

        if any(
            msg in stderr_lower
            for msg in ["unauthorized", "denied", "authentication required", "403"]
        ):
            return "auth"

        if any(
            msg in stderr_lower
            for msg in ["cannot connect to the docker daemon", "is the docker daemon running",
                        "connection refused"]
        ):
            return "daemon"

        return "unknown"


def _decode(data: Optional[bytes]) -> str:
    if data is None:
        return ""
    if isinstance(data, str):
        return data
    return data.decode("utf-8", errors="replace")
