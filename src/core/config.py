"""
Scan configuration.

ScanConfig collects the tunables of a scan session (static scan size ceiling,
temporary directory, container runtime connection, worker count) and can be
loaded from a dict, a YAML file or STRATA_* environment variables.
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from constants import DEFAULT_MAX_WORKERS, ENV_PREFIX, STATIC_SCAN_MAX_IMAGE_SIZE_IN_BYTES, SUPPORTED_RUNTIMES
from core.exceptions import ConfigurationException
from utils.docker_utils import DockerOptions

logger = logging.getLogger(__name__)

_INT_FIELDS = ("static_scan_max_size", "max_workers")


@dataclass
class ScanConfig:
    """
    Configuration for a scan session.

    Attributes:
        static_scan_max_size: Largest image (bytes) saved and walked statically
        temp_dir: Directory for saved image archives (system default if None)
        runtime: Container runtime binary, auto-detected if None
        docker_host: Runtime daemon address (--host)
        tls_verify: --tlsverify value
        tls_cert: Client certificate path (--tlscert)
        tls_ca_cert: CA certificate path (--tlscacert)
        tls_key: Client key path (--tlskey)
        max_workers: Thread pool size for concurrent analyzers
    """

    static_scan_max_size: int = STATIC_SCAN_MAX_IMAGE_SIZE_IN_BYTES
    temp_dir: Optional[str] = None
    runtime: Optional[str] = None
    docker_host: Optional[str] = None
    tls_verify: Optional[str] = None
    tls_cert: Optional[str] = None
    tls_ca_cert: Optional[str] = None
    tls_key: Optional[str] = None
    max_workers: int = DEFAULT_MAX_WORKERS

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ConfigurationException: If configuration is invalid
        """
        if self.static_scan_max_size < 0:
            raise ConfigurationException(
                f"static_scan_max_size must be non-negative, got {self.static_scan_max_size}"
            )
        if self.max_workers < 1:
            raise ConfigurationException(f"max_workers must be at least 1, got {self.max_workers}")
        if self.runtime is not None and self.runtime not in SUPPORTED_RUNTIMES:
            raise ConfigurationException(
                f"Unsupported runtime: {self.runtime} (expected one of {', '.join(SUPPORTED_RUNTIMES)})"
            )
        if self.temp_dir is not None and not Path(self.temp_dir).is_dir():
            raise ConfigurationException(f"temp_dir does not exist: {self.temp_dir}")

    def docker_options(self) -> DockerOptions:
        """Build runtime connection options from this configuration."""
        return DockerOptions(
            host=self.docker_host,
            tls_verify=self.tls_verify,
            tls_cert=self.tls_cert,
            tls_ca_cert=self.tls_ca_cert,
            tls_key=self.tls_key,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScanConfig":
        """
        Build a configuration from a mapping, ignoring unknown keys.

        Raises:
            ConfigurationException: If a numeric field is not an integer or
                the resulting configuration is invalid
        """
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in data.items():
            if key not in known:
                logger.warning(f"Ignoring unknown configuration key: {key}")
                continue
            if key in _INT_FIELDS and value is not None:
                try:
                    value = int(value)
                except (TypeError, ValueError) as e:
                    raise ConfigurationException(f"{key} must be an integer, got {value!r}") from e
            values[key] = value

        config = cls(**values)
        config.validate()
        return config

    @classmethod
    def from_yaml(cls, path: Path) -> "ScanConfig":
        """
        Load configuration from a YAML file.

        Raises:
            ConfigurationException: If the file is missing or not a YAML mapping
        """
        path = Path(path)
        if not path.exists():
            raise ConfigurationException(f"Configuration file not found: {path}")

        try:
            with open(path, "r") as f:
                content = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationException(f"Invalid YAML in {path}: {e}") from e

        if content is None:
            content = {}
        if not isinstance(content, dict):
            raise ConfigurationException(f"Configuration file {path} must contain a mapping")

        logger.debug(f"Loaded scan configuration from {path}")
        return cls.from_dict(content)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ScanConfig":
        """
        Load configuration from STRATA_* environment variables.

        Each field maps to the upper-cased variable name, e.g.
        STRATA_STATIC_SCAN_MAX_SIZE or STRATA_DOCKER_HOST.
        """
        environ = os.environ if environ is None else environ
        data = {}
        for f in fields(cls):
            value = environ.get(f"{ENV_PREFIX}{f.name.upper()}")
            if value is not None and value != "":
                data[f.name] = value
        return cls.from_dict(data)


__all__ = ["ScanConfig"]
