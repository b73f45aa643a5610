"""Configuration management with validation.

Timing bounds are enforced at configuration load time so a misconfigured
controller fails before it touches any BMC.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_HTTP_TIMEOUT_SECONDS = 30
MIN_HTTP_TIMEOUT_SECONDS = 1
MAX_HTTP_TIMEOUT_SECONDS = 300

DEFAULT_JOB_POLL_INTERVAL_SECONDS = 10
DEFAULT_JOB_TIMEOUT_SECONDS = 300
DEFAULT_SETTINGS_JOB_TIMEOUT_SECONDS = 1200  # BIOS and boot order jobs
MAX_JOB_TIMEOUT_SECONDS = 7200

DEFAULT_POWER_POLL_INTERVAL_SECONDS = 10
DEFAULT_RESET_TIMEOUT_SECONDS = 120
MAX_RESET_TIMEOUT_SECONDS = 3600

DEFAULT_RESET_TYPE = "ForceRestart"

# Directory service AuthTimeout bounds (seconds)
MIN_AUTH_TIMEOUT_SECONDS = 15
MAX_AUTH_TIMEOUT_SECONDS = 300

# Controllers reporting this generation or newer use the 17G action set
GENERATION_SEVENTEEN = 17

# Security constraints - enforced limits to prevent abuse
MAX_SPEC_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max spec file
MAX_REGISTRY_ATTRIBUTES = 20000  # Max registry entries to parse (prevent OOM)


@dataclass(frozen=True)
class ControllerConfig:
    """Controller configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-reconcile.
    """

    # Connection defaults, overridable per spec
    endpoint: str = ""
    username: str = ""
    password: str = field(default="", repr=False)
    ssl_insecure: bool = False
    http_timeout_seconds: int = DEFAULT_HTTP_TIMEOUT_SECONDS

    # Polling
    job_poll_interval_seconds: float = DEFAULT_JOB_POLL_INTERVAL_SECONDS
    # None leaves each resource on its own job timeout
    job_timeout_seconds: int | None = None
    power_poll_interval_seconds: float = DEFAULT_POWER_POLL_INTERVAL_SECONDS
    reset_timeout_seconds: int = DEFAULT_RESET_TIMEOUT_SECONDS

    # Paths
    specs_dir: Path = field(default_factory=lambda: Path("/specs"))

    enable_audit_logging: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if self.endpoint and not self.endpoint.strip():
            errors.append("REDFISH_ENDPOINT must not be blank")

        if self.endpoint and not self.username:
            errors.append("REDFISH_USERNAME is required when REDFISH_ENDPOINT is set")

        if not (MIN_HTTP_TIMEOUT_SECONDS <= self.http_timeout_seconds <= MAX_HTTP_TIMEOUT_SECONDS):
            errors.append(
                f"REDFISH_HTTP_TIMEOUT must be between {MIN_HTTP_TIMEOUT_SECONDS} "
                f"and {MAX_HTTP_TIMEOUT_SECONDS} seconds"
            )

        if self.job_poll_interval_seconds <= 0:
            errors.append("JOB_POLL_INTERVAL must be positive")

        if self.power_poll_interval_seconds <= 0:
            errors.append("POWER_POLL_INTERVAL must be positive")

        if self.job_timeout_seconds is not None:
            if not (0 < self.job_timeout_seconds <= MAX_JOB_TIMEOUT_SECONDS):
                errors.append(
                    f"JOB_TIMEOUT must be between 1 and {MAX_JOB_TIMEOUT_SECONDS} seconds"
                )
            elif self.job_poll_interval_seconds > self.job_timeout_seconds:
                errors.append("JOB_POLL_INTERVAL cannot exceed JOB_TIMEOUT")

        if not (0 < self.reset_timeout_seconds <= MAX_RESET_TIMEOUT_SECONDS):
            errors.append(
                f"RESET_TIMEOUT must be between 1 and {MAX_RESET_TIMEOUT_SECONDS} seconds"
            )

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> ControllerConfig:
        """Load configuration from environment variables.

        Environment Variables:
            REDFISH_ENDPOINT: Default BMC address when a spec omits one
            REDFISH_USERNAME: Default BMC user
            REDFISH_PASSWORD: Default BMC password
            REDFISH_SSL_INSECURE: If "true", skip TLS certificate verification
            REDFISH_HTTP_TIMEOUT: Per-request timeout in seconds (default: 30)
            JOB_POLL_INTERVAL: Seconds between job/task polls (default: 10)
            JOB_TIMEOUT: Job/task timeout for specs that set none (default: 300,
                1200 for BIOS and boot order)
            POWER_POLL_INTERVAL: Seconds between power state polls for specs that
                set none (default: 10)
            RESET_TIMEOUT: Power transition timeout for specs that set none (default: 120)
            SPECS_DIR: Directory holding YAML specs (default: /specs)
            ENABLE_AUDIT_LOGGING: Emit JSON provenance records (default: true)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_optional_int(key: str) -> int | None:
            if os.environ.get(key) is None:
                return None
            return get_int(key, 0)

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            endpoint=os.environ.get("REDFISH_ENDPOINT", ""),
            username=os.environ.get("REDFISH_USERNAME", ""),
            password=os.environ.get("REDFISH_PASSWORD", ""),
            ssl_insecure=get_bool("REDFISH_SSL_INSECURE", False),
            http_timeout_seconds=get_int("REDFISH_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT_SECONDS),
            job_poll_interval_seconds=get_float(
                "JOB_POLL_INTERVAL", DEFAULT_JOB_POLL_INTERVAL_SECONDS
            ),
            job_timeout_seconds=get_optional_int("JOB_TIMEOUT"),
            power_poll_interval_seconds=get_float(
                "POWER_POLL_INTERVAL", DEFAULT_POWER_POLL_INTERVAL_SECONDS
            ),
            reset_timeout_seconds=get_int("RESET_TIMEOUT", DEFAULT_RESET_TIMEOUT_SECONDS),
            specs_dir=Path(os.environ.get("SPECS_DIR", "/specs")),
            enable_audit_logging=get_bool("ENABLE_AUDIT_LOGGING", True),
        )
