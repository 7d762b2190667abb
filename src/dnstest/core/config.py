"""Configuration system for the dnstest application.

This module implements the main configuration schema using Pydantic for
validation, with support for environment variable resolution and fail-fast
validation with actionable error messages. Every section has defaults, so
running without a configuration file is valid.
"""

import ipaddress
import os
import re
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Annotated, Final, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from dnstest.core.comparator import PUBLIC_DNS_ALLOW_LIST
from dnstest.core.errors import DnsTestError
from dnstest.core.prober import DEFAULT_ATTEMPTS, DEFAULT_PAYLOAD_SIZE, DEFAULT_PER_ATTEMPT_TIMEOUT
from dnstest.core.resolvers import DEFAULT_REFERENCE_RESOLVERS, DEFAULT_RESOLVER_TIMEOUT
from dnstest.core.scheduler import DEFAULT_CONCURRENCY_LIMIT, DEFAULT_GLOBAL_DEADLINE
from dnstest.types import IPAddress

# Regular expression pattern for environment variable references
# Matches ${VARIABLE_NAME} syntax where VARIABLE_NAME can contain letters, digits, and underscores
ENV_VAR_PATTERN: Final[re.Pattern[str]] = re.compile(r"\$\{([A-Z0-9_]+)\}")

DEFAULT_CONFIG_DIR: Final[Path] = Path("~/.config/dnstest")

type OutputFormat = Literal["table", "json", "csv", "tsv"]


def _validate_ip_literals(values: Sequence[str]) -> Sequence[str]:
    for value in values:
        try:
            _ = ipaddress.ip_address(value)
        except ValueError:
            msg = f"Not an IP address literal: {value!r}"
            raise ValueError(msg) from None
    return values


class ProbingConfig(BaseModel):
    """Configuration for ICMP probe runs.

    Defines per-endpoint probing behavior and the limits applied to a whole
    run: how many probes may be in flight and how long the run may take.
    """

    attempts: Annotated[
        int,
        Field(
            ge=1,
            description="Echo rounds per endpoint",
        ),
    ] = DEFAULT_ATTEMPTS
    per_attempt_timeout: Annotated[
        float,
        Field(
            gt=0,
            description="Seconds to wait for each echo reply",
        ),
    ] = DEFAULT_PER_ATTEMPT_TIMEOUT
    concurrency_limit: Annotated[
        int,
        Field(
            ge=1,
            description="Maximum probes in flight at once",
        ),
    ] = DEFAULT_CONCURRENCY_LIMIT
    global_deadline: Annotated[
        float,
        Field(
            gt=0,
            description="Seconds allowed for a whole probe run",
        ),
    ] = DEFAULT_GLOBAL_DEADLINE
    payload_size: Annotated[
        int,
        Field(
            ge=0,
            le=65000,
            description="Echo payload size in bytes",
        ),
    ] = DEFAULT_PAYLOAD_SIZE
    privileged: Annotated[
        bool,
        Field(
            description="Use raw ICMP sockets (requires root or CAP_NET_RAW)",
        ),
    ] = True


class PollutionConfig(BaseModel):
    """Configuration for DNS pollution checks."""

    reference_resolvers: Annotated[
        Sequence[str],
        Field(
            min_length=1,
            description="Trusted public resolvers answers are compared against",
        ),
    ] = list(DEFAULT_REFERENCE_RESOLVERS)
    public_allow_list: Annotated[
        Sequence[str],
        Field(
            description="Known public resolver addresses never treated as pollution",
        ),
    ] = sorted(str(ip) for ip in PUBLIC_DNS_ALLOW_LIST)
    default_domain: Annotated[
        str,
        Field(
            min_length=1,
            description="Domain checked when none is given",
        ),
    ] = "google.com"
    resolver_timeout: Annotated[
        float,
        Field(
            gt=0,
            description="Seconds allowed per DNS query",
        ),
    ] = DEFAULT_RESOLVER_TIMEOUT

    @field_validator("reference_resolvers", "public_allow_list", mode="after")
    @classmethod
    def validate_addresses(cls, v: Sequence[str]) -> Sequence[str]:
        """Validate that every entry is an IP address literal.

        Raises:
            ValueError: If an entry does not parse as IPv4 or IPv6
        """
        return _validate_ip_literals(v)

    def allow_list_addresses(self) -> frozenset[IPAddress]:
        """Allow-list as parsed address objects."""
        return frozenset(ipaddress.ip_address(value) for value in self.public_allow_list)


class ListsConfig(BaseModel):
    """Configuration for DNS server list files."""

    config_dir: Annotated[
        Path,
        Field(
            description="Directory holding dnslist.json and dnslist-v6.json",
        ),
    ] = DEFAULT_CONFIG_DIR
    update_url: Annotated[
        str | None,
        Field(
            description="URL the update command downloads the server list from",
            pattern=r"^https?://",
        ),
    ] = None

    @field_validator("config_dir", mode="after")
    @classmethod
    def expand_config_dir(cls, v: Path) -> Path:
        """Expand a leading ~ in the list directory."""
        return v.expanduser()


class ApplicationConfig(BaseModel):
    """Configuration for application-level settings."""

    log_level: Annotated[
        str,
        Field(
            description="Logging level",
            pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        ),
    ] = "WARNING"
    output_format: Annotated[
        OutputFormat,
        Field(
            description="Default report format",
        ),
    ] = "table"


class MainConfig(BaseModel):
    """Main application configuration schema.

    Top-level configuration container aggregating all configuration sections:
    - probing: ICMP probe run settings
    - pollution: DNS pollution check settings
    - lists: DNS server list location and update source
    - application: Application-level settings
    """

    probing: Annotated[
        ProbingConfig,
        Field(
            description="ICMP probe run configuration",
        ),
    ] = ProbingConfig()
    pollution: Annotated[
        PollutionConfig,
        Field(
            description="DNS pollution check configuration",
        ),
    ] = PollutionConfig()
    lists: Annotated[
        ListsConfig,
        Field(
            description="DNS server list configuration",
        ),
    ] = ListsConfig()
    application: Annotated[
        ApplicationConfig,
        Field(
            description="Application-level configuration",
        ),
    ] = ApplicationConfig()


class EnvironmentVariableError(DnsTestError):
    """Exception raised when environment variable resolution fails.

    Raised when a referenced environment variable is missing. The message
    names the variable without exposing any value.
    """


class ConfigurationError(DnsTestError):
    """Exception raised when configuration loading or validation fails.

    Carries detailed, actionable messages for missing files, YAML parsing
    errors and validation failures.
    """


def resolve_env_var(value: str) -> str:
    """Resolve environment variable references in a string value.

    Args:
        value: String potentially containing ${VARIABLE_NAME} references

    Returns:
        String with environment variables resolved

    Raises:
        EnvironmentVariableError: If a referenced environment variable is missing

    Examples:
        >>> os.environ["DNSTEST_DOMAIN"] = "example.com"
        >>> resolve_env_var("${DNSTEST_DOMAIN}")
        'example.com'
        >>> resolve_env_var("no variables here")
        'no variables here'
    """

    def replace_match(match: re.Match[str]) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)

        if env_value is None:
            msg = (
                f"Required environment variable '{var_name}' is not set. "
                f"Please set this variable before starting the application."
            )
            raise EnvironmentVariableError(msg)

        return env_value

    return ENV_VAR_PATTERN.sub(replace_match, value)


def _resolve_value(value: object) -> object:
    if isinstance(value, str):
        return resolve_env_var(value)
    if isinstance(value, dict):
        # YAML data is untyped at load time; validated by Pydantic after resolution
        return resolve_env_vars_in_dict(value)  # pyright: ignore[reportUnknownArgumentType]  # YAML boundary
    if isinstance(value, list):
        return [_resolve_value(item) for item in value]  # pyright: ignore[reportUnknownVariableType]  # YAML list items
    return value


def resolve_env_vars_in_dict(data: Mapping[str, object]) -> dict[str, object]:
    """Recursively resolve environment variables in a dictionary.

    Traverses nested dictionaries and lists, resolving environment variable
    references in string values. Non-string values are preserved as-is.

    Raises:
        EnvironmentVariableError: If a referenced environment variable is missing

    Examples:
        >>> os.environ["DNSTEST_DIR"] = "/tmp/lists"
        >>> resolve_env_vars_in_dict({"lists": {"config_dir": "${DNSTEST_DIR}"}})
        {'lists': {'config_dir': '/tmp/lists'}}
    """
    return {key: _resolve_value(value) for key, value in data.items()}


def discover_config_file(cwd: Path | None = None, home: Path | None = None) -> Path | None:
    """Find the first existing configuration file in the search path.

    Searches ./dnstest.yaml, ./dnstest.yml, ~/.config/dnstest/config.yaml
    and /etc/dnstest/config.yaml in that order.

    Returns:
        Path of the first existing file, or None to use defaults
    """
    base = cwd or Path.cwd()
    user_home = home or Path.home()
    candidates = (
        base / "dnstest.yaml",
        base / "dnstest.yml",
        user_home / ".config" / "dnstest" / "config.yaml",
        Path("/etc/dnstest/config.yaml"),
    )
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return None


def load_main_config(config_path: Path) -> MainConfig:
    """Load and validate main application configuration from YAML file.

    Loads the configuration file, resolves environment variables, and
    validates against the MainConfig schema. An empty file yields the
    defaults.

    Args:
        config_path: Path to configuration YAML file

    Returns:
        Validated MainConfig instance

    Raises:
        ConfigurationError: If configuration file cannot be loaded or is invalid

    Examples:
        >>> config = load_main_config(Path("dnstest.yaml"))  # doctest: +SKIP
        >>> config.probing.concurrency_limit  # doctest: +SKIP
        20
    """
    if not config_path.exists():
        msg = (
            f"Configuration file not found: {config_path}\n"
            f"Please create a configuration file at this location.\n"
            f"See the example configuration for the file format."
        )
        raise ConfigurationError(msg)

    try:
        with config_path.open("r") as f:
            raw_data: object = yaml.safe_load(f)  # pyright: ignore[reportAny]  # YAML boundary
    except yaml.YAMLError as e:
        msg = (
            f"Failed to parse YAML configuration file: {config_path}\n"
            f"YAML parsing error: {e}\n"
            f"Please check the file for syntax errors."
        )
        raise ConfigurationError(msg) from e
    except OSError as e:
        msg = f"Failed to read configuration file: {config_path}\nError: {e}\nPlease check file permissions."
        raise ConfigurationError(msg) from e

    if raw_data is None:
        return MainConfig()

    if not isinstance(raw_data, dict):
        msg = (
            f"Invalid configuration file format: {config_path}\n"
            f"Expected YAML dictionary at root level, got: {type(raw_data).__name__}\n"
            f"Configuration file must contain key-value pairs."
        )
        raise ConfigurationError(msg)

    try:
        resolved_data = resolve_env_vars_in_dict(raw_data)  # pyright: ignore[reportUnknownArgumentType]  # YAML boundary
    except EnvironmentVariableError as e:
        msg = (
            f"Environment variable resolution failed in: {config_path}\n"
            f"{e}\n"
            f"Set the required environment variable before starting the application."
        )
        raise ConfigurationError(msg) from e

    try:
        config = MainConfig.model_validate(resolved_data)
    except ValidationError as e:
        error_lines = ["Configuration validation failed:", ""]
        for error in e.errors():
            field_path = " → ".join(str(loc) for loc in error["loc"])
            error_lines.append(f"  Field: {field_path}")
            error_lines.append(f"  Error: {error['msg']}")
            error_lines.append(f"  Type: {error['type']}")
            error_lines.append("")

        error_lines.append(f"Configuration file: {config_path}")
        error_lines.append("Please fix the above errors and try again.")

        msg = "\n".join(error_lines)
        raise ConfigurationError(msg) from e

    return config
