"""
Configuration management for the itemstore schema compiler.

All configuration is done via environment variables, so the same compiler
run behaves identically in CI and on a developer machine.

Invariants:
    - All settings have sensible defaults for local development
    - Configuration is immutable once loaded

How to change safely:
    - Add new settings with defaults that keep current behaviour
    - Prefix every variable with SCHEMAC_
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

import json_log_formatter

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_LOG_FORMATS = ("json", "text")


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("SCHEMAC_LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("SCHEMAC_LOG_FORMAT", "text").lower(),
        )


@dataclass(frozen=True)
class CompilerConfig:
    """Complete compiler configuration.

    Attributes:
        descriptor_indent: JSON indentation of emitted descriptors (None for compact)
        allow_breaking_changes: Accept breaking changes against a deployed baseline
        observability: Logging configuration
    """

    descriptor_indent: Optional[int] = 2
    allow_breaking_changes: bool = False
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> CompilerConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If a setting is invalid.
        """
        indent_str = os.getenv("SCHEMAC_DESCRIPTOR_INDENT", "2")
        try:
            indent = int(indent_str) if indent_str.lower() != "none" else None
        except ValueError:
            raise ValueError(
                f"Invalid SCHEMAC_DESCRIPTOR_INDENT '{indent_str}'. Must be an integer or 'none'"
            ) from None

        config = cls(
            descriptor_indent=indent,
            allow_breaking_changes=os.getenv(
                "SCHEMAC_ALLOW_BREAKING_CHANGES", "false"
            ).lower() == "true",
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.descriptor_indent is not None and self.descriptor_indent < 0:
            raise ValueError("SCHEMAC_DESCRIPTOR_INDENT must not be negative")
        if self.observability.log_level not in _LOG_LEVELS:
            raise ValueError(
                f"Invalid SCHEMAC_LOG_LEVEL '{self.observability.log_level}'. "
                f"Must be one of: {', '.join(_LOG_LEVELS)}"
            )
        if self.observability.log_format not in _LOG_FORMATS:
            raise ValueError(
                f"Invalid SCHEMAC_LOG_FORMAT '{self.observability.log_format}'. "
                f"Must be one of: {', '.join(_LOG_FORMATS)}"
            )


def setup_logging(config: CompilerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Compiler configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]
