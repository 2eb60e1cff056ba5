#!/usr/bin/env python3
"""
Configuration Manager for docker-gc

This module handles loading and managing configuration from config.yaml
and environment variables.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails"""


DEFAULT_STATE_DIR = "/var/lib/docker-gc"
DEFAULT_MIN_INTERVAL = 3600


class ConfigManager:
    """Manages configuration for the docker-gc project"""

    def __init__(self, config_file: str = None, validate: bool = True):
        """Initialize ConfigManager

        Args:
            config_file: Path to configuration YAML file (defaults to config.yaml or CONFIG_FILE env var)
            validate: If True, validate configuration on initialization
        """
        # Allow override via environment variable for containerized deployments
        if config_file is None:
            config_file = os.environ.get("CONFIG_FILE", "config.yaml")
        self.config_file = config_file
        self.config = self._load_config()

        if validate:
            self.validate_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file with defaults"""
        default_config = {
            "docker": {"binary": "docker", "host": ""},
            "gc": {
                "state_dir": DEFAULT_STATE_DIR,
                "min_interval": DEFAULT_MIN_INTERVAL,  # Seconds between cycles unless forced
                "remove_volumes": True,
                "force_container_removal": False,
                "force_image_removal": False,
                "exclude_containers": [],  # Glob patterns on container names
                "exclude_images": [],  # Glob patterns on image tags or ids
                "dry_run": False,
            },
            "retry": {
                "max_retries": 3,
                "initial_delay": 1.0,
                "max_delay": 30.0,
                "exponential_base": 2.0,
                "jitter": True,
                "timeout": 300,  # Timeout for docker CLI calls in seconds
            },
            "reports": {"enabled": False, "output_dir": "reports"},
            "logging": {"level": "INFO"},
        }

        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, "r") as f:
                    user_config = yaml.safe_load(f) or {}
                if not isinstance(user_config, dict):
                    raise ConfigValidationError(
                        f"Config file {self.config_file} must contain a mapping, got {type(user_config).__name__}"
                    )
                return self._merge_config(default_config, user_config)
            else:
                logging.debug(f"Config file {self.config_file} not found, using defaults")
                return default_config
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"Could not parse config file {self.config_file}: {e}") from e

    def _merge_config(self, default: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge user config with defaults"""
        result = default.copy()
        for key, value in user.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value
        return result

    # Docker configuration
    def get_docker_binary(self) -> str:
        """Get docker CLI binary from environment or config"""
        return os.environ.get("DOCKER_BINARY") or self.config["docker"]["binary"]

    def get_docker_host(self) -> Optional[str]:
        """Get engine address passed to the CLI as -H; None means the CLI default"""
        host = os.environ.get("DOCKER_GC_HOST") or self.config["docker"].get("host")
        return host or None

    # GC configuration
    def get_state_dir(self) -> str:
        """Get state directory from environment or config"""
        return os.environ.get("DOCKER_GC_STATE_DIR") or self.config["gc"]["state_dir"]

    def get_min_interval(self) -> int:
        """Get minimum seconds between cycles, with type coercion"""
        interval = os.environ.get("DOCKER_GC_MIN_INTERVAL") or self.config["gc"]["min_interval"]
        try:
            return int(interval)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"gc.min_interval must be an integer, got: {interval} (type: {type(interval).__name__})"
            )

    def get_remove_volumes(self) -> bool:
        return bool(self.config["gc"]["remove_volumes"])

    def get_force_container_removal(self) -> bool:
        return bool(self.config["gc"]["force_container_removal"])

    def get_force_image_removal(self) -> bool:
        return bool(self.config["gc"]["force_image_removal"])

    def get_exclude_containers(self) -> List[str]:
        """Get glob patterns for container names that are never reaped"""
        return self._get_pattern_list("exclude_containers")

    def get_exclude_images(self) -> List[str]:
        """Get glob patterns for image tags/ids that are never reaped"""
        return self._get_pattern_list("exclude_images")

    def _get_pattern_list(self, key: str) -> List[str]:
        patterns = self.config["gc"].get(key) or []
        if isinstance(patterns, str):
            patterns = [patterns]
        if not isinstance(patterns, list):
            raise ConfigValidationError(
                f"gc.{key} must be a list of patterns, got: {patterns} (type: {type(patterns).__name__})"
            )
        return [str(p).strip() for p in patterns if str(p).strip()]

    def is_dry_run(self) -> bool:
        return bool(self.config["gc"]["dry_run"])

    # Retry configuration
    def get_max_retries(self) -> int:
        """Get max retries from config, with type coercion"""
        retries = self.config.get("retry", {}).get("max_retries", 3)
        try:
            return int(retries)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"retry.max_retries must be an integer, got: {retries} (type: {type(retries).__name__})"
            )

    def get_retry_initial_delay(self) -> float:
        """Get initial retry delay from config, with type coercion"""
        delay = self.config.get("retry", {}).get("initial_delay", 1.0)
        try:
            return float(delay)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"retry.initial_delay must be a number, got: {delay} (type: {type(delay).__name__})"
            )

    def get_retry_max_delay(self) -> float:
        """Get max retry delay from config, with type coercion"""
        delay = self.config.get("retry", {}).get("max_delay", 30.0)
        try:
            return float(delay)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"retry.max_delay must be a number, got: {delay} (type: {type(delay).__name__})"
            )

    def get_retry_exponential_base(self) -> float:
        """Get exponential base for retry backoff from config, with type coercion"""
        base = self.config.get("retry", {}).get("exponential_base", 2.0)
        try:
            return float(base)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"retry.exponential_base must be a number, got: {base} (type: {type(base).__name__})"
            )

    def get_retry_jitter(self) -> bool:
        """Get whether to use jitter in retry delays from config"""
        return self.config.get("retry", {}).get("jitter", True)

    def get_retry_timeout(self) -> int:
        """Get timeout for docker CLI calls from config, with type coercion"""
        timeout = self.config.get("retry", {}).get("timeout", 300)
        try:
            return int(timeout)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"retry.timeout must be an integer, got: {timeout} (type: {type(timeout).__name__})"
            )

    # Report configuration
    def is_report_enabled(self) -> bool:
        return bool(self.config.get("reports", {}).get("enabled", False))

    def get_output_dir(self) -> str:
        """Get report output directory from config"""
        return self.config.get("reports", {}).get("output_dir", "reports")

    # Logging configuration
    def get_log_level(self) -> str:
        return (os.environ.get("LOG_LEVEL") or self.config.get("logging", {}).get("level", "INFO")).upper()

    def validate_config(self) -> None:
        """Validate configuration values

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        errors = []
        warnings = []

        binary = self.get_docker_binary()
        if not binary or not str(binary).strip():
            errors.append("docker.binary is required and cannot be empty")

        state_dir = self.get_state_dir()
        if not state_dir or not str(state_dir).strip():
            errors.append("gc.state_dir is required and cannot be empty")
        elif not os.path.isabs(state_dir):
            warnings.append(f"gc.state_dir '{state_dir}' is relative; it will resolve against the working directory")

        min_interval = self.get_min_interval()
        if min_interval < 0:
            errors.append(f"gc.min_interval must be a non-negative integer (seconds), got: {min_interval}")
        elif min_interval < 60:
            warnings.append(
                f"gc.min_interval is very low ({min_interval}s); containers stopped for a moment may be reaped"
            )

        self.get_exclude_containers()
        self.get_exclude_images()

        # Validate retry configuration
        max_retries = self.get_max_retries()
        if max_retries < 0:
            errors.append(f"retry.max_retries must be a non-negative integer, got: {max_retries}")
        elif max_retries > 10:
            warnings.append(f"max_retries is very high ({max_retries}), a dead daemon will take a long time to report")

        initial_delay = self.get_retry_initial_delay()
        if initial_delay < 0:
            errors.append(f"retry.initial_delay must be a non-negative number, got: {initial_delay}")

        max_delay = self.get_retry_max_delay()
        if max_delay < 0:
            errors.append(f"retry.max_delay must be a non-negative number, got: {max_delay}")
        elif max_delay < initial_delay:
            errors.append(f"retry.max_delay ({max_delay}) must be >= retry.initial_delay ({initial_delay})")

        exponential_base = self.get_retry_exponential_base()
        if exponential_base < 1.0:
            errors.append(f"retry.exponential_base must be >= 1.0, got: {exponential_base}")

        retry_timeout = self.get_retry_timeout()
        if retry_timeout < 1:
            errors.append(f"retry.timeout must be a positive integer (seconds), got: {retry_timeout}")

        if self.is_report_enabled():
            output_dir = self.get_output_dir()
            if not output_dir or not str(output_dir).strip():
                errors.append("reports.output_dir is required when reports are enabled")

        log_level = self.get_log_level()
        if log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append(f"logging.level must be a standard level name, got: {log_level}")

        # Log warnings
        for warning in warnings:
            logging.warning(f"Configuration warning: {warning}")

        # Raise error if there are validation errors
        if errors:
            error_msg = "Configuration validation failed:\n  " + "\n  ".join(errors)
            logging.error(error_msg)
            raise ConfigValidationError(error_msg)

    def print_config(self):
        """Print current configuration"""
        print("Current Configuration:")
        print(f"  Docker Binary: {self.get_docker_binary()}")
        print(f"  Docker Host: {self.get_docker_host() or 'CLI default'}")
        print(f"  State Directory: {self.get_state_dir()}")
        print(f"  Minimum Interval: {self.get_min_interval()}s")
        print(f"  Remove Volumes: {self.get_remove_volumes()}")
        print(f"  Excluded Containers: {', '.join(self.get_exclude_containers()) or 'none'}")
        print(f"  Excluded Images: {', '.join(self.get_exclude_images()) or 'none'}")
        print(f"  Dry Run: {self.is_dry_run()}")
        print(f"  Reports: {self.get_output_dir() if self.is_report_enabled() else 'disabled'}")

