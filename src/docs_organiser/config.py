"""
Configuration module for the document organiser.

This module centralizes the loading and validation of all configuration
parameters. Values are resolved from (in order of precedence) explicit
overrides passed by the command line, ``DOCS_*`` environment variables, an
optional YAML configuration file (``--config``, ``DOCS_CONFIG``, or
``config.yaml`` in the working directory) and finally built-in defaults. A single
`Settings` object carries the result through the rest of the application.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal, Mapping

import openai
import yaml

# Read from the working directory when no config file is named.
DEFAULT_CONFIG_FILE = "config.yaml"


class Settings:
    """
    A container for all configuration settings.

    This class centralizes configuration, providing default values for optional
    settings and raising errors for missing required settings.
    """

    # --- Directories ---
    SOURCE_DIR: Path
    DEST_DIR: Path

    # --- Classification service ---
    API_URL: str
    API_KEY: str
    MODEL_NAME: str
    REQUEST_TIMEOUT: float

    # --- Token budgeting ---
    CONTEXT_WINDOW: int
    ENCODING: str

    # --- Pipeline ---
    WORKERS: int
    EXTRACT_LIMIT: int
    FILE_TIMEOUT: float
    CATEGORIES: list[str]

    # --- Categorization ---
    MAX_ATTEMPTS: int
    SUMMARY_MAX_ROUNDS: int

    # --- Logging ---
    LOG_LEVEL: str
    LOG_FORMAT: Literal["console", "json"]

    # --- Constants ---
    FALLBACK_CATEGORY: str = "Misc"
    FALLBACK_TITLE: str = "Unknown_Doc"

    def __init__(
        self,
        overrides: Mapping[str, Any] | None = None,
        config_file: str | os.PathLike | None = None,
    ):
        """
        Loads settings and performs validation.

        ``overrides`` maps environment variable names (``DOCS_SRC`` ...) to
        values that win over everything else; ``None`` values are ignored.
        """
        self._overrides = {k: v for k, v in (overrides or {}).items() if v is not None}
        config_file = config_file or self._overrides.get("DOCS_CONFIG") or os.getenv("DOCS_CONFIG")
        if not config_file and os.path.isfile(DEFAULT_CONFIG_FILE):
            config_file = DEFAULT_CONFIG_FILE
        self._file_values = self._load_config_file(config_file) if config_file else {}

        # --- Directories ---
        self.SOURCE_DIR = Path(self._get_required("DOCS_SRC")).expanduser()
        self.DEST_DIR = Path(self._get_required("DOCS_DST")).expanduser()

        # --- Classification service ---
        api_url = str(self._get("DOCS_API", "http://localhost:8080/v1")).rstrip("/")
        if api_url.endswith("/chat/completions"):
            api_url = api_url[: -len("/chat/completions")]
        self.API_URL = api_url
        self.API_KEY = str(self._get("DOCS_API_KEY", "dummy"))
        self.MODEL_NAME = str(
            self._get("DOCS_MODEL", "mlx-community/Llama-3.2-1B-Instruct-4bit")
        )
        self.REQUEST_TIMEOUT = self._get_float("DOCS_REQUEST_TIMEOUT", 60.0)

        # --- Token budgeting ---
        self.CONTEXT_WINDOW = self._get_int("DOCS_CTX", 4096)
        self.ENCODING = str(self._get("DOCS_ENCODING", "cl100k_base"))

        # --- Pipeline ---
        self.WORKERS = max(1, self._get_int("DOCS_WORKERS", 5))
        self.EXTRACT_LIMIT = self._get_int("DOCS_LIMIT", 100000)
        if self.EXTRACT_LIMIT <= 0:
            self.EXTRACT_LIMIT = 100000
        self.FILE_TIMEOUT = self._get_float("DOCS_FILE_TIMEOUT", 120.0)
        if self.FILE_TIMEOUT <= 0:
            raise ValueError("DOCS_FILE_TIMEOUT must be > 0")
        self.CATEGORIES = self._get_list("DOCS_CATEGORIES")

        # --- Categorization ---
        self.MAX_ATTEMPTS = self._get_int("DOCS_MAX_ATTEMPTS", 3)
        if self.MAX_ATTEMPTS < 1:
            raise ValueError("DOCS_MAX_ATTEMPTS must be >= 1")
        self.SUMMARY_MAX_ROUNDS = max(1, self._get_int("DOCS_SUMMARY_MAX_ROUNDS", 5))

        # --- Logging ---
        self.LOG_LEVEL = str(self._get("LOG_LEVEL", "INFO")).upper()
        self.LOG_FORMAT = str(self._get("LOG_FORMAT", "console")).lower()
        if self.LOG_FORMAT not in ("console", "json"):
            raise ValueError("LOG_FORMAT must be 'console' or 'json'")

    @staticmethod
    def _load_config_file(path: str | os.PathLike) -> dict[str, Any]:
        """
        Read a YAML file of settings.

        Keys may be written either as environment variable names
        (``DOCS_WORKERS``) or as their short form (``workers``).
        """
        try:
            with open(path, "r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle) or {}
        except OSError as e:
            raise ValueError(f"Failed to read config file '{path}': {e}") from e
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in config file '{path}': {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"Config file '{path}' must contain a mapping.")

        values = {}
        for key, value in data.items():
            name = str(key).upper().replace("-", "_")
            if name not in ("LOG_LEVEL", "LOG_FORMAT") and not name.startswith("DOCS_"):
                name = f"DOCS_{name}"
            values[name] = value
        return values

    def _get(self, var_name: str, default: Any = None) -> Any:
        if var_name in self._overrides:
            return self._overrides[var_name]
        value = os.getenv(var_name)
        if value is not None:
            return value
        return self._file_values.get(var_name, default)

    def _get_required(self, var_name: str) -> str:
        """
        Gets a required setting, raising an error if it's not set.
        """
        value = self._get(var_name)
        if value is None or str(value).strip() == "":
            raise ValueError(f"Required setting '{var_name}' is not set.")
        return str(value)

    def _get_int(self, var_name: str, default: int) -> int:
        value = self._get(var_name, default)
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"{var_name} must be an integer, got {value!r}") from e

    def _get_float(self, var_name: str, default: float) -> float:
        value = self._get(var_name, default)
        try:
            return float(value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"{var_name} must be a number, got {value!r}") from e

    def _get_list(self, var_name: str) -> list[str]:
        value = self._get(var_name, [])
        if isinstance(value, str):
            items = value.split(",")
        elif isinstance(value, (list, tuple)):
            items = [str(item) for item in value]
        else:
            raise ValueError(f"{var_name} must be a list or comma-separated string")
        return [item.strip() for item in items if item.strip()]


def setup_libraries(settings: Settings) -> None:
    """
    Configures third-party libraries based on the application settings.
    """
    # The categorizer owns the attempt budget; the SDK must not retry on its own.
    openai.base_url = settings.API_URL + "/"
    openai.api_key = settings.API_KEY
    openai.max_retries = 0
