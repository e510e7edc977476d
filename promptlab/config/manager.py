import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional


class SettingsManager:
    """
    Settings for the workflow engine, job queue and model provider.

    Values come from the defaults below, then a ``.env`` file, then the OS
    environment, then registered providers; later sources win.
    """

    # Default settings with their types
    DEFAULT_SETTINGS = {
        # Model provider
        "model_provider": ("openai", str),
        "provider_api_key": (None, str),
        "provider_base_url": ("https://generativelanguage.googleapis.com/v1beta/openai/", str),
        "default_model": ("gemini-2.5-flash", str),
        # Job queue
        "job_store_backend": ("memory", str),
        "job_store_path": (".promptlab/jobs.db", str),
        "worker_concurrency": (5, int),
        "job_attempts": (3, int),
        "job_backoff_seconds": (2.0, float),
        "job_history_completed": (10, int),
        "job_history_failed": (50, int),
        # Logging
        "log_level": ("INFO", str),
        "log_file": (None, str),
    }

    # Each setting can be set via PROMPTLAB_<NAME>
    ENV_MAPPING = {"PROMPTLAB_" + setting.upper(): setting for setting in DEFAULT_SETTINGS}

    # Vendor variables that also feed a setting; later entries win
    ENV_ALIASES = {
        "OPENAI_API_KEY": "provider_api_key",
        "GEMINI_API_KEY": "provider_api_key",
    }

    def __init__(self, env_file: Optional[str] = None):
        """
        Initialize settings with default values.

        Args:
            env_file: Explicit .env path, tried before the current and home directories
        """
        self.env_file = env_file
        self.env_variables: Dict[str, str] = {}
        self.settings: Dict[str, Any] = {}
        self._providers: List[Callable[[], Dict[str, Any]]] = []
        self.loaded_env_file: Optional[Path] = None
        self.logger = logging.getLogger(__name__)

        for key, (default_value, _) in self.DEFAULT_SETTINGS.items():
            self.settings[key] = default_value

    def _convert_value(self, name: str, value: Any) -> Any:
        """Convert a raw value to the declared type of a setting"""
        default_value, target_type = self.DEFAULT_SETTINGS[name]
        if not isinstance(value, str):
            return value
        value = value.strip()
        if value == "" and default_value is None:
            return None
        if target_type == bool:
            return value.lower() in ("true", "1", "yes", "on")
        return target_type(value)

    def _apply_variables(self, variables: Mapping[str, str], source: str) -> None:
        """Update settings from a mapping of environment-style variables"""
        for alias, setting_name in self.ENV_ALIASES.items():
            if variables.get(alias):
                self.settings[setting_name] = variables[alias]

        for key, value in variables.items():
            setting_name = self.ENV_MAPPING.get(key)
            if setting_name is None:
                continue
            try:
                self.settings[setting_name] = self._convert_value(setting_name, value)
            except ValueError:
                self.logger.warning(f"Ignoring invalid value for {key} from {source}: {value!r}")

    def _candidate_env_files(self) -> List[Path]:
        env_file_paths = []
        if self.env_file:
            env_file_paths.append(Path(self.env_file))

        env_file_paths.append(Path.cwd() / ".env")

        try:
            env_file_paths.append(Path.home() / ".env")
        except (RuntimeError, OSError):
            pass
        return env_file_paths

    def _load_from_env_file(self) -> None:
        """Find and load variables from the first .env file found"""
        for env_path in self._candidate_env_files():
            if env_path.exists() and env_path.is_file():
                self.logger.info(f"Loading environment from: {env_path}")
                self._apply_variables(self._parse_env_file(env_path), str(env_path))
                self.loaded_env_file = env_path
                return

        if self.env_file:
            self.logger.warning(f"Env file not found: {self.env_file}")
        self.logger.debug("No .env file found, using defaults and OS environment")

    def _parse_env_file(self, env_file_path: Path) -> Dict[str, str]:
        """Parse a .env file into a dictionary of variables"""
        variables = {}
        with open(env_file_path, "r") as f:
            for line in f:
                line = line.strip()
                if line.startswith("export "):
                    line = line[len("export "):].strip()
                if line and not line.startswith("#") and "=" in line:
                    key, value = line.split("=", 1)
                    key = key.strip()
                    value = value.strip()

                    # Remove quotes if present
                    if (value.startswith('"') and value.endswith('"')) or (
                        value.startswith("'") and value.endswith("'")
                    ):
                        value = value[1:-1]

                    variables[key] = value
        self.env_variables.update(variables)
        return variables

    def register_provider(self, provider: Callable[[], Dict[str, Any]]) -> "SettingsManager":
        """Register a provider function that returns setting overrides"""
        self._providers.append(provider)
        return self

    def load(self, environ: Optional[Mapping[str, str]] = None) -> "SettingsManager":
        """
        Load settings from the .env file, the OS environment and providers.

        Args:
            environ: Environment to read instead of ``os.environ``
        """
        self._load_from_env_file()

        environ = os.environ if environ is None else environ
        self._apply_variables(environ, "environment")

        for provider in self._providers:
            for key, value in (provider() or {}).items():
                if key in self.DEFAULT_SETTINGS:
                    self.settings[key] = self._convert_value(key, value)
                else:
                    self.logger.warning(f"Provider returned unknown setting '{key}'")

        return self

    def get_setting(self, name: str, default: Any = None) -> Any:
        """Get a setting value by name"""
        value = self.settings.get(name)
        return default if value is None else value

    def set_setting(self, name: str, value: Any) -> None:
        """
        Set a setting, converting strings to the declared type.

        Raises:
            KeyError: If the setting is unknown
            ValueError: If the value cannot be converted
        """
        if name not in self.DEFAULT_SETTINGS:
            raise KeyError(f"Unknown setting '{name}'")
        self.settings[name] = self._convert_value(name, value)

    def get_all_configuration(self) -> Dict[str, Any]:
        """Get all settings, with the API key masked"""
        settings = dict(self.settings)
        if settings.get("provider_api_key"):
            settings["provider_api_key"] = "***"
        return {
            "settings": settings,
            "env_file": str(self.loaded_env_file) if self.loaded_env_file else None,
            "env_mapping": dict(self.ENV_MAPPING),
        }
