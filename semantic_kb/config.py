"""
Configuration: loads settings from .semantic_kb.yaml, environment variables,
and built-in defaults (priority: CLI args > env > YAML > defaults).
"""

import os

import yaml


_DATA_DIR = os.path.join(os.path.expanduser("~"), ".semantic_kb")

_DEFAULTS = {
    "db_path": os.path.join(_DATA_DIR, "knowledge_base.db"),
    "model_dir": "",
    "backup_dir": os.path.join(_DATA_DIR, "backups"),
    "embedding_dimension": 384,
    "embedding_pooling": "cls",
    "search_limit": 5,
    "snippet_length": 300,
    "asr_url": "http://127.0.0.1:38081/transcribe",
    "asr_timeout": 600.0,
    "ffmpeg_path": "",
    "temp_dir": os.path.join(_DATA_DIR, "temp"),
    "log_dir": os.path.join(_DATA_DIR, "logs"),
    "log_level": "INFO",
}

# Config file search locations
_CONFIG_FILENAMES = [".semantic_kb.yaml", ".semantic_kb.yml"]


def _find_config_file(explicit_path: str | None = None) -> str | None:
    """Find the config file. Checks explicit path, CWD, then user home."""
    if explicit_path:
        if os.path.isfile(explicit_path):
            return explicit_path
        return None

    search_dirs = [os.getcwd(), os.path.expanduser("~")]
    for d in search_dirs:
        for name in _CONFIG_FILENAMES:
            path = os.path.join(d, name)
            if os.path.isfile(path):
                return path
    return None


def _load_yaml(path: str) -> dict:
    """Load YAML file, returns empty dict on failure."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return {}


class Config:
    """Knowledge base configuration.

    Settings are resolved in priority order:
    1. CLI arguments (handled by caller)
    2. Environment variables (``KB_*``)
    3. .semantic_kb.yaml config file
    4. Built-in defaults
    """

    def __init__(self, yaml_data: dict | None = None):
        yd = yaml_data or {}

        # Helper: env var > yaml > default
        def _get(env_key: str, yaml_key: str, cast=str):
            env_val = os.getenv(env_key)
            if env_val is not None:
                return cast(env_val)
            yaml_val = yd.get(yaml_key)
            if yaml_val is not None:
                return cast(yaml_val)
            return _DEFAULTS[yaml_key]

        self.DB_PATH = os.path.expanduser(_get("KB_DB_PATH", "db_path"))
        self.MODEL_DIR = os.path.expanduser(_get("KB_MODEL_DIR", "model_dir"))
        self.BACKUP_DIR = os.path.expanduser(_get("KB_BACKUP_DIR", "backup_dir"))

        self.EMBEDDING_DIMENSION = _get("KB_EMBEDDING_DIMENSION",
                                        "embedding_dimension", cast=int)
        self.EMBEDDING_POOLING = _get("KB_EMBEDDING_POOLING",
                                      "embedding_pooling").lower()
        self.SEARCH_LIMIT = _get("KB_SEARCH_LIMIT", "search_limit", cast=int)
        self.SNIPPET_LENGTH = _get("KB_SNIPPET_LENGTH", "snippet_length", cast=int)

        # Speech-to-text service and media tooling
        asr_section = yd.get("asr", {}) if isinstance(yd.get("asr"), dict) else {}
        self.ASR_URL = os.getenv("KB_ASR_URL") or asr_section.get(
            "url", _DEFAULTS["asr_url"])
        self.ASR_TIMEOUT = float(os.getenv("KB_ASR_TIMEOUT") or asr_section.get(
            "timeout", _DEFAULTS["asr_timeout"]))
        self.FFMPEG_PATH = _get("KB_FFMPEG_PATH", "ffmpeg_path")
        self.TEMP_DIR = os.path.expanduser(_get("KB_TEMP_DIR", "temp_dir"))

        self.LOG_DIR = os.path.expanduser(_get("KB_LOG_DIR", "log_dir"))
        self.LOG_LEVEL = _get("KB_LOG_LEVEL", "log_level").upper()

    @classmethod
    def load(cls, config_path: str | None = None) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(config_path)
        yaml_data = _load_yaml(path) if path else {}
        return cls(yaml_data)
