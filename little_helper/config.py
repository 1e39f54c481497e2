"""
Configuration — Settings, runtime tunables, and on-disk locations

Two layers:
  1. settings.json (authoritative, user-editable, JSON)
       <config-root>/little_helper/settings.json
  2. Runtime tunables (timeouts, batch sizes, weights)
       defaults < <config-root>/little_helper/runtime.yaml < LH_* environment

API keys may live in settings.json (per-provider *_auth) or in the
provider's environment variable; the settings value wins.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import orjson
import yaml

logger = logging.getLogger(__name__)

APP_ID = "little_helper"
HIDDEN_DIR = ".little-helper"

# Supported providers and their defaults
PROVIDERS = {
    "local": {
        "env_key": "",
        "default_model": "llama3.2:3b",
        "label": "Local (Ollama)",
    },
    "openai": {
        "env_key": "OPENAI_API_KEY",
        "default_model": "gpt-4o-mini",
        "label": "OpenAI",
    },
    "anthropic": {
        "env_key": "ANTHROPIC_API_KEY",
        "default_model": "claude-3-5-sonnet-20241022",
        "label": "Anthropic",
    },
    "gemini": {
        "env_key": "GEMINI_API_KEY",
        "default_model": "gemini-1.5-flash",
        "label": "Google Gemini",
    },
}

DEFAULT_PREFERENCE = ["anthropic", "openai", "gemini", "local"]


# =============================================================================
# settings.json model
# =============================================================================

@dataclass
class OAuthCredentials:
    """OAuth token pair for a provider."""
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None  # unix seconds

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"access_token": self.access_token}
        if self.refresh_token:
            data["refresh_token"] = self.refresh_token
        if self.expires_at is not None:
            data["expires_at"] = self.expires_at
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OAuthCredentials':
        return cls(
            access_token=data.get("access_token", ""),
            refresh_token=data.get("refresh_token"),
            expires_at=data.get("expires_at"),
        )


@dataclass
class ProviderAuth:
    """Credentials for one provider: API key, OAuth, or neither (env fallback)."""
    api_key: Optional[str] = None
    oauth: Optional[OAuthCredentials] = None

    @property
    def is_empty(self) -> bool:
        return not self.api_key and not (self.oauth and self.oauth.access_token)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.api_key:
            data["api_key"] = self.api_key
        if self.oauth:
            data["oauth"] = self.oauth.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ProviderAuth':
        data = data or {}
        oauth = data.get("oauth")
        return cls(
            api_key=data.get("api_key") or None,
            oauth=OAuthCredentials.from_dict(oauth) if oauth else None,
        )


@dataclass
class ModelSettings:
    """Provider preference order plus per-provider model and credentials."""
    local_model: str = PROVIDERS["local"]["default_model"]
    provider_preference: List[str] = field(default_factory=lambda: list(DEFAULT_PREFERENCE))
    openai_model: str = PROVIDERS["openai"]["default_model"]
    anthropic_model: str = PROVIDERS["anthropic"]["default_model"]
    gemini_model: str = PROVIDERS["gemini"]["default_model"]
    openai_auth: ProviderAuth = field(default_factory=ProviderAuth)
    anthropic_auth: ProviderAuth = field(default_factory=ProviderAuth)
    gemini_auth: ProviderAuth = field(default_factory=ProviderAuth)
    openai_base_url: Optional[str] = None

    def model_for(self, provider: str) -> str:
        if provider == "local":
            return self.local_model
        return getattr(self, f"{provider}_model", "")

    def auth_for(self, provider: str) -> ProviderAuth:
        return getattr(self, f"{provider}_auth", None) or ProviderAuth()

    def validate(self) -> Optional[str]:
        """Validate config. Returns error message or None if valid."""
        for provider in self.provider_preference:
            if provider not in PROVIDERS:
                valid = ", ".join(PROVIDERS.keys())
                return f"Unknown provider '{provider}'. Valid: {valid}"
        if len(set(self.provider_preference)) != len(self.provider_preference):
            return "provider_preference lists a provider more than once"
        return None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "local_model": self.local_model,
            "provider_preference": list(self.provider_preference),
            "openai_model": self.openai_model,
            "anthropic_model": self.anthropic_model,
            "gemini_model": self.gemini_model,
            "openai_auth": self.openai_auth.to_dict(),
            "anthropic_auth": self.anthropic_auth.to_dict(),
            "gemini_auth": self.gemini_auth.to_dict(),
        }
        if self.openai_base_url:
            data["openai_base_url"] = self.openai_base_url
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ModelSettings':
        data = data or {}
        defaults = cls()
        return cls(
            local_model=data.get("local_model", defaults.local_model),
            provider_preference=list(data.get("provider_preference", defaults.provider_preference)),
            openai_model=data.get("openai_model", defaults.openai_model),
            anthropic_model=data.get("anthropic_model", defaults.anthropic_model),
            gemini_model=data.get("gemini_model", defaults.gemini_model),
            openai_auth=ProviderAuth.from_dict(data.get("openai_auth")),
            anthropic_auth=ProviderAuth.from_dict(data.get("anthropic_auth")),
            gemini_auth=ProviderAuth.from_dict(data.get("gemini_auth")),
            openai_base_url=data.get("openai_base_url") or None,
        )


KNOWN_SETTINGS_KEYS = {
    "allowed_dirs", "model", "enable_internet_research", "max_results", "share_system_summary",
}


@dataclass
class AppSettings:
    """Contents of settings.json. Unknown keys (per-mode sections) ride along in `extra`."""
    allowed_dirs: List[str] = field(default_factory=list)
    model: ModelSettings = field(default_factory=ModelSettings)
    enable_internet_research: bool = False
    max_results: int = 200
    share_system_summary: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    def validate(self) -> Optional[str]:
        """Validate config. Returns error message or None if valid."""
        if self.max_results < 1:
            return "max_results must be at least 1"
        for entry in self.allowed_dirs:
            if not Path(entry).expanduser().is_absolute():
                return f"allowed_dirs entries must be absolute paths: {entry}"
        return self.model.validate()

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update({
            "allowed_dirs": list(self.allowed_dirs),
            "model": self.model.to_dict(),
            "enable_internet_research": self.enable_internet_research,
            "max_results": self.max_results,
            "share_system_summary": self.share_system_summary,
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AppSettings':
        return cls(
            allowed_dirs=list(data.get("allowed_dirs", [])),
            model=ModelSettings.from_dict(data.get("model")),
            enable_internet_research=bool(data.get("enable_internet_research", False)),
            max_results=int(data.get("max_results", 200)),
            share_system_summary=bool(data.get("share_system_summary", False)),
            extra={k: v for k, v in data.items() if k not in KNOWN_SETTINGS_KEYS},
        )


# =============================================================================
# On-disk locations
# =============================================================================

@dataclass
class AppPaths:
    """Per-profile directories for config and data."""
    config_dir: Path
    data_dir: Path

    @classmethod
    def from_env(cls) -> 'AppPaths':
        """
        Resolve directories from LH_CONFIG_DIR / LH_DATA_DIR, then XDG, then ~.
        """
        home = Path.home()
        config_root = os.environ.get("XDG_CONFIG_HOME") or str(home / ".config")
        data_root = os.environ.get("XDG_DATA_HOME") or str(home / ".local" / "share")
        config_dir = os.environ.get("LH_CONFIG_DIR") or str(Path(config_root) / APP_ID)
        data_dir = os.environ.get("LH_DATA_DIR") or str(Path(data_root) / APP_ID)
        return cls(config_dir=Path(config_dir), data_dir=Path(data_dir))

    @property
    def settings_path(self) -> Path:
        return self.config_dir / "settings.json"

    @property
    def runtime_path(self) -> Path:
        return self.config_dir / "runtime.yaml"

    @property
    def oauth_client_path(self) -> Path:
        return self.config_dir / "google_oauth.json"

    @property
    def index_db(self) -> Path:
        return self.data_dir / "file_index.db"

    @property
    def archive_dir(self) -> Path:
        return self.data_dir / "archive"

    @property
    def audit_dir(self) -> Path:
        return self.data_dir / "audit"

    def ensure(self) -> 'AppPaths':
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        return self


def versions_dir(root: Path) -> Path:
    """Hidden per-root version store location."""
    return Path(root) / HIDDEN_DIR / "versions"


# =============================================================================
# Runtime tunables
# =============================================================================

@dataclass
class RuntimeConfig:
    """
    Tunables that are not part of settings.json.

    Loaded from runtime.yaml and LH_* environment variables on top of defaults.
    """

    # Skill runtime
    skill_timeout: float = 60.0            # seconds per skill execution
    max_concurrent: int = 4                # execute_concurrent default

    # HTTP
    http_timeout: float = 120.0            # non-streaming provider calls
    connect_timeout: float = 30.0          # streaming connect
    stream_read_timeout: float = 120.0     # resets on every chunk

    # File index
    scan_batch_size: int = 512
    hybrid_alpha: float = 0.5              # weight of the fuzzy score
    query_cache_size: int = 64

    # Audit log
    audit_max_bytes: int = 8 * 1024 * 1024
    audit_tail_size: int = 256

    # Local services
    embedding_url: str = "http://localhost:11434"
    embedding_model: str = "nomic-embed-text"
    embedding_timeout: float = 30.0
    ollama_url: str = "http://127.0.0.1:11434"

    @classmethod
    def load(cls, path: Optional[Path] = None) -> 'RuntimeConfig':
        """Defaults, then runtime.yaml (if present), then environment."""
        data: Dict[str, Any] = {}
        if path is not None and Path(path).exists():
            try:
                with open(path) as f:
                    loaded = yaml.safe_load(f) or {}
                if isinstance(loaded, dict):
                    data = _merge(data, loaded)
            except (OSError, yaml.YAMLError) as e:
                logger.warning("Ignoring malformed runtime config %s: %s", path, e)

        config = cls.from_dict(data)
        return config.with_env()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RuntimeConfig':
        known = {name for name in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known})

    def with_env(self) -> 'RuntimeConfig':
        """Apply environment overrides."""
        self.skill_timeout = _get_float_env("LH_SKILL_TIMEOUT", self.skill_timeout)
        self.max_concurrent = _get_int_env("LH_MAX_CONCURRENT", self.max_concurrent)
        self.http_timeout = _get_float_env("LH_HTTP_TIMEOUT", self.http_timeout)
        self.scan_batch_size = _get_int_env("LH_SCAN_BATCH", self.scan_batch_size)
        self.hybrid_alpha = _get_float_env("LH_HYBRID_ALPHA", self.hybrid_alpha)
        self.audit_max_bytes = _get_int_env("LH_AUDIT_MAX_BYTES", self.audit_max_bytes)
        self.embedding_url = os.environ.get("LH_EMBED_URL") or self.embedding_url
        self.embedding_model = os.environ.get("LH_EMBED_MODEL") or self.embedding_model
        self.ollama_url = os.environ.get("OLLAMA_BASE_URL") or self.ollama_url
        return self

    def validate(self) -> None:
        """Validate configuration values."""
        if self.skill_timeout <= 0:
            raise ValueError("LH_SKILL_TIMEOUT must be > 0")
        if self.max_concurrent < 1:
            raise ValueError("LH_MAX_CONCURRENT must be >= 1")
        if self.http_timeout <= 0:
            raise ValueError("LH_HTTP_TIMEOUT must be > 0")
        if self.scan_batch_size < 1:
            raise ValueError("LH_SCAN_BATCH must be >= 1")
        if not 0.0 <= self.hybrid_alpha <= 1.0:
            raise ValueError("LH_HYBRID_ALPHA must be between 0 and 1")
        if self.audit_max_bytes < 1024:
            raise ValueError("LH_AUDIT_MAX_BYTES must be >= 1024")

    def to_dict(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.__dataclass_fields__}


# =============================================================================
# settings.json persistence
# =============================================================================

class SettingsManager:
    """
    Loads and saves settings.json.

    A missing or malformed file yields defaults; `loaded` reports which
    happened so the host can run first-time setup.
    """

    def __init__(self, paths: Optional[AppPaths] = None):
        self.paths = paths or AppPaths.from_env()
        self._settings: Optional[AppSettings] = None
        self.loaded = False

    @property
    def settings_path(self) -> Path:
        return self.paths.settings_path

    def load(self) -> AppSettings:
        """Load settings from disk or fall back to defaults."""
        if self._settings is not None:
            return self._settings

        settings = AppSettings()
        self.loaded = False
        if self.settings_path.exists():
            try:
                data = orjson.loads(self.settings_path.read_bytes())
                if isinstance(data, dict):
                    settings = AppSettings.from_dict(data)
                    self.loaded = True
            except (OSError, orjson.JSONDecodeError, TypeError, ValueError) as e:
                logger.warning("Ignoring malformed settings %s: %s", self.settings_path, e)

        self._settings = settings
        return settings

    def load_with_status(self) -> Tuple[AppSettings, bool]:
        settings = self.load()
        return settings, self.loaded

    def save(self, settings: AppSettings) -> None:
        """Write settings.json (pretty-printed)."""
        self.settings_path.parent.mkdir(parents=True, exist_ok=True)
        payload = orjson.dumps(settings.to_dict(), option=orjson.OPT_INDENT_2)
        tmp = self.settings_path.with_suffix(".json.tmp")
        tmp.write_bytes(payload)
        os.replace(tmp, self.settings_path)
        self._settings = settings

    def ensure_allowed_dirs(self, settings: AppSettings) -> AppSettings:
        """Seed allowed_dirs with the home directory when empty."""
        if not settings.allowed_dirs:
            settings.allowed_dirs.append(str(Path.home()))
        return settings

    def get(self, key: str) -> Optional[str]:
        """Get a value by dotted key (e.g. 'model.openai_model')."""
        data: Any = self.load().to_dict()
        for part in key.split("."):
            if not isinstance(data, dict) or part not in data:
                return None
            data = data[part]
        if isinstance(data, (dict, list)):
            return orjson.dumps(data).decode()
        if isinstance(data, bool):
            return str(data).lower()
        return None if data is None else str(data)

    def set(self, key: str, value: str) -> Optional[str]:
        """
        Set a configuration value.

        Args:
            key: Dotted key (e.g. "max_results", "model.provider_preference")
            value: Value as text; lists are comma-separated

        Returns:
            Error message or None if successful
        """
        settings = self.load()
        parts = key.split(".")

        if parts == ["max_results"]:
            try:
                settings.max_results = int(value)
            except ValueError:
                return f"max_results must be an integer, got '{value}'"
        elif parts == ["enable_internet_research"]:
            settings.enable_internet_research = _parse_bool(value)
        elif parts == ["share_system_summary"]:
            settings.share_system_summary = _parse_bool(value)
        elif parts == ["allowed_dirs"]:
            settings.allowed_dirs = _parse_list(value)
        elif len(parts) == 2 and parts[0] == "model":
            setting = parts[1]
            if setting == "provider_preference":
                settings.model.provider_preference = _parse_list(value)
            elif setting in ("local_model", "openai_model", "anthropic_model", "gemini_model"):
                setattr(settings.model, setting, value)
            elif setting == "openai_base_url":
                settings.model.openai_base_url = value or None
            else:
                return (
                    f"Unknown model setting: {setting}. Valid: provider_preference, "
                    "local_model, openai_model, anthropic_model, gemini_model, openai_base_url"
                )
        else:
            valid = "allowed_dirs, max_results, enable_internet_research, share_system_summary, model.*"
            return f"Unknown setting: {key}. Valid: {valid}"

        error = settings.validate()
        if error:
            self._settings = None  # drop the invalid in-memory edit
            return error

        self.save(settings)
        return None


def _merge(base: Dict, override: Dict) -> Dict:
    """Deep merge two dicts, override wins."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


def _parse_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _get_int_env(key: str, default: int) -> int:
    """Get integer from environment variable."""
    value = os.environ.get(key, "")
    if value:
        try:
            return int(value)
        except ValueError:
            pass
    return default


def _get_float_env(key: str, default: float) -> float:
    """Get float from environment variable."""
    value = os.environ.get(key, "")
    if value:
        try:
            return float(value)
        except ValueError:
            pass
    return default
