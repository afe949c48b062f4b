import copy
import logging
import os
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "TUBE_ORCHESTRATOR_CONFIG"
DEFAULT_CONFIG_PATH = "conf/orchestrator.yaml"

TEXT_PROVIDERS = {"mock", "ollama", "openai"}
NEWS_PROVIDERS = {"mock"}
SPEECH_PROVIDERS = {"simulated", "piper"}
ASSEMBLERS = {"simulated"}


def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(a)
    for k, v in (b or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _env_overlay() -> Dict[str, Any]:
    """Environment values that take precedence over the YAML file"""
    out: Dict[str, Any] = {}
    text = {}
    if os.getenv("TUBE_TEXT_PROVIDER"):
        text["provider"] = os.getenv("TUBE_TEXT_PROVIDER")
    if os.getenv("OLLAMA_BASE_URL"):
        text.setdefault("ollama", {})["base_url"] = os.getenv("OLLAMA_BASE_URL")
    if os.getenv("OPENAI_API_KEY"):
        text.setdefault("openai", {})["api_key"] = os.getenv("OPENAI_API_KEY")
    if os.getenv("OPENAI_BASE_URL"):
        text.setdefault("openai", {})["base_url"] = os.getenv("OPENAI_BASE_URL")
    if text:
        out["providers"] = {"text": text}
    if os.getenv("TUBE_DB_PATH"):
        out.setdefault("storage", {})["db_path"] = os.getenv("TUBE_DB_PATH")
    if os.getenv("TUBE_RUNS_DIR"):
        out.setdefault("storage", {})["runs_dir"] = os.getenv("TUBE_RUNS_DIR")
    return out


class OrchestratorConfig:
    """Configuration manager for the job orchestrator"""

    def __init__(self, config_path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None):
        load_dotenv()
        self.config_path = config_path or os.getenv(CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH)
        self.overrides = overrides or {}
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML, merged over defaults, then env and overrides"""
        merged = self._get_default_config()
        try:
            if os.path.exists(self.config_path):
                with open(self.config_path, "r", encoding="utf-8") as f:
                    loaded = yaml.safe_load(f) or {}
                merged = _deep_merge(merged, loaded)
                logger.info(f"[config] Loaded orchestrator config from {self.config_path}")
            else:
                logger.warning(
                    f"[config] Orchestrator config not found at {self.config_path}, using defaults"
                )
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"[config] Failed to load orchestrator config: {e}, using defaults")

        merged = _deep_merge(merged, _env_overlay())
        return _deep_merge(merged, self.overrides)

    def _get_default_config(self) -> Dict[str, Any]:
        """Return default configuration"""
        return {
            "server": {
                "host": "127.0.0.1",
                "port": 8008,
                "log_level": "info",
            },
            "logging": {
                "file": None,
                "max_bytes": 5_000_000,
                "backup_count": 5,
            },
            "cors": {
                "allow_origins": [],
                "allow_credentials": False,
                "allow_methods": [],
                "allow_headers": [],
            },
            "queue": {"capacity": 100},
            "worker": {
                "idle_backoff_seconds": 1.0,
                "requeue_pending_on_startup": True,
            },
            "retry": {
                "max_retries": 3,
                "backoff_base_seconds": 2.0,
            },
            "providers": {
                "text": {
                    "provider": "mock",
                    "timeout_sec": 120,
                    "ollama": {
                        "base_url": "http://127.0.0.1:11434",
                        "model": "llama3.2:3b",
                    },
                    "openai": {
                        "base_url": "https://api.openai.com/v1",
                        "model": "gpt-4o-mini",
                        "api_key": None,
                    },
                },
            },
            "news": {
                "provider": "mock",
                "count": 5,
                "default_topic": "General",
            },
            "media": {
                "speech": {
                    "provider": "simulated",
                    "piper": {
                        "binary": "piper",
                        "voice_model": "en_US-amy-medium.onnx",
                        "timeout_sec": 300,
                    },
                },
                "assembler": "simulated",
            },
            "storage": {
                "db_path": "jobs.db",
                "runs_dir": "runs",
            },
            "seed": {"enabled": True},
        }

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key path (e.g., 'queue.capacity')"""
        keys = key.split(".")
        value = self.config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return default if value is None else value

    def reload(self):
        """Reload configuration from file"""
        self.config = self._load_config()
        logger.info("[config] Orchestrator config reloaded")

    def get_sanitized_config(self) -> Dict[str, Any]:
        """Get configuration without API keys"""
        config_copy = copy.deepcopy(self.config)
        openai_cfg = config_copy.get("providers", {}).get("text", {}).get("openai", {})
        if openai_cfg.get("api_key"):
            openai_cfg["api_key"] = "[REDACTED]"
        return config_copy

    def validate_config(self) -> Dict[str, Any]:
        """Validate configuration and return validation results"""
        validation_results = {
            "valid": True,
            "errors": [],
            "warnings": [],
        }

        def error(message: str):
            validation_results["errors"].append(message)
            validation_results["valid"] = False

        capacity = self.get("queue.capacity", 100)
        if not isinstance(capacity, int) or capacity < 1:
            error(f"Invalid queue capacity: {capacity}")

        max_retries = self.get("retry.max_retries", 3)
        if not isinstance(max_retries, int) or max_retries < 0:
            error(f"Invalid retry.max_retries: {max_retries}")

        text_provider = self.get("providers.text.provider", "mock")
        if text_provider not in TEXT_PROVIDERS:
            error(f"Unknown text provider: {text_provider}")
        elif text_provider == "openai" and not self.get("providers.text.openai.api_key"):
            error("OpenAI text provider selected but no API key configured (OPENAI_API_KEY)")
        elif text_provider == "mock":
            validation_results["warnings"].append(
                "Using mock text provider - generated content is canned"
            )

        news_provider = self.get("news.provider", "mock")
        if news_provider not in NEWS_PROVIDERS:
            error(f"Unknown news provider: {news_provider}")

        speech_provider = self.get("media.speech.provider", "simulated")
        if speech_provider not in SPEECH_PROVIDERS:
            error(f"Unknown speech provider: {speech_provider}")

        assembler = self.get("media.assembler", "simulated")
        if assembler not in ASSEMBLERS:
            error(f"Unknown media assembler: {assembler}")

        db_path = self.get("storage.db_path", "jobs.db")
        db_dir = os.path.dirname(db_path)
        if db_dir and not os.path.exists(db_dir):
            validation_results["warnings"].append(
                f"Database directory does not exist: {db_dir}"
            )

        return validation_results


_config_singleton: Optional[OrchestratorConfig] = None


def get_config() -> OrchestratorConfig:
    global _config_singleton
    if _config_singleton is None:
        _config_singleton = OrchestratorConfig()
    return _config_singleton
