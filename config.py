"""
Central configuration for the invoicing engine.

All paths, storage keys and model settings are defined here.
Override via environment variables or by passing a Config instance directly.

Settings priority (highest wins):
  1. Environment variables
  2. config/settings.json  (user-editable, persisted)
  3. Hardcoded defaults in this file
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Project root (directory containing this file)
PROJECT_ROOT = Path(__file__).parent

# Default data locations (relative to project root)
DEFAULT_OUTPUT_DIR = PROJECT_ROOT / "output"
DEFAULT_DB_PATH    = DEFAULT_OUTPUT_DIR / "promptinvoice.db"
DEFAULT_EXPORT_DIR = DEFAULT_OUTPUT_DIR / "export"
DEFAULT_STORAGE_KEY = "@promptinvoice_invoices"


def _config_dir() -> Path:
    return Path(os.getenv("CONFIG_DIR", str(PROJECT_ROOT / "config")))


@dataclass
class Config:
    # --- LLM settings (OpenAI-compatible API) ---
    # Works with Ollama, OpenAI, Groq, or any OpenAI-compatible backend.
    #
    # Ollama (default):   LLM_BASE_URL=http://localhost:11434/v1   LLM_API_KEY=ollama
    # OpenAI:             LLM_BASE_URL=https://api.openai.com/v1   LLM_API_KEY=sk-...
    llm_model: str = field(
        default_factory=lambda: os.getenv("LLM_MODEL", "llama3.2")
    )
    llm_base_url: str = field(
        default_factory=lambda: os.getenv("LLM_BASE_URL", "http://localhost:11434/v1")
    )
    llm_api_key: str = field(
        default_factory=lambda: os.getenv("LLM_API_KEY", "ollama")
    )
    llm_temperature: float = field(
        default_factory=lambda: float(os.getenv("LLM_TEMPERATURE", "0.1"))
    )
    llm_max_tokens: int = field(
        default_factory=lambda: int(os.getenv("LLM_MAX_TOKENS", "500"))
    )
    llm_max_attempts: int = field(
        default_factory=lambda: int(os.getenv("LLM_MAX_ATTEMPTS", "1"))
    )

    # --- Storage ---
    db_path: Path = field(
        default_factory=lambda: Path(os.getenv("DB_PATH", str(DEFAULT_DB_PATH)))
    )
    storage_key: str = field(
        default_factory=lambda: os.getenv("STORAGE_KEY", DEFAULT_STORAGE_KEY)
    )

    # --- Output settings ---
    output_dir: Path = field(default_factory=lambda: DEFAULT_OUTPUT_DIR)
    export_dir: Path = field(
        default_factory=lambda: Path(os.getenv("EXPORT_DIR", str(DEFAULT_EXPORT_DIR)))
    )

    # --- Form defaults for new invoices ---
    default_tax_rate: float = 0.0
    default_discount: float = 0.0

    # --- Templates (None = built-in) ---
    invoice_template: Optional[Path] = field(
        default_factory=lambda: _existing(_config_dir() / "invoice.html.j2")
    )
    report_template: Optional[Path] = field(
        default_factory=lambda: _existing(_config_dir() / "report.html.j2")
    )

    def __post_init__(self) -> None:
        """Overlay runtime-tunable settings from settings.json if present."""
        settings_file = _config_dir() / "settings.json"
        if not settings_file.exists():
            return
        _type_map: dict[str, type] = {
            "llm_model":         str,
            "llm_base_url":      str,
            "llm_temperature":   float,
            "llm_max_tokens":    int,
            "llm_max_attempts":  int,
            "default_tax_rate":  float,
            "default_discount":  float,
        }
        try:
            with open(settings_file, encoding="utf-8") as f:
                overrides = {k: v for k, v in json.load(f).items() if not k.startswith("_")}
            for key, val in overrides.items():
                if key in _type_map and hasattr(self, key):
                    setattr(self, key, _type_map[key](val))
        except Exception as exc:
            logger.warning("Failed to load settings.json: %s", exc)

    def ensure_output_dir(self) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.export_dir.mkdir(parents=True, exist_ok=True)


def _existing(path: Path) -> Optional[Path]:
    return path if path.exists() else None
