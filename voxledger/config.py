"""Configuration for voxledger.

Config loads the optional YAML files from the config/ directory:
  taxonomy.yaml  category → subcategories vocabulary
  sync.yaml      spreadsheet layout, sheet naming and classifier defaults

Settings holds paths and secrets, read from the environment only.
"""

import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from voxledger.classify.fallback import FALLBACK_CATEGORY
from voxledger.classify.pipeline import DEFAULT_TIMEOUT
from voxledger.database.models import DEFAULT_CURRENCY
from voxledger.sheets.base import DEFAULT_SHEET_NAME, MONTH_NAMES, SheetNaming
from voxledger.sheets.client import DEFAULT_SPREADSHEET_TITLE
from voxledger.taxonomy import Taxonomy

LAYOUTS = ("rows", "grid")
SHEET_NAMING_MODES = ("monthly", "fixed")

SYNC_DEFAULTS = {
    "layout": "rows",
    "sheet_naming": "monthly",
    "fixed_sheet_name": DEFAULT_SHEET_NAME,
    "month_locale": "ru",
    "spreadsheet_title": DEFAULT_SPREADSHEET_TITLE,
    "default_currency": DEFAULT_CURRENCY,
    "classifier_timeout": DEFAULT_TIMEOUT,
    "fallback_category": FALLBACK_CATEGORY,
}


class Config:
    """Loads and provides access to the YAML configuration files."""

    def __init__(self, config_dir: Path | str = "config"):
        self.config_dir = Path(config_dir)
        if not self.config_dir.is_dir():
            raise FileNotFoundError(f"Config directory not found: {self.config_dir}")

        self._taxonomy: Taxonomy | None = None
        self._sync: dict | None = None

    def _load(self, filename: str) -> dict | list | None:
        """Parsed YAML file, or None if the file does not exist."""
        path = self.config_dir / filename
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {path}: {e}") from e
        if data is None:
            raise ValueError(f"Empty config file: {path}")
        return data

    @property
    def taxonomy(self) -> Taxonomy:
        if self._taxonomy is None:
            data = self._load("taxonomy.yaml")
            if data is None:
                self._taxonomy = Taxonomy()
            else:
                mapping = data.get("taxonomy", data) if isinstance(data, dict) else data
                if not isinstance(mapping, dict):
                    raise ValueError("taxonomy.yaml must map categories to subcategory lists")
                self._taxonomy = Taxonomy(mapping)
        return self._taxonomy

    @property
    def sync(self) -> dict:
        """sync.yaml merged over SYNC_DEFAULTS."""
        if self._sync is None:
            data = self._load("sync.yaml") or {}
            if not isinstance(data, dict):
                raise ValueError("sync.yaml must be a mapping")
            merged = {**SYNC_DEFAULTS, **data.get("sync", data)}
            if merged["layout"] not in LAYOUTS:
                raise ValueError(f"Unknown layout '{merged['layout']}', expected one of {LAYOUTS}")
            if merged["sheet_naming"] not in SHEET_NAMING_MODES:
                raise ValueError(
                    f"Unknown sheet_naming '{merged['sheet_naming']}', "
                    f"expected one of {SHEET_NAMING_MODES}"
                )
            if merged["month_locale"] not in MONTH_NAMES:
                raise ValueError(f"Unknown month_locale '{merged['month_locale']}'")
            merged["classifier_timeout"] = float(merged["classifier_timeout"])
            self._sync = merged
        return self._sync

    @property
    def layout(self) -> str:
        return self.sync["layout"]

    @property
    def spreadsheet_title(self) -> str:
        return self.sync["spreadsheet_title"]

    @property
    def default_currency(self) -> str:
        return self.sync["default_currency"]

    @property
    def classifier_timeout(self) -> float:
        return self.sync["classifier_timeout"]

    @property
    def fallback_category(self) -> str:
        return self.sync["fallback_category"]

    def sheet_naming(self) -> SheetNaming:
        sync = self.sync
        return SheetNaming(
            mode=sync["sheet_naming"],
            fixed_name=sync["fixed_sheet_name"],
            locale=sync["month_locale"],
        )


@dataclass
class Settings:
    """Paths and secrets from the environment."""
    config_dir: str = "config"
    db_path: str = "voxledger.db"
    spreadsheet_id: str | None = None
    credentials_path: str | None = None
    access_token: str | None = None
    token_expires_at: float | None = None
    anthropic_api_key: str | None = None
    classifier_model: str = "claude-sonnet-4-20250514"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        env = os.environ if environ is None else environ
        expires = env.get("VOXLEDGER_TOKEN_EXPIRES_AT")
        try:
            token_expires_at = float(expires) if expires else None
        except ValueError as e:
            raise ValueError(f"VOXLEDGER_TOKEN_EXPIRES_AT must be epoch seconds, got {expires!r}") from e
        return cls(
            config_dir=env.get("VOXLEDGER_CONFIG_DIR", "config"),
            db_path=env.get("VOXLEDGER_DB_PATH", "voxledger.db"),
            spreadsheet_id=env.get("VOXLEDGER_SPREADSHEET_ID") or None,
            credentials_path=env.get("VOXLEDGER_CREDENTIALS") or None,
            access_token=env.get("VOXLEDGER_ACCESS_TOKEN") or None,
            token_expires_at=token_expires_at,
            anthropic_api_key=env.get("ANTHROPIC_API_KEY") or None,
            classifier_model=env.get("VOXLEDGER_CLASSIFIER_MODEL", "claude-sonnet-4-20250514"),
            log_level=env.get("VOXLEDGER_LOG_LEVEL", "INFO").upper(),
        )
