# config.py
import os
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Config:
    """Runtime settings, overridable through environment variables."""

    db_path: str = os.environ.get("CARDSNAP_DB_PATH", "cardsnap.db")
    model: str = os.environ.get("CARDSNAP_MODEL", "gpt-4o-mini")
    undo_window: float = float(os.environ.get("CARDSNAP_UNDO_SECONDS", "4.0"))
    mirror_delay: float = float(os.environ.get("CARDSNAP_MIRROR_DELAY", "1.5"))


CONFIG = Config()

# Storage keys
CARDS_KEY = "cardsnap_cards_v3"
LEGACY_CARDS_KEYS = ("cardsnap_data_v2", "cardsnap_data_v1")  # newest first
CREDENTIAL_KEY = "cardsnap_api_key"
