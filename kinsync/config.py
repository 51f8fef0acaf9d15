from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="KINSYNC_", env_file=".env", extra="ignore")

    # Basic auth settings
    auth_username: str = "admin"
    auth_password: str = "change-me"

    # Vault settings
    vault_path: Path = Path("vault")
    contacts_folder: str = "Contacts"  # relative to the vault, "" for the whole vault

    # Sync settings
    debounce_seconds: float = 1.0
    revision_field: str = "REV"
    watch_poll_interval: float = 2.0

    log_level: str = "INFO"  # Can be DEBUG, INFO, WARNING, ERROR, CRITICAL


settings = Settings()
