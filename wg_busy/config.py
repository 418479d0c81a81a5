# wg_busy/config.py
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process settings, overridable with WG_BUSY_* environment variables"""

    model_config = SettingsConfigDict(env_prefix="WG_BUSY_")

    # YAML state file, the source of truth
    config_path: str = "./data/config.yaml"

    # Rendered runtime config read by wg-quick
    wg_config_path: str = "/etc/wireguard/wg0.conf"
    interface: str = "wg0"

    # Stats collector
    poll_interval: float = 2.0
    history_size: int = 60

    # wg / wg-quick command timeout in seconds
    command_timeout: float = 30.0

    log_level: str = "INFO"
    log_file: Optional[str] = None
