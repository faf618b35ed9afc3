from typing import Optional
from dotenv import load_dotenv

from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    # Zoho OAuth
    zoho_accounts_url: str = "https://accounts.zoho.eu"
    zoho_client_id: Optional[str] = None
    zoho_client_secret: Optional[str] = None
    zoho_refresh_token: Optional[str] = None
    zoho_token_file: str = "runs/zoho_token.json"

    # Zoho Inventory
    zohoinv_base_url: str = "https://inventory.zoho.eu/api/v1"
    zohoinv_organization_id: Optional[str] = None
    zohoinv_timeout_ms: int = 20000
    zohoinv_retry_policy: str = "standard"
    zohoinv_log_level: str = "info"

    # Service
    data_dir: str = "data"
    runs_dir: str = "runs"
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings = Settings()
