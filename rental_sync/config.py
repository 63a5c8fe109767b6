"""Application configuration using Pydantic Settings."""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    public_base_url: str = "http://localhost:8000"
    database_url: str = "sqlite:///./data/rental_sync.db"
    secret_key: str = "dev-secret-key-not-for-production"

    # Otodom notifications (OLX Group webhooks)
    otodom_webhook_secret: Optional[str] = None
    webhook_require_signature: bool = False

    # OLX partner API
    olx_authorize_url: str = "https://www.olx.pl/api/open/oauth/authorize"
    olx_token_url: str = "https://www.olx.pl/api/open/oauth/token"
    olx_api_base: str = "https://www.olx.pl/api/partner"
    olx_contact_name: str = "Agencja"
    olx_contact_email: str = "contact@example.com"
    olx_contact_phone: str = "+48123456789"

    # Otodom partner API (OLX Group)
    otodom_authorize_url: str = "https://www.otodom.pl/api/open/oauth/authorize"
    otodom_token_url: str = "https://api.olxgroup.com/oauth/v1/token"
    otodom_api_base: str = "https://api.olxgroup.com/advert/v1"
    otodom_taxonomy_url: str = (
        "https://api.olxgroup.com/taxonomy/v1/category/urn:concept:apartments-for-rent/attributes"
    )

    # Outbound HTTP
    http_timeout: float = 20.0
    user_agent: str = "RentalSync"

    # Feeds
    placeholder_image_url: str = "https://via.placeholder.com/800x600"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def database_path(self) -> str:
        """Filesystem path extracted from the sqlite database URL."""
        db_path = self.database_url.replace("sqlite:///", "")
        if db_path.startswith("./"):
            db_path = db_path[2:]
        return db_path


def get_settings() -> Settings:
    """Get application settings instance."""
    return Settings()
