## app/core/config.py

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Settings for the application
    """

    model_config = SettingsConfigDict(
        env_file=".env", extra="ignore", case_sensitive=False
    )

    environment: str = "development"
    allowed_cors_urls: str = "http://localhost:3000"

    db_host: str = "localhost"
    db_user: str = "fleet"
    db_password: str = ""
    db_database: str = "fleet"
    db_port: int = 3306

    # Full SQLAlchemy URL, takes precedence over the db_* parts
    database_url: Optional[str] = None

    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_region: Optional[str] = None
    aws_ses_sender_email: Optional[str] = None
    aws_ses_configuration_set: Optional[str] = None
    s3_bucket_name: Optional[str] = None

    app_base_url: str = "http://localhost:3000"
    organisation_name: str = "Fleet Operations"

    secret_key: str = "change-me"
    algorithm: str = "HS256"

    # Agreements
    signing_token_ttl_days: int = 14
    supporting_document_max_bytes: int = 20 * 1024 * 1024

    @property
    def async_db_url(self) -> str:
        """
        Async database URL
        """
        if self.database_url:
            return self.database_url
        return f"mysql+asyncmy://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_database}"


settings = Settings()
