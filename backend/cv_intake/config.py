import json
from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "CV Intake API"
    environment: str = Field(default="development", validation_alias=AliasChoices("APP_ENV", "ENVIRONMENT"))
    debug: bool = False
    log_level: str = "INFO"

    # CORS - comma-separated list of allowed origins
    cors_origins: str = "*"

    # Upload limits
    max_upload_bytes: int = 10 * 1024 * 1024  # 10MB

    # Status store (Upstash-compatible Redis REST API)
    kv_rest_api_url: str = Field(
        default="",
        validation_alias=AliasChoices("KV_REST_API_URL", "UPSTASH_REDIS_REST_URL"),
    )
    kv_rest_api_token: str = Field(
        default="",
        validation_alias=AliasChoices("KV_REST_API_TOKEN", "UPSTASH_REDIS_REST_TOKEN"),
    )
    use_memory_store: bool = False
    status_ttl_seconds: int = 3600
    stale_after_seconds: int = 300

    # Pipeline
    retry_base_delay: float = 1.0
    retained_payloads: int = 50
    max_manual_retries: int = 3

    # AI/LLM Configuration
    gemini_api_key: str = Field(default="", validation_alias=AliasChoices("GEMINI_API_KEY", "GOOGLE_API_KEY"))
    gemini_model: str = "gemini-2.0-flash"

    # Google Sheets (service account)
    google_sheet_id: str = ""
    google_sheet_tab: str = "PersonalInfo"
    gcs_credentials: str = ""
    google_service_account_email: str = Field(
        default="",
        validation_alias=AliasChoices("GOOGLE_SERVICE_ACCOUNT_EMAIL", "GCP_CLIENT_EMAIL", "GOOGLE_CLIENT_EMAIL"),
    )
    google_private_key: str = Field(
        default="",
        validation_alias=AliasChoices("GOOGLE_PRIVATE_KEY", "GCP_PRIVATE_KEY", "PRIVATE_KEY"),
    )

    # Object storage - Supabase first, Cloudinary as alternative
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    storage_bucket: str = Field(
        default="cvs",
        validation_alias=AliasChoices("STORAGE_BUCKET", "GCS_BUCKET_NAME", "GOOGLE_STORAGE_BUCKET"),
    )
    cloudinary_cloud_name: str = ""
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""
    cloudinary_folder: str = "cv-intake/cvs"

    # Email Configuration
    mail_username: str = ""
    mail_password: str = ""
    mail_from: str = "noreply@example.com"
    mail_from_name: str = "CV Intake"
    mail_port: int = 587
    mail_server: str = ""
    mail_starttls: bool = True
    mail_ssl_tls: bool = False
    mail_validate_certs: bool = True

    class Config:
        env_file = ".env"
        extra = "ignore"
        # Make field names case-insensitive for environment variables
        case_sensitive = False
        populate_by_name = True

    def get_cors_origins(self) -> list:
        """Parse CORS origins from comma-separated string"""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def has_llm(self) -> bool:
        return bool(self.gemini_api_key)

    @property
    def has_status_store(self) -> bool:
        return bool(self.kv_rest_api_url and self.kv_rest_api_token)

    @property
    def has_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key and self.storage_bucket)

    @property
    def has_cloudinary(self) -> bool:
        return all([self.cloudinary_cloud_name, self.cloudinary_api_key, self.cloudinary_api_secret])

    @property
    def has_email(self) -> bool:
        return bool(self.mail_server and self.mail_username and self.mail_password)

    @property
    def has_sheet(self) -> bool:
        return bool(self.google_sheet_id and self.service_account_info())

    def service_account_info(self) -> Optional[dict]:
        """
        Resolve Google service account credentials.

        The JSON blob in GCS_CREDENTIALS wins; discrete email/private key
        fields fill whatever it lacks. Returns None when either the email
        or the key is still missing.
        """
        info = {}
        if self.gcs_credentials:
            try:
                info = json.loads(self.gcs_credentials)
            except json.JSONDecodeError:
                info = {}

        client_email = info.get("client_email") or self.google_service_account_email
        private_key = info.get("private_key") or self.google_private_key
        if not client_email or not private_key:
            return None

        info["client_email"] = client_email
        info["private_key"] = normalize_private_key(private_key)
        info.setdefault("type", "service_account")
        info.setdefault("token_uri", "https://oauth2.googleapis.com/token")
        return info


def normalize_private_key(key: str) -> str:
    """Unescape literal \\n sequences and strip quotes left by env files."""
    return key.replace("\\n", "\n").replace('"', "").strip() + "\n"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
