# ─────────────────────────────────────────────────────────────────────────────
# Settings — Pydantic v2 BaseSettings
# ─────────────────────────────────────────────────────────────────────────────


from functools import lru_cache

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Gateway configuration sourced from environment variables.

    Uses pydantic-settings v2 (separate package from pydantic).
    """

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", populate_by_name=True)

    # ── Server ───────────────────────────────────────────────────────────────
    port: int = 3000
    environment: str = "development"
    app_version: str = "1.0.1"

    # Frontend bundle served at "/". Missing directory = API only.
    static_dir: str = "public"
    index_file: str = "indexai.html"

    # Comma-separated origins for CORS (e.g. "https://app.example.com,http://localhost:3000").
    # Empty string = deny all cross-origin requests (secure default).
    allowed_origins: str = ""

    # ── Chat upstream ────────────────────────────────────────────────────────
    upstream_base_url: str = "https://api.groq.com/openai/v1"
    # SecretStr prevents the key from leaking into logs, repr(), or
    # model_dump(). Access via settings.upstream_api_key.get_secret_value().
    # Empty string = chat requests fail with a configuration error.
    upstream_api_key: SecretStr = Field(
        default=SecretStr(""),
        validation_alias=AliasChoices("upstream_api_key", "groq_api_key"),
    )
    chat_model: str = "llama3-70b-8192"
    max_tokens: int = Field(4000, ge=1)
    temperature: float = Field(0.3, ge=0.0, le=2.0)
    upstream_timeout_seconds: float = Field(30.0, gt=0)

    # ── Image upstream ───────────────────────────────────────────────────────
    image_base_url: str = "https://image.pollinations.ai/prompt"
    image_width: int = 512
    image_height: int = 512
    image_nologo: bool = True
    image_enhance: bool = True

    # ── Quota gate ───────────────────────────────────────────────────────────
    quota_limit: int = Field(50, ge=1)
    quota_window_seconds: int = Field(3600, ge=1)
    quota_max_clients: int = Field(10_000, ge=1)  # LRU cap on tracked identities
    quota_idle_grace_seconds: int = Field(600, ge=0)
    quota_sweep_interval_seconds: int = Field(300, ge=0)  # 0 = no background sweep

    # Comma-separated IPs / CIDRs whose X-Forwarded-For header is trusted.
    # Empty = never trust forwarded headers from a connected peer.
    trusted_proxies: str = ""

    # Outer per-identity burst limit (slowapi format, e.g. "120/minute").
    burst_rate_limit: str = "120/minute"

    # ── Messages ─────────────────────────────────────────────────────────────
    message_locale: str = "th"  # "th" or "en"

    # ── Logging ──────────────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool = True

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
