from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SERVICE_DID = "did:key:z6MkhaXgBZDvotDkL5257faiztiGiC2QtKLGpbnnEGta2doK"


class Settings(BaseSettings):
    # Read from OS env and optional .env file in project root.
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    environment: str = Field(
        "development",
        alias="APP_ENV",
        description="Deployment environment name, e.g. 'development' or 'production'",
    )

    # Identity of this relying party, advertised in presentation requests.
    service_did: str = Field(DEFAULT_SERVICE_DID, alias="SERVICE_DID")
    service_name: str = Field(
        "Anonymous Identity Example Service", alias="SERVICE_NAME"
    )
    service_domain: str = Field(
        "localhost:3000",
        alias="SERVICE_DOMAIN",
        description="Domain bound into presentation challenges",
    )
    trusted_issuers_raw: Optional[str] = Field(
        default=(
            f"{DEFAULT_SERVICE_DID},"
            "did:key:z6MknGc3ocHs2rt5u8Kf3hX7vnbqvTJvJ4C3gXR2YsE8WqmX"
        ),
        alias="TRUSTED_ISSUERS",
        description="Comma-separated issuer DIDs accepted by the verifier",
    )

    # Session storage
    redis_url: str = Field(
        "redis://localhost:6379/0",
        alias="REDIS_URL",
        description="Redis connection URL, e.g. 'redis://redis:6379/0'",
    )
    session_store: str = Field(
        "redis",
        alias="SESSION_STORE",
        description="Session backend: 'redis' (falls back to memory on failure) or 'memory'",
    )
    session_default_duration: int = Field(3600, alias="SESSION_DEFAULT_DURATION", gt=0)
    session_max_duration: int = Field(86400, alias="SESSION_MAX_DURATION", gt=0)
    session_cleanup_interval: int = Field(
        300,
        alias="SESSION_CLEANUP_INTERVAL",
        description="Seconds between advisory sweeps of expired sessions; 0 disables the sweep",
    )
    session_access_extension: int = Field(
        300,
        alias="SESSION_ACCESS_EXTENSION",
        description="Grace period added to a session when a profile resource is accessed",
    )
    session_store_grace: int = Field(
        60,
        alias="SESSION_STORE_GRACE",
        description="Extra seconds a session record outlives its expiry in the store",
    )
    presentation_request_ttl: int = Field(300, alias="PRESENTATION_REQUEST_TTL")
    batch_result_ttl: int = Field(1800, alias="BATCH_RESULT_TTL")

    # External verification capability
    verifier_url: str = Field(
        "http://localhost:4000",
        alias="VERIFIER_URL",
        description="Base URL of the presentation verification service",
    )
    verification_timeout: float = Field(10.0, alias="VERIFICATION_TIMEOUT", gt=0)
    batch_max_concurrency: int = Field(10, alias="BATCH_MAX_CONCURRENCY", gt=0)
    batch_max_presentations: int = Field(50, alias="BATCH_MAX_PRESENTATIONS", gt=0)
    batch_max_credential_ids: int = Field(100, alias="BATCH_MAX_CREDENTIAL_IDS", gt=0)

    # Optional JSON file overriding the built-in endpoint policies.
    policy_file: Optional[str] = Field(default=None, alias="POLICY_FILE")

    include_stack_trace: bool = Field(
        False,
        alias="INCLUDE_STACK_TRACE",
        description="Attach stack traces to server-side error responses",
    )

    # Application log level for our relying_party logger.
    # Can be overridden via LOG_LEVEL env var, e.g. "DEBUG" while debugging.
    log_level: str = Field(
        "INFO",
        alias="LOG_LEVEL",
        description="Application log level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    log_timezone: Optional[str] = Field(
        default=None,
        alias="LOG_TIMEZONE",
        description="Timezone name for log timestamps, e.g. 'Europe/Berlin'. Defaults to system local time.",
    )
    log_dir: str = Field("logs", alias="LOG_DIR")

    def get_trusted_issuers(self) -> List[str]:
        """
        Return configured issuer DIDs from TRUSTED_ISSUERS.
        Whitespace is stripped and empty entries are ignored.
        """
        if not self.trusted_issuers_raw:
            return []
        return [
            item.strip()
            for item in self.trusted_issuers_raw.split(",")
            if item.strip()
        ]

    @property
    def uses_redis(self) -> bool:
        return self.session_store.strip().lower() == "redis"


settings = Settings()  # Reads from environment if available


__all__ = ["Settings", "settings"]
