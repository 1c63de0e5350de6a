from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "postgresql://postgres:postgres@db:5432/dance"
    redis_url: str = "redis://redis:6379/0"

    # Bounded timeout applied to every datastore call (seconds)
    database_timeout_seconds: int = 5

    environment: str = "development"
    app_url: str = "http://localhost:3000"  # Base for login-token redemption URLs

    # Session settings
    session_ttl_hours: int = 24
    session_cookie_name: str = "session_id"
    user_id_cookie_name: str = "user_id"
    user_role_cookie_name: str = "user_role"
    session_cookie_secure: bool = False  # True in production

    # Cleanup job
    session_purge_after_days: int = 30
    session_cleanup_interval_minutes: int = 60

    # Login tokens
    login_token_default_purpose: str = "general"

    # Demo accounts (development only)
    demo_login_enabled: bool = False

    # Audit events
    audit_channel: str = "audit:auth"

    class Config:
        env_file = ".env"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def session_max_age(self) -> int:
        """Cookie max-age in seconds, equal to the session TTL."""
        return self.session_ttl_hours * 3600


settings = Settings()
