from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    environment: str = "development"
    debug: bool = True
    allowed_origins: str = "http://localhost:3000,http://localhost:5173"

    # Clinic backend (REST API that owns users, clinics and permission rows)
    api_base_url: str = "http://localhost:5000"
    api_timeout_seconds: float = 10.0

    # Auth / JWT
    secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    # Redis (cross-process cache invalidation)
    redis_url: str = "redis://localhost:6379/0"
    invalidation_channel: str = "clinic_access:invalidate"
    invalidation_bus_enabled: bool = True
    invalidation_retry_seconds: float = 1.0
    invalidation_max_retry_seconds: float = 30.0

    # Query cache
    query_cache_ttl: int = 300  # 5 minutes

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
