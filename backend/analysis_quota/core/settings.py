import os


def _getenv(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value if value else default


def _getenv_bool(name: str, default: bool = False) -> bool:
    raw = _getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "y", "on"}


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class Settings:
    def __init__(self) -> None:
        self.environment = (_getenv("ENVIRONMENT", "development") or "development").lower()
        self.log_level = (_getenv("LOG_LEVEL", "INFO") or "INFO").upper()
        self.database_url = _getenv("DATABASE_URL", "sqlite:///./sql_app.db") or "sqlite:///./sql_app.db"
        self.db_auto_create = _getenv_bool("DB_AUTO_CREATE", default=True)
        self.db_lock_timeout_s = _getenv_int("DB_LOCK_TIMEOUT_S", 5)
        self.db_statement_timeout_ms = _getenv_int("DB_STATEMENT_TIMEOUT_MS", 5000)

        self.supabase_url = _getenv("SUPABASE_URL") or _getenv("VITE_SUPABASE_URL")
        self.supabase_jwt_audience = _getenv("SUPABASE_JWT_AUD", "authenticated")
        self.supabase_jwt_issuer = _getenv("SUPABASE_JWT_ISSUER")
        self.supabase_jwt_secret = _getenv("SUPABASE_JWT_SECRET")
        self.cors_allow_origins = _getenv("CORS_ALLOW_ORIGINS")

        self.free_plan_analysis_limit = max(0, _getenv_int("FREE_PLAN_ANALYSIS_LIMIT", 3))

        self.stripe_secret_key = _getenv("STRIPE_SECRET_KEY")
        self.stripe_webhook_secret = _getenv("STRIPE_WEBHOOK_SECRET")
        self.stripe_webhook_tolerance_s = _getenv_int("STRIPE_WEBHOOK_TOLERANCE_S", 300)
        self.stripe_pro_price_id = _getenv("STRIPE_PRO_PRICE_ID") or _getenv("VITE_STRIPE_PRO_PRICE_ID")
        self.stripe_enterprise_price_id = _getenv("STRIPE_ENTERPRISE_PRICE_ID")

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def resolved_cors_origins(self) -> list[str]:
        raw = self.cors_allow_origins
        if raw is None:
            return ["http://localhost:5173", "http://localhost:8000"]
        if raw.strip() == "*":
            return ["*"]
        origins = [o.strip() for o in raw.split(",") if o.strip()]
        return origins


settings = Settings()
