from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "SmartStock"
    DATABASE_URL: str = "sqlite+aiosqlite:///./smartstock.db"

    # Notification channel (Resend-compatible e-mail API)
    EMAIL_API_URL: str = "https://api.resend.com/emails"
    EMAIL_API_KEY: str = ""
    EMAIL_FROM: str = "Smart Inventory System <inventory@example.com>"
    INVENTORY_ALERT_EMAIL: str = "inventory@example.com"

    # AI-assisted forecasting (leave the key empty to disable)
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.0-flash"
    GEMINI_API_URL: str = "https://generativelanguage.googleapis.com/v1beta/models"
    ESTIMATOR_TIMEOUT_SECONDS: float = 15.0

    # Ledger defaults
    DEFAULT_THRESHOLD: int = 2
    DEFAULT_LEAD_TIME_DAYS: int = 7
    SALES_HISTORY_RETENTION_DAYS: int = 90

    # Forecasting
    VELOCITY_WINDOW_DAYS: int = 30
    TREND_WINDOW_DAYS: int = 60
    FORECAST_HORIZON_DAYS: int = 30
    TREND_STABLE_BAND_PCT: float = 5.0
    AI_CONFIDENCE_THRESHOLD: float = 0.3
    COMPARABLE_PRODUCTS_LIMIT: int = 5

    # Reorder planning
    SERVICE_LEVEL_Z: float = 1.65
    DEMAND_STD_RATIO: float = 0.3
    ORDERING_COST_RATIO: float = 0.05
    HOLDING_COST_RATIO: float = 0.2
    MIN_DAILY_DEMAND: float = 0.1
    MIN_ORDER_COVER_DAYS: int = 7
    FALLBACK_REORDER_POINT: int = 5
    FALLBACK_ORDER_QUANTITY: int = 10

    # Auto-reorder
    REORDER_COOLDOWN_DAYS: int = 3
    HIGH_PRIORITY_RATIO: float = 0.5
    MEDIUM_PRIORITY_RATIO: float = 0.75

    # Sellout prevention
    STOCKOUT_LOOK_AHEAD_DAYS: int = 14

    # Concurrency guard
    LOCK_MAX_RETRIES: int = 5
    LOCK_RETRY_DELAY_SECONDS: float = 0.2

    # Background jobs
    SCHEDULER_ENABLED: bool = True
    FORECAST_INTERVAL_HOURS: float = 24
    AUTO_REORDER_INTERVAL_HOURS: float = 6
    MAINTENANCE_HOUR: int = 1
    RECONCILIATION_HOUR: int = 3
    SELLOUT_REPORT_HOUR: int = 9
    BATCH_SIZE: int = 10
    FORECAST_BATCH_PAUSE_SECONDS: float = 1.0
    RECONCILE_BATCH_PAUSE_SECONDS: float = 0.5

    model_config = {"env_file": ".env"}


settings = Settings()
