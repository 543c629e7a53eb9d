from pydantic_settings import BaseSettings
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    DEBUG: bool = False

    # Supabase API Configuration. Both values must be present when a sync job
    # starts; they are not enforced at import time so tooling and tests can
    # import the package without a live project.
    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None  # Service role key

    ETSY_API_BASE_URL: str = "https://api.etsy.com/v3"
    ETSY_TOKEN_URL: str = "https://api.etsy.com/v3/public/oauth/token"

    # Every outbound marketplace call is bounded by this timeout. A timeout is
    # handled exactly like a non-success response at the same step.
    ETSY_HTTP_TIMEOUT_SECONDS: float = 20.0

    ETSY_PAYMENTS_PAGE_LIMIT: int = 100
    ETSY_PAYMENTS_MAX_PAGES: int = 50

    # Refresh this many seconds before the stored expiry. 0 = refresh only
    # once the token has actually expired.
    ETSY_TOKEN_REFRESH_SKEW_SECONDS: int = 0

    SYNC_PROVIDER: str = "etsy"
    SYNC_MAX_CONCURRENT_INTEGRATIONS: int = 5
    # Overall job deadline. Once exceeded no new integration is started;
    # upserts that already happened are kept.
    SYNC_DEADLINE_SECONDS: float = 240.0
    SYNC_WORKER_INTERVAL_SECONDS: int = 900

    DEFAULT_CURRENCY: str = "USD"

    class Config:
        env_file = None
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def supabase_configured(self) -> bool:
        return bool(self.SUPABASE_URL and self.SUPABASE_SERVICE_ROLE_KEY)


settings = Settings()
