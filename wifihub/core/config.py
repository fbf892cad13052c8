import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


def _env_csv(name: str) -> tuple[str, ...]:
    return tuple(p.strip() for p in (os.getenv(name) or "").split(",") if p.strip())


def make_async_db_url(url: str) -> str:
    """Accepts Railway-style DATABASE_URL and returns sqlalchemy async url."""
    if url.startswith("postgresql+asyncpg://") or url.startswith("sqlite+aiosqlite://"):
        return url
    if url.startswith("postgres://"):
        return "postgresql+asyncpg://" + url[len("postgres://") :]
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://") :]
    if url.startswith("sqlite://"):
        return "sqlite+aiosqlite://" + url[len("sqlite://") :]
    raise RuntimeError("Unsupported DATABASE_URL format")


def make_sync_db_url(url: str) -> str:
    """Same url for the sync drivers alembic runs on (psycopg2 / pysqlite)."""
    url = make_async_db_url(url)
    if url.startswith("postgresql+asyncpg://"):
        return "postgresql://" + url[len("postgresql+asyncpg://") :]
    return "sqlite://" + url[len("sqlite+aiosqlite://") :]


@dataclass(frozen=True)
class Settings:
    database_url: str = ""

    # admin bot (optional: the service layer works without it)
    bot_token: str | None = None
    owner_tg_id: int = 0
    admin_tg_ids: tuple[int, ...] = ()
    # identity-provider e-mails that resolve to the admin role on sign-up
    admin_emails: tuple[str, ...] = ()

    scheduler_enabled: bool = True
    scheduler_period_seconds: int = 60

    # tokens
    token_prefix: str = "WIFI"

    # Referrals
    referral_cooldown_days: int = 3
    referral_max_strikes: int = 5
    referral_punishment_days: int = 3
    referral_reward_minutes: int = 60
    referral_expire_days: int = 30

    # moderation (runtime value lives in app_settings.penalty_minutes)
    penalty_minutes: int = 0

    # Blob store
    # mock: keeps uploads in memory (dev/test)
    # http: PUT to an object store endpoint
    blob_provider: str = "mock"  # mock | http
    blob_base_url: str = ""
    blob_public_url: str = ""
    blob_auth_token: str | None = None
    blob_timeout_seconds: int = 20

    # Document store
    store_timeout_seconds: float = 15.0
    store_retry_attempts: int = 3
    store_retry_backoff_seconds: float = 0.2

    # live subscriptions
    watch_interval_seconds: float = 3.0


def _load_settings() -> Settings:
    database_url_raw = os.getenv("DATABASE_URL", "").strip()

    owner_raw = os.getenv("OWNER_TG_ID", "").strip()
    if owner_raw and not owner_raw.isdigit():
        raise RuntimeError("OWNER_TG_ID is invalid (must be digits)")

    return Settings(
        database_url=make_async_db_url(database_url_raw) if database_url_raw else "",
        bot_token=(os.getenv("BOT_TOKEN") or "").strip() or None,
        owner_tg_id=int(owner_raw or 0),
        admin_tg_ids=tuple(int(x) for x in _env_csv("ADMIN_TG_IDS") if x.isdigit()),
        admin_emails=tuple(e.lower() for e in _env_csv("ADMIN_EMAILS")),
        scheduler_enabled=_env_bool("SCHEDULER_ENABLED", True),
        scheduler_period_seconds=int(os.getenv("SCHEDULER_PERIOD_SECONDS", "60")),
        token_prefix=os.getenv("TOKEN_PREFIX", "WIFI").strip().upper() or "WIFI",
        # Referrals
        referral_cooldown_days=int(os.getenv("REFERRAL_COOLDOWN_DAYS", "3")),
        referral_max_strikes=int(os.getenv("REFERRAL_MAX_STRIKES", "5")),
        referral_punishment_days=int(os.getenv("REFERRAL_PUNISHMENT_DAYS", "3")),
        referral_reward_minutes=int(os.getenv("REFERRAL_REWARD_MINUTES", "60")),
        referral_expire_days=int(os.getenv("REFERRAL_EXPIRE_DAYS", "30")),
        penalty_minutes=int(os.getenv("PENALTY_MINUTES", "0")),
        # Blob store
        blob_provider=os.getenv("BLOB_PROVIDER", "mock").strip().lower(),
        blob_base_url=os.getenv("BLOB_BASE_URL", "").strip().rstrip("/"),
        blob_public_url=os.getenv("BLOB_PUBLIC_URL", "").strip().rstrip("/"),
        blob_auth_token=(os.getenv("BLOB_AUTH_TOKEN") or "").strip() or None,
        blob_timeout_seconds=int(os.getenv("BLOB_TIMEOUT_SECONDS", "20")),
        # Document store
        store_timeout_seconds=float(os.getenv("STORE_TIMEOUT_SECONDS", "15")),
        store_retry_attempts=int(os.getenv("STORE_RETRY_ATTEMPTS", "3")),
        store_retry_backoff_seconds=float(os.getenv("STORE_RETRY_BACKOFF_SECONDS", "0.2")),
        watch_interval_seconds=float(os.getenv("WATCH_INTERVAL_SECONDS", "3")),
    )


settings = _load_settings()
