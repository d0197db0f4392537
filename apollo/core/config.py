from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # ─────────── APP ───────────
    app_name: str = "Apollo Auction Backend"
    environment: str = "dev"
    log_level: str = "INFO"

    # ─────────── API ───────────
    api_prefix: str = "/api/v1"
    request_id_header: str = "X-Request-Id"
    wallet_header: str = "X-Wallet-Address"

    # ─────────── DATABASE ───────────
    database_url: str

    # ─────────── CHAIN ───────────
    chain_backend: str = "memory"  # memory | rpc
    confirmation_timeout_seconds: float = 120.0

    # rpc backend only
    chain_rpc_url: str = ""
    chain_rpc_timeout_seconds: float = 10.0
    chain_poll_interval_seconds: float = 1.0
    chain_contract_address: str = ""
    chain_sender_address: str = ""  # node-managed account that sends settle
    chain_pending_returns_selector: str = ""  # pendingReturns(address)
    chain_highest_bid_selector: str = ""  # optional, uint256 getter keyed by token id
    chain_settle_selector: str = ""  # settle(uint256)
    chain_withdraw_selector: str = ""  # withdraw()

    # ─────────── DERIVED VIEWS ───────────
    history_cache_ttl_seconds: float = 15.0  # 0 disables the snapshot cache


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
