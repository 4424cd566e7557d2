"""Configuration system using pydantic-settings with environment variable loading."""

from decimal import Decimal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class ChainSettings(BaseSettings):
    """JSON-RPC connection to the bonding-curve contract's chain."""

    model_config = SettingsConfigDict(env_prefix="CHAIN_")

    rpc_url: str = "http://127.0.0.1:8545"
    contract_address: str = "0x0000000000000000000000000000000000000000"
    request_timeout: float = 10.0
    max_retries: int = 3
    retry_base_delay: float = 0.5


class CurveSettings(BaseSettings):
    """Bonding-curve constants shared by every artist token.

    The contract does not expose these, so the client carries them.
    """

    model_config = SettingsConfigDict(env_prefix="CURVE_")

    total_supply: int = 1_000_000_000  # whole tokens
    target_fdv_usd: Decimal = Decimal("1000")  # used only for the degraded price
    max_holding_bps: int = 500  # 5% of total supply per wallet
    cooldown_seconds: int = 3600  # between two sells of the same wallet
    default_slippage_pct: Decimal = Decimal("1")


class BackendSettings(BaseSettings):
    """Backend REST service (candle history and realized daily volume)."""

    model_config = SettingsConfigDict(env_prefix="BACKEND_")

    base_url: str = "http://localhost:8080"
    candles_path: str = "/artists/candleData"
    financials_path: str = "/api/blockchain/financials/by-user"
    auth_token: SecretStr = SecretStr("")
    timeout: float = 5.0
    max_attempts: int = 4
    backoff_base: float = 0.5
    backoff_cap: float = 4.0


class FeedSettings(BaseSettings):
    """Live trade stream (STOMP over WebSocket)."""

    model_config = SettingsConfigDict(env_prefix="FEED_")

    url: str = "ws://localhost:8080/ws/websocket"
    topic_template: str = "/topic/trades/{artist_id}"
    reconnect_delay: float = 10.0
    heartbeat_ms: int = 4000
    connect_timeout: float = 15.0


class ChartSettings(BaseSettings):
    """Candle pipeline tuning."""

    model_config = SettingsConfigDict(env_prefix="CHART_")

    realtime_window_hours: int = 2
    dedup_window: int = 4096  # tx hashes remembered per timeframe
    default_timeframe: str = "5m"
    default_artist_id: str = ""  # selected at startup when set
    history_refresh_seconds: float = 30.0  # 0 disables the periodic refetch


class ApiSettings(BaseSettings):
    """HTTP/WebSocket surface consumed by the UI."""

    model_config = SettingsConfigDict(env_prefix="API_")

    host: str = "0.0.0.0"
    port: int = 8000
    enabled: bool = True


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    chain: ChainSettings = ChainSettings()
    curve: CurveSettings = CurveSettings()
    backend: BackendSettings = BackendSettings()
    feed: FeedSettings = FeedSettings()
    chart: ChartSettings = ChartSettings()
    api: ApiSettings = ApiSettings()
