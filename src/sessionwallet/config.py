"""Application configuration using pydantic-settings.

Every tunable of the transaction pipeline lives here: the ordered endpoint
list, per-action base fees, gas heuristics, retry budget and the timers that
drive polling, queue spacing and background balance refresh.
"""

from decimal import Decimal
from functools import lru_cache
from typing import TYPE_CHECKING

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from sessionwallet.pipeline.actions import ActionKind


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug logging")

    # ======================
    # Ledger endpoints
    # ======================
    rpc_urls: str = Field(
        default=(
            "https://sepolia.base.org,"
            "https://base-sepolia-rpc.publicnode.com,"
            "https://base-sepolia.blockpi.network/v1/rpc/public"
        ),
        description="Comma-separated JSON-RPC endpoints, primary first",
    )
    chain_id: int = Field(default=84532, description="Chain ID used when signing")
    game_log_address: str = Field(
        default="0x000000000000000000000000000000000000dEaD",
        description="Destination address that receives every game action",
    )

    # ======================
    # Fees (native currency)
    # ======================
    fee_place_block: Decimal = Field(default=Decimal("0.000008"), description="Base fee for PlaceBlock")
    fee_clear_line: Decimal = Field(default=Decimal("0.000004"), description="Base fee for ClearLine")
    fee_new_game: Decimal = Field(default=Decimal("0.00001"), description="Base fee for NewGame")
    fee_game_over: Decimal = Field(default=Decimal("0.000004"), description="Base fee for GameOver")
    funded_threshold: Decimal = Field(
        default=Decimal("0.001"), description="Balance above which the session wallet is ready"
    )
    safety_margin: Decimal = Field(
        default=Decimal("0.00001"), description="Fixed amount added to every fee quote"
    )
    congestion_buffer: Decimal = Field(
        default=Decimal("0.00001"), description="Extra headroom for fee spikes between quote and send"
    )

    # ======================
    # Gas heuristics
    # ======================
    gas_price_buffer: float = Field(default=1.1, ge=1.0, description="Multiplier applied to the network gas price")
    base_gas_units: int = Field(default=21000, ge=0, description="Gas units of a plain value transfer")
    gas_units_per_word: int = Field(default=512, ge=0, description="Gas units per 32 bytes of calldata")
    gas_safety_units: int = Field(default=5000, ge=0, description="Fixed extra gas units")
    gas_limit_margin_pct: int = Field(default=20, ge=0, description="Percentage added on top of the gas estimate")

    # ======================
    # Retry and timeouts (seconds)
    # ======================
    max_attempts: int = Field(default=3, ge=1, description="Submission attempts across all endpoints")
    retry_base_delay: float = Field(default=1.0, ge=0, description="Linear backoff unit between attempts")
    probe_timeout: float = Field(default=5.0, gt=0, description="Timeout of the endpoint liveness probe")
    rpc_timeout: float = Field(default=10.0, gt=0, description="Timeout of ordinary RPC calls")
    send_timeout: float = Field(default=15.0, gt=0, description="Timeout of eth_sendRawTransaction")
    confirmation_timeout: float = Field(default=60.0, gt=0, description="Overall confirmation wait")
    poll_interval_not_found: float = Field(default=1.0, ge=0, description="Poll spacing while the tx is unknown")
    poll_interval_pending: float = Field(default=3.0, ge=0, description="Poll spacing while the tx is unmined")
    max_poll_attempts: int = Field(default=45, ge=1, description="Upper bound on confirmation polls")
    identity_lock_timeout: float = Field(
        default=180.0, gt=0, description="Longest wait for another submission on the same identity"
    )

    # ======================
    # Queue and session timers (seconds)
    # ======================
    queue_item_delay: float = Field(default=0.5, ge=0, description="Spacing between queued submissions")
    balance_refresh_interval: float = Field(default=15.0, gt=0, description="Background balance refresh period")
    balance_refresh_min_spacing: float = Field(
        default=5.0, ge=0, description="Skip a background refresh if one ran more recently than this"
    )
    post_tx_refresh_delay: float = Field(default=2.0, ge=0, description="Balance refresh delay after a success")

    # ======================
    # Storage
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/sessionwallet.db",
        description="Key-value store database URL",
    )
    storage_prefix: str = Field(
        default="block_placer_burner_wallet_", description="Namespace prefix for identity records"
    )
    leaderboard_key: str = Field(default="block_placer_leaderboard", description="Leaderboard storage key")
    leaderboard_size: int = Field(default=100, ge=1, description="Maximum leaderboard entries kept")

    @property
    def endpoint_urls(self) -> list[str]:
        """Parse the ordered endpoint list."""
        return [url.strip() for url in self.rpc_urls.split(",") if url.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    def base_fee(self, action: "ActionKind") -> Decimal:
        """Get the configured base fee for an action."""
        from sessionwallet.pipeline.actions import ActionKind

        fee_map = {
            ActionKind.PLACE_BLOCK: self.fee_place_block,
            ActionKind.CLEAR_LINE: self.fee_clear_line,
            ActionKind.NEW_GAME: self.fee_new_game,
            ActionKind.GAME_OVER: self.fee_game_over,
        }
        return fee_map[ActionKind(action)]

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "chain_id": self.chain_id,
            "endpoints": self.endpoint_urls,
            "database_url": self._redact_url(self.database_url),
            "fees": {
                "place_block": str(self.fee_place_block),
                "clear_line": str(self.fee_clear_line),
                "new_game": str(self.fee_new_game),
                "game_over": str(self.fee_game_over),
            },
            "funded_threshold": str(self.funded_threshold),
            "retry": {
                "max_attempts": self.max_attempts,
                "retry_base_delay": self.retry_base_delay,
                "confirmation_timeout": self.confirmation_timeout,
            },
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact sensitive parts of database URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
