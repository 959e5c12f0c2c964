import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .rail import ARC_TESTNET_CHAIN_ID, ARC_USDC_ADDRESS

REQUIRED = ("TELEGRAM_TOKEN", "ENCRYPTION_KEY")


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise SystemExit(f"{name} must be an integer, got {raw!r}") from None


@dataclass
class Settings:
    telegram_token: str
    encryption_key: str
    bot_username: str = "arc_pay_bot"
    webhook_url: Optional[str] = None
    webhook_secret: Optional[str] = None
    port: int = 8080
    rpc_url: str = "https://rpc.testnet.arc.network"
    chain_id: int = ARC_TESTNET_CHAIN_ID
    usdc_address: str = ARC_USDC_ADDRESS
    explorer_url: str = "https://testnet.arcscan.app"
    openai_api_key: Optional[str] = None
    model: str = "gpt-4.1-mini"
    database_path: str = "paybot.db"
    ticket_ttl: int = 600
    session_ttl: int = 600
    request_ttl: int = 24 * 60 * 60
    sweep_interval: int = 300
    log_level: str = "INFO"

    @property
    def testnet(self) -> bool:
        return self.chain_id == ARC_TESTNET_CHAIN_ID

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        missing = [name for name in REQUIRED if not os.getenv(name)]
        if missing:
            raise SystemExit(f"Missing required environment variables: {', '.join(missing)}")
        return cls(
            telegram_token=os.environ["TELEGRAM_TOKEN"],
            encryption_key=os.environ["ENCRYPTION_KEY"],
            bot_username=os.getenv("TELEGRAM_BOT_USERNAME", "arc_pay_bot").lstrip("@"),
            webhook_url=os.getenv("WEBHOOK_URL") or None,
            webhook_secret=os.getenv("WEBHOOK_SECRET") or None,
            port=_int_env("PORT", 8080),
            rpc_url=os.getenv("ARC_RPC_URL", "https://rpc.testnet.arc.network"),
            chain_id=_int_env("ARC_CHAIN_ID", ARC_TESTNET_CHAIN_ID),
            usdc_address=os.getenv("ARC_USDC_ADDRESS", ARC_USDC_ADDRESS),
            explorer_url=os.getenv("ARC_EXPLORER_URL", "https://testnet.arcscan.app").rstrip("/"),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            model=os.getenv("MODEL", "gpt-4.1-mini"),
            database_path=os.getenv("DATABASE_PATH", "paybot.db"),
            ticket_ttl=_int_env("PAYMENT_TICKET_TTL_SECONDS", 600),
            session_ttl=_int_env("AMOUNT_SESSION_TTL_SECONDS", 600),
            request_ttl=_int_env("PAYMENT_REQUEST_TTL_SECONDS", 24 * 60 * 60),
            sweep_interval=_int_env("SWEEP_INTERVAL_SECONDS", 300),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
