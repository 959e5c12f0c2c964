import asyncio
import logging
import signal

from paybot.config import Settings
from paybot.intents import OpenAIIntentResolver, RegexIntentResolver
from paybot.keys import KeyCipher
from paybot.payment_requests import RequestService
from paybot.payments import PaymentFlow
from paybot.profiles import ProfileStore
from paybot.rail import ArcRail
from paybot.wallet_bot import WalletBot
from transports.telegram_bot import TelegramTransport

log = logging.getLogger(__name__)


def build_bot(settings: Settings) -> WalletBot:
    profiles = ProfileStore(settings.database_path, cipher=KeyCipher(settings.encryption_key))
    rail = ArcRail(
        rpc_url=settings.rpc_url,
        chain_id=settings.chain_id,
        token_address=settings.usdc_address,
    )
    if settings.openai_api_key:
        intents = OpenAIIntentResolver(api_key=settings.openai_api_key, model=settings.model)
    else:
        log.info("OPENAI_API_KEY not set, using keyword intent matching")
        intents = RegexIntentResolver()
    return WalletBot(
        profiles=profiles,
        rail=rail,
        payments=PaymentFlow(
            profiles,
            rail,
            ticket_ttl=settings.ticket_ttl,
            session_ttl=settings.session_ttl,
        ),
        requests=RequestService(profiles, ttl=settings.request_ttl),
        intents=intents,
        bot_username=settings.bot_username,
        explorer_url=settings.explorer_url,
        chain_id=settings.chain_id,
        usdc_address=settings.usdc_address,
    )


async def main():
    settings = Settings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s :: %(message)s",
    )

    wallet_bot = build_bot(settings)
    telegram_transport = TelegramTransport(
        wallet_bot,
        settings.telegram_token,
        sweep_interval=settings.sweep_interval,
        webhook_url=settings.webhook_url,
        webhook_secret=settings.webhook_secret,
        port=settings.port,
    )

    stop_event = asyncio.Event()

    def _signal_handler(*_):
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            signal.signal(sig, lambda *_: stop_event.set())

    telegram_task = asyncio.create_task(telegram_transport.start())
    log.info(
        "paybot running in %s mode on chain %s",
        "webhook" if settings.webhook_url else "polling",
        settings.chain_id,
    )

    await stop_event.wait()

    await telegram_transport.stop()
    await telegram_task
    wallet_bot.profiles.close()


if __name__ == "__main__":
    asyncio.run(main())
