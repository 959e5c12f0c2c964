import hmac
import logging
from typing import Optional

from aiohttp import web
from telegram import Update
from telegram.ext import Application

log = logging.getLogger(__name__)

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"
WEBHOOK_PATH = "/telegram/webhook"


class WebhookServer:
    """Receives Telegram updates over HTTP and feeds them to the application queue."""

    def __init__(
        self,
        application: Application,
        *,
        secret: Optional[str] = None,
        host: str = "0.0.0.0",
        port: int = 8080,
        path: str = WEBHOOK_PATH,
    ):
        self.application = application
        self.secret = secret
        self.host = host
        self.port = port
        self.path = path
        self.app = web.Application()
        self.app.add_routes(
            [
                web.post(self.path, self.handle_update),
                web.get("/health", self.health),
            ]
        )
        self._runner: Optional[web.AppRunner] = None

    async def handle_update(self, request: web.Request) -> web.Response:
        if self.secret:
            supplied = request.headers.get(SECRET_HEADER, "")
            if not hmac.compare_digest(supplied, self.secret):
                log.warning("webhook call with bad secret from %s", request.remote)
                return web.Response(status=403)
        try:
            payload = await request.json()
        except ValueError:
            return web.Response(status=400, text="invalid json")
        update = Update.de_json(payload, self.application.bot)
        if update is None:
            return web.Response(status=400, text="invalid update")
        await self.application.update_queue.put(update)
        return web.Response(text="ok")

    async def health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok"})

    async def start(self) -> None:
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        log.info("webhook server listening on %s:%s%s", self.host, self.port, self.path)

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
