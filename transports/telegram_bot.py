import asyncio
import logging
from typing import List, Optional

from telegram import (
    CallbackQuery,
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    Update,
)
from telegram.error import BadRequest
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from paybot.replies import BotReply, Button, ChatUser, Notification
from transports.webhook import WEBHOOK_PATH, WebhookServer

log = logging.getLogger(__name__)

GENERIC_APOLOGY = "Sorry, something went wrong. Please try again."
CAPTION_LIMIT = 1024


def _markup(rows: List[List[Button]]) -> Optional[InlineKeyboardMarkup]:
    if not rows:
        return None
    return InlineKeyboardMarkup(
        [
            [
                InlineKeyboardButton(button.text, url=button.url)
                if button.url
                else InlineKeyboardButton(button.text, callback_data=button.payload)
                for button in row
            ]
            for row in rows
        ]
    )


def _chat_user(update: Update) -> Optional[ChatUser]:
    user = update.effective_user
    if not user or user.is_bot:
        return None
    chat = update.effective_chat
    return ChatUser(
        user_id=user.id,
        username=user.username,
        chat_id=chat.id if chat else user.id,
        full_name=user.full_name,
    )


async def send_reply(bot, chat_id: int, reply: BotReply) -> None:
    if reply.text:
        await bot.send_message(chat_id=chat_id, text=reply.text, reply_markup=_markup(reply.buttons))
    for attachment in reply.attachments:
        await bot.send_photo(
            chat_id=chat_id,
            photo=attachment.content,
            filename=attachment.filename,
            caption=(attachment.description or "")[:CAPTION_LIMIT] or None,
        )


class TelegramInteraction:
    def __init__(self, query: CallbackQuery, bot):
        self.query = query
        self.bot = bot

    async def answer(self, text: Optional[str] = None, *, alert: bool = False) -> None:
        try:
            await self.query.answer(text=text, show_alert=alert)
        except BadRequest as exc:
            # queries older than a few seconds can no longer be answered
            log.warning("could not answer callback query: %s", exc)

    async def edit(self, reply: BotReply) -> None:
        try:
            await self.query.edit_message_text(reply.text, reply_markup=_markup(reply.buttons))
        except BadRequest as exc:
            if "not modified" not in str(exc).lower():
                raise

    async def reply(self, reply: BotReply) -> None:
        chat_id = self.query.message.chat.id if self.query.message else self.query.from_user.id
        await send_reply(self.bot, chat_id, reply)


class TelegramTransport:
    def __init__(
        self,
        wallet_bot,
        token: str,
        *,
        sweep_interval: float = 300,
        webhook_url: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        port: int = 8080,
    ):
        self.wallet_bot = wallet_bot
        self.sweep_interval = sweep_interval
        self.webhook_url = webhook_url
        self.webhook_secret = webhook_secret
        self.port = port
        builder = Application.builder().token(token).concurrent_updates(True)
        if webhook_url:
            builder = builder.updater(None)
        self.application = builder.build()
        self._register_handlers()
        self._stop_event = asyncio.Event()
        self._sweep_task: Optional[asyncio.Task] = None
        self._webhook: Optional[WebhookServer] = None

    def _register_handlers(self):
        for command in self.wallet_bot.commands:
            self.application.add_handler(CommandHandler(command, self.handle_command))
        self.application.add_handler(CallbackQueryHandler(self.handle_callback))
        self.application.add_handler(
            MessageHandler(
                filters.TEXT & (~filters.COMMAND) & filters.ChatType.PRIVATE,
                self.handle_message,
            )
        )
        self.application.add_error_handler(self.handle_error)

    async def handle_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        message = update.effective_message
        user = _chat_user(update)
        if not message or not message.text or not user:
            return
        command = message.text.split()[0][1:].split("@")[0].lower()
        try:
            reply = await self.wallet_bot.handle_command(command, user, context.args or [])
        except Exception as exc:
            log.exception("Command /%s failed: %s", command, exc)
            reply = BotReply(text=GENERIC_APOLOGY)
        await send_reply(context.bot, message.chat_id, reply)
        await self._deliver_notifications(context.bot)

    async def handle_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        message = update.effective_message
        user = _chat_user(update)
        if not message or not message.text or not user:
            return
        try:
            reply = await self.wallet_bot.handle_text(user, message.text)
        except Exception as exc:
            log.exception("Wallet bot error: %s", exc)
            reply = BotReply(text=GENERIC_APOLOGY)
        await send_reply(context.bot, message.chat_id, reply)
        await self._deliver_notifications(context.bot)

    async def handle_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        query = update.callback_query
        user = _chat_user(update)
        if not query or not user:
            return
        interaction = TelegramInteraction(query, context.bot)
        try:
            await self.wallet_bot.handle_callback(user, query.data or "", interaction)
        except Exception as exc:
            log.exception("Callback %r failed: %s", query.data, exc)
            await interaction.answer(GENERIC_APOLOGY, alert=True)
        await self._deliver_notifications(context.bot)

    async def handle_error(self, update: object, context: ContextTypes.DEFAULT_TYPE):
        log.error("Unhandled error while processing update: %s", context.error, exc_info=context.error)

    async def _deliver_notifications(self, bot) -> None:
        notifications = self.wallet_bot.drain_notifications()
        for note in notifications:
            if not isinstance(note, Notification):
                continue
            try:
                await bot.send_message(
                    chat_id=int(note.user_id),
                    text=note.message,
                    reply_markup=_markup(note.buttons),
                )
            except Exception as exc:
                log.warning("Failed to deliver notification to %s: %s", note.user_id, exc)

    async def _sweep_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.sweep_interval)
            except asyncio.TimeoutError:
                pass
            if self._stop_event.is_set():
                break
            try:
                self.wallet_bot.sweep()
            except Exception as exc:
                log.exception("Sweep failed: %s", exc)
            await self._deliver_notifications(self.application.bot)

    async def start(self):
        await self.application.initialize()
        await self.application.start()
        if self.webhook_url:
            self._webhook = WebhookServer(
                self.application, secret=self.webhook_secret, port=self.port
            )
            await self._webhook.start()
            await self.application.bot.set_webhook(
                url=self.webhook_url.rstrip("/") + WEBHOOK_PATH,
                secret_token=self.webhook_secret,
                allowed_updates=Update.ALL_TYPES,
            )
        else:
            await self.application.bot.delete_webhook()
            await self.application.updater.start_polling()
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        try:
            await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            if self._sweep_task is not None:
                self._sweep_task.cancel()
                try:
                    await self._sweep_task
                except asyncio.CancelledError:
                    pass
            if self._webhook is not None:
                await self._webhook.stop()
            elif self.application.updater:
                await self.application.updater.stop()
            await self.application.stop()
            await self.application.shutdown()

    async def stop(self):
        self._stop_event.set()
