import asyncio
import logging

from telegram import Update
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from alcancia.protocol import TELEGRAM, InboundMessage, Reply

log = logging.getLogger(__name__)

UNAVAILABLE_REPLY = "No estoy disponible ahora mismo."
WELCOME_REPLY = (
    "¡Qué gusto saludarte! Soy Don Jaimito. "
    'Escribe "crear alcancía" para abrir tu alcancía digital.'
)


def inbound_from_update(update: Update):
    message = update.effective_message
    user = update.effective_user
    chat = update.effective_chat
    if not message or not message.text or not user or user.is_bot or not chat:
        return None
    return InboundMessage(
        entity_id=str(user.id),
        room_id=str(chat.id),
        text=message.text,
        source=TELEGRAM,
        message_id=f"{chat.id}:{message.message_id}",
    )


class TelegramTransport:
    def __init__(self, assistant, token: str):
        self.assistant = assistant
        self.application = Application.builder().token(token).build()
        self._register_handlers()
        self._stop_event = asyncio.Event()

    def _register_handlers(self):
        self.application.add_handler(CommandHandler("start", self.start_command))
        self.application.add_handler(
            MessageHandler(filters.TEXT & (~filters.COMMAND), self.handle_message)
        )

    async def start_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if update.effective_message:
            await update.effective_message.reply_text(WELCOME_REPLY)

    async def handle_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        inbound = inbound_from_update(update)
        if inbound is None:
            return
        message = update.effective_message

        async def emit(reply: Reply) -> None:
            if reply and reply.text:
                await message.reply_text(reply.text)

        try:
            await self.assistant.handle_message(inbound, emit)
        except Exception as exc:
            log.exception("Assistant error: %s", exc)
            await message.reply_text(UNAVAILABLE_REPLY)

    async def start(self):
        await self.application.initialize()
        await self.application.start()
        await self.application.updater.start_polling()
        try:
            await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.application.updater.stop()
            await self.application.stop()
            await self.application.shutdown()

    async def stop(self):
        self._stop_event.set()
