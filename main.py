import asyncio
import logging
import signal

from dotenv import load_dotenv

from alcancia.assistant import Assistant
from alcancia.config import Settings
from transports.telegram_bot import TelegramTransport

log = logging.getLogger("alcancia")


def check_settings(settings: Settings) -> None:
    if not settings.telegram_token:
        raise SystemExit("Missing TELEGRAM_BOT_TOKEN.")
    if not settings.deterministic_keys:
        log.warning("SECRET_SALT not set; invisible account keys will not survive a restart")
    if not settings.rpc_endpoint:
        log.warning("STARKNET_RPC_URL not set; deploys and balances are disabled")
    elif not settings.token_contract_address:
        log.warning("STARKNET_ETH_TOKEN_ADDRESS not set; balances and transfers are disabled")
    if not settings.openai_api_key:
        log.info("OPENAI_API_KEY not set; only keyword commands will be answered")


def install_shutdown_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            signal.signal(sig, lambda *_: stop_event.set())


async def main():
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s :: %(message)s")

    settings = Settings.from_env()
    check_settings(settings)

    assistant = Assistant(settings)
    transport = TelegramTransport(assistant, settings.telegram_token)
    stop_event = asyncio.Event()
    install_shutdown_handlers(stop_event)

    log.info("starting Telegram transport (chain=%s, variant=%s)", settings.chain, settings.account_variant)
    telegram_task = asyncio.create_task(transport.start())
    try:
        await stop_event.wait()
    finally:
        await transport.stop()
        await telegram_task
        await assistant.close()


if __name__ == "__main__":
    asyncio.run(main())
