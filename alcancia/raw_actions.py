"""Raw signing operations that invisible-account actions delegate to."""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from starknet_py.hash.selector import get_selector_from_name
from starknet_py.net.client_models import Call

from .accounts import compute_smart_account_details
from .chain import (
    StarknetGateway,
    TransactionUnconfirmed,
    describe_error,
    format_wei,
    parse_token_amount,
    u256_calldata,
)
from .keys import felt_to_hex
from .protocol import RAW_TRANSFER, ActionRegistry, ActionResult, Emit, Invocation, Reply, StarknetCredentials

log = logging.getLogger(__name__)

RECIPIENT_PATTERN = re.compile(r"0x[0-9a-fA-F]{1,64}\b")
AMOUNT_PATTERN = re.compile(r"(?<![\w.])(\d+(?:[.,]\d+)?)(?![\w])")

TRANSFER_USAGE = 'Indica monto y destino, por ejemplo: "enviar 0.01 a 0x123..."'


@dataclass(frozen=True)
class TransferRequest:
    recipient: str
    amount_wei: int


def parse_transfer_request(text: str) -> Optional[TransferRequest]:
    match = RECIPIENT_PATTERN.search(text or "")
    if not match:
        return None
    recipient = felt_to_hex(int(match.group(0), 16))
    remainder = f"{text[:match.start()]} {text[match.end():]}"
    amount_match = AMOUNT_PATTERN.search(remainder)
    if not amount_match:
        return None
    amount_wei = parse_token_amount(amount_match.group(1))
    if amount_wei is None:
        return None
    return TransferRequest(recipient=recipient, amount_wei=amount_wei)


class TransferTokensAction:
    """ERC-20 ``transfer`` signed with the credentials handed in by the caller."""

    name = RAW_TRANSFER

    def __init__(self, gateway: StarknetGateway) -> None:
        self.gateway = gateway

    async def __call__(self, invocation: Invocation, emit: Emit) -> ActionResult:
        message = invocation.message
        credentials = invocation.options.get("starknet")
        if not isinstance(credentials, StarknetCredentials):
            await emit(Reply(text="Necesito una cuenta para firmar la transferencia.", source=message.source))
            return ActionResult(success=False, text="missing credentials", data={"reason": "missing-credentials"})

        request = parse_transfer_request(message.text)
        if request is None:
            await emit(Reply(text=TRANSFER_USAGE, source=message.source))
            return ActionResult(success=False, text="unparseable transfer", data={"reason": "bad-request"})

        settings = self.gateway.settings
        token = settings.token_contract_address
        if not token or not self.gateway.available:
            await emit(Reply(text="La red Starknet no está configurada.", source=message.source))
            return ActionResult(success=False, text="network not configured", data={"reason": "config-missing"})

        private_key_hex = credentials.consume()
        details = compute_smart_account_details(private_key_hex, settings, credentials.variant)
        if details is None:
            await emit(Reply(text="No pude calcular la cuenta de origen.", source=message.source))
            return ActionResult(success=False, text="sender unavailable", data={"reason": "config-missing"})
        sender = details.precalculated_address

        call = Call(
            to_addr=int(token, 16),
            selector=get_selector_from_name("transfer"),
            calldata=[int(request.recipient, 16), *u256_calldata(request.amount_wei)],
        )
        amount_text = format_wei(request.amount_wei)
        data = {"sender": sender, "recipient": request.recipient}
        try:
            tx_hash = await self.gateway.execute(private_key_hex, sender, [call])
        except TransactionUnconfirmed as exc:
            # already on the network; a retry would move the funds twice
            log.warning("transfer from %s submitted but unconfirmed tx=%s: %s", sender, exc.tx_hash, exc.reason)
            await emit(
                Reply(
                    text=(
                        f"Transferencia enviada desde {sender}: {amount_text} ETH a {request.recipient} "
                        f"(tx {exc.tx_hash}). Esperando confirmación de la red; no la repitas."
                    ),
                    source=message.source,
                )
            )
            return ActionResult(
                success=True,
                text="transfer pending",
                data={**data, "tx_hash": exc.tx_hash, "confirmed": False},
            )
        except Exception as exc:
            log.warning("transfer from %s failed: %s", sender, describe_error(exc))
            await emit(
                Reply(
                    text=f"La transferencia desde {sender} no se pudo completar.",
                    source=message.source,
                )
            )
            return ActionResult(success=False, text="transfer failed", data={"reason": "unavailable"})

        await emit(
            Reply(
                text=f"Transferencia enviada desde {sender}: {amount_text} ETH a {request.recipient} (tx {tx_hash}).",
                source=message.source,
            )
        )
        return ActionResult(
            success=True,
            text="transfer sent",
            data={**data, "tx_hash": tx_hash, "confirmed": True},
        )


def register_raw_actions(registry: ActionRegistry, gateway: StarknetGateway) -> None:
    registry.register(RAW_TRANSFER, TransferTokensAction(gateway))
