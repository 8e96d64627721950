"""Account operations exposed to the chat layer.

Every operation returns an :class:`ActionResult`; chain and configuration
problems come back as ``success=False`` results with a reason code in
``data["reason"]`` instead of exceptions.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from .accounts import AccountStore
from .chain import StarknetGateway, format_wei
from .protocol import (
    DEPLOY_TOKEN,
    RAW_DEPLOY_TOKEN,
    RAW_TRANSFER,
    TRANSFER,
    ActionRegistry,
    ActionResult,
    Emit,
    InboundMessage,
    Invocation,
    Reply,
    StarknetCredentials,
)

log = logging.getLogger(__name__)

ADDRESS_PATTERN = re.compile(r"0x[0-9a-fA-F]{40,66}")

NO_ACCOUNT_TEXT = 'Primero crea tu alcancía con: "crear alcancía"'
ADDRESS_PENDING_TEXT = "Tu alcancía está creada, pero aún no tengo la dirección disponible."

REASON_NO_ACCOUNT = "no-account"
REASON_RAW_MISSING = "raw-action-missing"
REASON_UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class Interception:
    reply: Reply
    observed_address: Optional[str] = None


def intercept_reply(
    text: Optional[str],
    *,
    action: str,
    source: Optional[str],
    fallback_text: str,
) -> Interception:
    """Map a raw action's reply into a reply of the wrapping action.

    Any hex address the raw action revealed is surfaced so the caller can
    promote the stored account address.
    """

    match = ADDRESS_PATTERN.search(text or "")
    return Interception(
        reply=Reply(text=text or fallback_text, action=action, source=source),
        observed_address=match.group(0) if match else None,
    )


class DelegationRelay:
    """Emit callback handed to a raw action in place of the caller's."""

    def __init__(
        self,
        store: AccountStore,
        *,
        entity_id: str,
        action: str,
        source: Optional[str],
        emit: Emit,
        fallback_text: str,
    ) -> None:
        self.store = store
        self.entity_id = entity_id
        self.action = action
        self.source = source
        self.emit = emit
        self.fallback_text = fallback_text
        self.acknowledged = False

    async def __call__(self, reply: Reply) -> None:
        self.acknowledged = True
        interception = intercept_reply(
            reply.text if reply else None,
            action=self.action,
            source=self.source,
            fallback_text=self.fallback_text,
        )
        if interception.observed_address:
            self.store.set_address(self.entity_id, interception.observed_address)
        await self.emit(interception.reply)


def _no_account() -> ActionResult:
    return ActionResult(success=False, text=NO_ACCOUNT_TEXT, data={"reason": REASON_NO_ACCOUNT})


class AccountService:
    def __init__(self, store: AccountStore, gateway: StarknetGateway, registry: ActionRegistry) -> None:
        self.store = store
        self.gateway = gateway
        self.registry = registry

    async def create_account(self, entity_id: str) -> ActionResult:
        account = self.store.ensure(entity_id)
        deploy_error: Optional[str] = None
        if account.pending_deploy_tx and not account.deployed:
            # the node would reject a second deploy for the same address
            log.info("deploy already submitted for %s tx=%s", entity_id, account.pending_deploy_tx)
        elif not account.deployed:
            # best effort: an unfunded account keeps its precomputed address
            outcome = await self.gateway.try_deploy(account.private_key_hex, account.account_variant)
            if outcome.ok:
                self.store.mark_deployed(entity_id, outcome.address, outcome.tx_hash)
            else:
                deploy_error = outcome.error
                if outcome.tx_hash:
                    self.store.mark_deploy_pending(entity_id, outcome.tx_hash)
                log.info("account %s not deployed yet: %s", entity_id, outcome.error)
        address = account.account_address_hex
        if address:
            address_text = f"Tu dirección de alcancía es: {address}"
        else:
            address_text = "Te compartiré la dirección cuando esté disponible."
        data = account.public_view()
        if deploy_error:
            data["deploy_error"] = deploy_error
        return ActionResult(
            success=True,
            text=f"Listo. Creé tu alcancía digital en Starknet (cuenta invisible). {address_text}",
            data=data,
        )

    def get_address(self, entity_id: str) -> ActionResult:
        account = self.store.get(entity_id)
        if account is None:
            return _no_account()
        if not account.account_address_hex:
            return ActionResult(success=True, text=ADDRESS_PENDING_TEXT, data={"address": None})
        return ActionResult(
            success=True,
            text=f"Tu dirección de alcancía es: {account.account_address_hex}",
            data={"address": account.account_address_hex},
        )

    async def get_balance(self, entity_id: str) -> ActionResult:
        account = self.store.get(entity_id)
        if account is None or not account.account_address_hex:
            return _no_account()
        wei = await self.gateway.get_balance_wei(account.account_address_hex)
        data = {"address": account.account_address_hex, "wei": str(wei) if wei is not None else None}
        if wei is None:
            data["reason"] = REASON_UNAVAILABLE
        return ActionResult(
            success=wei is not None,
            text=f"Balance de tu alcancía: {format_wei(wei)} ETH",
            data=data,
        )

    async def transfer(self, entity_id: str, message: InboundMessage, emit: Emit) -> ActionResult:
        return await self.delegate(
            entity_id,
            message,
            emit,
            raw_action=RAW_TRANSFER,
            wrapper_action=TRANSFER,
            unavailable_text="Acción de transferencia no disponible.",
            reply_fallback="Transferencia procesada.",
            ack_text="Se inició la transferencia. Te aviso cuando se confirme.",
        )

    async def deploy_token(self, entity_id: str, message: InboundMessage, emit: Emit) -> ActionResult:
        return await self.delegate(
            entity_id,
            message,
            emit,
            raw_action=RAW_DEPLOY_TOKEN,
            wrapper_action=DEPLOY_TOKEN,
            unavailable_text="Acción de despliegue no disponible.",
            reply_fallback="Token desplegado en Starknet.",
        )

    async def delegate(
        self,
        entity_id: str,
        message: InboundMessage,
        emit: Emit,
        *,
        raw_action: str,
        wrapper_action: str,
        unavailable_text: str,
        reply_fallback: str,
        ack_text: Optional[str] = None,
    ) -> ActionResult:
        account = self.store.get(entity_id)
        if account is None:
            return _no_account()
        handler = self.registry.get(raw_action)
        if handler is None:
            log.warning("raw action %s is not registered", raw_action)
            return ActionResult(
                success=False,
                text=unavailable_text,
                data={"reason": REASON_RAW_MISSING, "action": raw_action},
            )
        relay = DelegationRelay(
            self.store,
            entity_id=entity_id,
            action=wrapper_action,
            source=message.source,
            emit=emit,
            fallback_text=reply_fallback,
        )
        invocation = Invocation(
            message=message.for_action(raw_action),
            options={
                "starknet": StarknetCredentials(
                    account.private_key_hex,
                    account_alias=entity_id,
                    variant=account.account_variant,
                )
            },
        )
        raw_result = await handler(invocation, relay)
        if not relay.acknowledged and ack_text:
            await emit(Reply(text=ack_text, action=wrapper_action, source=message.source))
        return ActionResult(
            success=True,
            text=f"{raw_action} requested",
            data={"delegated": True, "raw_success": raw_result.success},
        )
