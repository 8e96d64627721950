import logging

from .dedup import TimedGuard, action_key, warning_key
from .protocol import (
    CREATE_ACCOUNT,
    DEPLOY_TOKEN,
    SHOW_ADDRESS,
    SHOW_BALANCE,
    TRANSFER,
    ActionRegistry,
    ActionResult,
    Emit,
    InboundMessage,
    Invocation,
    Reply,
)
from .service import REASON_NO_ACCOUNT, AccountService

log = logging.getLogger(__name__)

DUPLICATE_TEXT = "duplicate ignored"
UNKNOWN_USER_TEXT = "No pude identificar al usuario."


class InvisibleAction:
    """Chat-facing wrapper around one :class:`AccountService` operation.

    Runs at most once per logical message, whichever path reaches it, and
    rate limits the "create an account first" notice per user and feature.
    """

    name = ""
    feature = ""
    failure_text = "No pude completar la operación ahora."

    def __init__(
        self,
        service: AccountService,
        *,
        action_guard: TimedGuard,
        warning_guard: TimedGuard,
    ) -> None:
        self.service = service
        self.action_guard = action_guard
        self.warning_guard = warning_guard

    async def run(self, message: InboundMessage, emit: Emit) -> ActionResult:
        raise NotImplementedError

    async def __call__(self, invocation: Invocation, emit: Emit) -> ActionResult:
        message = invocation.message
        key = action_key(message.message_id, message.entity_id, self.name, message.text_lower)
        if not self.action_guard.should_proceed(key):
            log.info("duplicate %s ignored for %s", self.name, message.entity_id)
            return ActionResult(success=False, text=DUPLICATE_TEXT, data={"reason": "duplicate"})
        if not message.entity_id:
            await emit(Reply(text=UNKNOWN_USER_TEXT, action=self.name, source=message.source))
            return ActionResult(success=False, text="missing entity id", data={"reason": "missing-entity"})
        try:
            result = await self.run(message, emit)
        except Exception as exc:
            log.exception("%s failed: %s", self.name, exc)
            await emit(Reply(text=self.failure_text, action=self.name, source=message.source))
            return ActionResult(success=False, text=self.failure_text, data={"reason": "error"})
        await self._deliver(message, result, emit)
        return result

    async def _deliver(self, message: InboundMessage, result: ActionResult, emit: Emit) -> None:
        if result.data.get("delegated"):
            return
        if result.data.get("reason") == REASON_NO_ACCOUNT:
            if not self.warning_guard.should_proceed(warning_key(message.entity_id, self.feature)):
                log.debug("no-account notice throttled for %s/%s", message.entity_id, self.feature)
                return
        await emit(Reply(text=result.text, action=self.name, source=message.source))


class CreateAccountAction(InvisibleAction):
    name = CREATE_ACCOUNT
    feature = "create"
    failure_text = "No pude crear tu alcancía digital ahora. Inténtalo más tarde."

    async def run(self, message: InboundMessage, emit: Emit) -> ActionResult:
        return await self.service.create_account(message.entity_id)


class ShowAddressAction(InvisibleAction):
    name = SHOW_ADDRESS
    feature = "address"

    async def run(self, message: InboundMessage, emit: Emit) -> ActionResult:
        return self.service.get_address(message.entity_id)


class ShowBalanceAction(InvisibleAction):
    name = SHOW_BALANCE
    feature = "balance"
    failure_text = "No pude consultar tu balance ahora."

    async def run(self, message: InboundMessage, emit: Emit) -> ActionResult:
        return await self.service.get_balance(message.entity_id)


class TransferAction(InvisibleAction):
    name = TRANSFER
    feature = "transfer"
    failure_text = "No pude realizar la transferencia ahora."

    async def run(self, message: InboundMessage, emit: Emit) -> ActionResult:
        return await self.service.transfer(message.entity_id, message, emit)


class DeployTokenAction(InvisibleAction):
    name = DEPLOY_TOKEN
    feature = "deploy"
    failure_text = "No pude desplegar el token ahora."

    async def run(self, message: InboundMessage, emit: Emit) -> ActionResult:
        return await self.service.deploy_token(message.entity_id, message, emit)


INVISIBLE_ACTIONS = (
    CreateAccountAction,
    ShowAddressAction,
    ShowBalanceAction,
    TransferAction,
    DeployTokenAction,
)


def register_invisible_actions(
    registry: ActionRegistry,
    service: AccountService,
    *,
    action_guard: TimedGuard,
    warning_guard: TimedGuard,
) -> None:
    for action_cls in INVISIBLE_ACTIONS:
        action = action_cls(service, action_guard=action_guard, warning_guard=warning_guard)
        registry.register(action.name, action)
