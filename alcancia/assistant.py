import json
import logging
import re
import time
from collections import defaultdict, deque
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from openai import AsyncOpenAI

from .accounts import AccountStore
from .actions import register_invisible_actions
from .chain import StarknetGateway
from .config import Settings
from .dedup import ACTION_ONCE_S, NO_ACCOUNT_WARNING_S, ROUTER_DEBOUNCE_S, TimedGuard
from .persona import PersonaConfig
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
from .raw_actions import register_raw_actions
from .router import CommandRouter
from .service import AccountService

log = logging.getLogger(__name__)

MAX_HISTORY = 12
OFFLINE_REPLY = "Ando desconectado un momento. Inténtalo en un ratito."

ACCOUNT_DIRECTIVE_PATTERN = re.compile(r"\[\[alcancia:(\{.*?\})\]\]", re.DOTALL)
DIRECTIVE_ACTIONS = {
    "create": CREATE_ACCOUNT,
    "address": SHOW_ADDRESS,
    "balance": SHOW_BALANCE,
    "transfer": TRANSFER,
    "token": DEPLOY_TOKEN,
}


class Assistant:
    """Owns the invisible-account state for one process and answers chat messages.

    Commands the router recognises run directly; anything else goes to the
    persona model, whose reply may carry an ``[[alcancia:{...}]]`` directive
    that triggers the same actions.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        gateway: Optional[StarknetGateway] = None,
        llm_client: Optional[Any] = None,
        persona: Optional[PersonaConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.store = AccountStore(settings)
        self.gateway = gateway or StarknetGateway(settings)
        self.registry = ActionRegistry()
        self.router_debounce = TimedGuard(ROUTER_DEBOUNCE_S, clock=clock)
        self.action_guard = TimedGuard(ACTION_ONCE_S, clock=clock)
        self.warning_guard = TimedGuard(NO_ACCOUNT_WARNING_S, clock=clock)
        self.service = AccountService(self.store, self.gateway, self.registry)
        register_raw_actions(self.registry, self.gateway)
        register_invisible_actions(
            self.registry,
            self.service,
            action_guard=self.action_guard,
            warning_guard=self.warning_guard,
        )
        self.router = CommandRouter(self.registry, self.router_debounce)
        self.persona = persona or PersonaConfig(override_path=Path(settings.mem_dir) / "persona.yaml")
        if llm_client is None and settings.openai_api_key:
            llm_client = AsyncOpenAI(api_key=settings.openai_api_key)
        self.client = llm_client
        self._history: Dict[str, Deque[Tuple[str, str]]] = defaultdict(lambda: deque(maxlen=MAX_HISTORY))

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()
        await self.gateway.close()

    async def handle_message(self, message: InboundMessage, emit: Emit) -> None:
        if not message.text or not message.text.strip():
            return
        dispatch = await self.router.dispatch(message, emit)
        if dispatch.handled or not self.router.supports(message):
            return
        await self._converse(message, emit)

    def _compose_system_prompt(self, message: InboundMessage) -> str:
        parts: List[str] = [self.persona.get_prompt()]
        account = self.store.get(message.entity_id)
        if account is None:
            parts.append("estado: el usuario todavía no tiene alcancía digital.")
        elif account.account_address_hex:
            parts.append(f"estado: el usuario ya tiene alcancía digital en {account.account_address_hex}.")
        else:
            parts.append("estado: el usuario ya tiene alcancía digital; la dirección sigue pendiente.")
        return " ".join(part for part in parts if part)

    async def _converse(self, message: InboundMessage, emit: Emit) -> None:
        if self.client is None:
            return
        conversation_id = message.room_id or message.entity_id
        history = self._history[conversation_id]
        messages_payload = [{"role": "system", "content": self._compose_system_prompt(message)}]
        for role, content in history:
            messages_payload.append({"role": role, "content": content})
        messages_payload.append({"role": "user", "content": message.text.strip()})
        try:
            response = await self.client.chat.completions.create(
                model=self.settings.model,
                messages=messages_payload,
                temperature=0.7,
            )
        except Exception as exc:
            log.exception("OpenAI chat failure: %s", exc)
            await emit(Reply(text=OFFLINE_REPLY, source=message.source))
            return
        raw_reply = response.choices[0].message.content or ""
        directive, reply = self._extract_account_directive(raw_reply)
        history.append(("user", message.text.strip()))
        if reply:
            history.append(("assistant", reply))
            await emit(Reply(text=reply, source=message.source))
        if directive:
            await self._execute_account_directive(directive, message, emit)

    def _extract_account_directive(self, reply: str) -> Tuple[Optional[dict], str]:
        if not reply:
            return None, reply
        matches = list(ACCOUNT_DIRECTIVE_PATTERN.finditer(reply))
        if not matches:
            return None, reply
        try:
            command = json.loads(matches[-1].group(1))
        except json.JSONDecodeError:
            command = None
        if not isinstance(command, dict):
            command = None
        cleaned = ACCOUNT_DIRECTIVE_PATTERN.sub("", reply).strip()
        return command, cleaned

    async def _execute_account_directive(
        self, command: dict, message: InboundMessage, emit: Emit
    ) -> Optional[ActionResult]:
        requested = str(command.get("action") or "").strip().lower()
        action_name = DIRECTIVE_ACTIONS.get(requested)
        if action_name is None:
            log.info("ignoring unknown account directive %r", requested)
            return None
        handler = self.registry.get(action_name)
        if handler is None:
            return None
        log.info("model requested %s for %s", action_name, message.entity_id)
        return await handler(Invocation(message=message), emit)
