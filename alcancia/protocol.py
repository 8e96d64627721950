import logging
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional

log = logging.getLogger(__name__)

CREATE_ACCOUNT = "CREATE_INVISIBLE_ACCOUNT"
SHOW_ADDRESS = "SHOW_INVISIBLE_ACCOUNT_ADDRESS"
SHOW_BALANCE = "SHOW_INVISIBLE_ACCOUNT_BALANCE"
TRANSFER = "TRANSFER_TOKENS_INVISIBLE"
DEPLOY_TOKEN = "DEPLOY_MEME_TOKEN_INVISIBLE"

# raw operations owned by the signing layer
RAW_TRANSFER = "transfer-tokens"
RAW_DEPLOY_TOKEN = "deploy-token"

TELEGRAM = "telegram"


@dataclass(frozen=True)
class InboundMessage:
    entity_id: str
    room_id: Optional[str]
    text: str
    source: str
    message_id: Optional[str] = None
    action: Optional[str] = None

    @property
    def text_lower(self) -> str:
        return self.text.lower()

    def for_action(self, action: str) -> "InboundMessage":
        return replace(self, action=action)


@dataclass
class Reply:
    text: str
    action: Optional[str] = None
    source: Optional[str] = None


@dataclass
class ActionResult:
    success: bool
    text: str
    data: Dict[str, Any] = field(default_factory=dict)


Emit = Callable[[Reply], Awaitable[None]]


class CredentialsSpent(RuntimeError):
    pass


class StarknetCredentials:
    """Signing material handed to exactly one delegated call.

    ``consume`` returns the key once; any later call raises. The key never
    shows up in ``repr``.
    """

    def __init__(self, private_key_hex: str, account_alias: str, variant: Optional[str] = None) -> None:
        self._private_key_hex: Optional[str] = private_key_hex
        self.account_alias = account_alias
        self.variant = variant

    def __repr__(self) -> str:
        state = "spent" if self.spent else "ready"
        return f"StarknetCredentials(account_alias={self.account_alias!r}, {state})"

    @property
    def spent(self) -> bool:
        return self._private_key_hex is None

    def consume(self) -> str:
        key = self._private_key_hex
        if key is None:
            raise CredentialsSpent(f"credentials for {self.account_alias} already used")
        self._private_key_hex = None
        return key


@dataclass
class Invocation:
    message: InboundMessage
    state: Dict[str, Any] = field(default_factory=dict)
    options: Dict[str, Any] = field(default_factory=dict)
    responses: List[Reply] = field(default_factory=list)


ActionHandler = Callable[[Invocation, Emit], Awaitable[ActionResult]]


class ActionRegistry:
    """Named operations reachable from the router and from delegation."""

    def __init__(self) -> None:
        self._handlers: Dict[str, ActionHandler] = {}

    def register(self, name: str, handler: ActionHandler) -> None:
        if name in self._handlers:
            log.warning("replacing registered action %s", name)
        self._handlers[name] = handler

    def get(self, name: str) -> Optional[ActionHandler]:
        return self._handlers.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def __iter__(self) -> Iterator[str]:
        return iter(self._handlers)
