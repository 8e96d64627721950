import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Sequence

from .dedup import TimedGuard, router_key
from .protocol import (
    CREATE_ACCOUNT,
    DEPLOY_TOKEN,
    SHOW_ADDRESS,
    SHOW_BALANCE,
    TELEGRAM,
    TRANSFER,
    ActionRegistry,
    ActionResult,
    Emit,
    InboundMessage,
    Invocation,
)

log = logging.getLogger(__name__)


class Classifier(Protocol):
    def classify(self, text_lower: str) -> Optional[str]:
        ...


@dataclass(frozen=True)
class Route:
    action: str
    matches: Callable[[str], bool]


def _any(*needles: str) -> Callable[[str], bool]:
    return lambda text: any(needle in text for needle in needles)


def _create_account(text: str) -> bool:
    return "crear" in text and _any("alcancía", "alcancia", "cuenta", "wallet")(text)


DEFAULT_ROUTES = (
    Route(CREATE_ACCOUNT, _create_account),
    Route(DEPLOY_TOKEN, _any("crear token", "meme token", "lanzar token")),
    Route(TRANSFER, _any("enviar", "transfer")),
    Route(SHOW_ADDRESS, _any("dirección", "direccion", "address")),
    Route(SHOW_BALANCE, _any("balance", "saldo")),
)


@dataclass(frozen=True)
class Dispatch:
    action: Optional[str] = None
    result: Optional[ActionResult] = None
    debounced: bool = False

    @property
    def handled(self) -> bool:
        return self.debounced or self.action is not None


class KeywordClassifier:
    """Ordered substring routes; the first matching route wins."""

    def __init__(self, routes: Sequence[Route] = DEFAULT_ROUTES) -> None:
        self.routes = tuple(routes)

    def classify(self, text_lower: str) -> Optional[str]:
        for route in self.routes:
            if route.matches(text_lower):
                return route.action
        return None


class CommandRouter:
    def __init__(
        self,
        registry: ActionRegistry,
        debounce: TimedGuard,
        *,
        classifier: Optional[Classifier] = None,
        sources: Sequence[str] = (TELEGRAM,),
    ) -> None:
        self.registry = registry
        self.debounce = debounce
        self.classifier = classifier or KeywordClassifier()
        self.sources = frozenset(sources)

    def supports(self, message: InboundMessage) -> bool:
        return message.source in self.sources and bool(message.text)

    async def dispatch(self, message: InboundMessage, emit: Emit) -> Dispatch:
        if not self.supports(message):
            return Dispatch()
        text_lower = message.text_lower
        if not self.debounce.should_proceed(router_key(message.room_id, message.entity_id, text_lower)):
            log.debug("router debounce hit for %s", message.entity_id)
            return Dispatch(debounced=True)
        action_name = self.classifier.classify(text_lower)
        if action_name is None:
            return Dispatch()
        log.info("router matched %s for %s", action_name, message.entity_id)
        handler = self.registry.get(action_name)
        if handler is None:
            log.info("action %s not registered; ignoring", action_name)
            return Dispatch(action=action_name)
        result = await handler(Invocation(message=message), emit)
        return Dispatch(action=action_name, result=result)
