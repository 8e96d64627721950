import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple

from starknet_py.hash.address import compute_address

from .config import Settings
from .keys import derive_private_key, felt_to_hex, private_key_to_hex, public_key_for

log = logging.getLogger(__name__)

DEFAULT_OZ_CLASS_HASH = "0x061dac032f228abef9c6626f995015233097ae253a7f72d68552db02f2971b8f"
DEFAULT_ARGENT_CLASS_HASH = "0x1a736d6ed154502257f02b1ccdf4d9d1089f80811cd6acad48e6b6a9d1f2003"

DEFAULT_CLASS_HASHES = {
    "oz": DEFAULT_OZ_CLASS_HASH,
    "argent": DEFAULT_ARGENT_CLASS_HASH,
}


@dataclass
class InvisibleAccount:
    user_entity_id: str
    private_key_hex: str = field(repr=False)
    created_at_ms: int
    account_variant: str
    account_address_hex: Optional[str] = None
    deploy_tx_hash: Optional[str] = None
    pending_deploy_tx: Optional[str] = None
    deterministic: bool = False

    @property
    def deployed(self) -> bool:
        return bool(self.deploy_tx_hash)

    def public_view(self) -> dict:
        return {
            "entity_id": self.user_entity_id,
            "address": self.account_address_hex,
            "created_at_ms": self.created_at_ms,
            "deployed": self.deployed,
            "deploy_pending": bool(self.pending_deploy_tx),
        }


@dataclass(frozen=True)
class SmartAccountDetails:
    class_hash: str
    public_key: str
    constructor_calldata: Tuple[str, ...]
    address_salt: str
    precalculated_address: str


def resolve_class_hash(settings: Settings, variant: str) -> Optional[str]:
    if settings.class_hash_override:
        return settings.class_hash_override
    return DEFAULT_CLASS_HASHES.get(variant)


def constructor_calldata_for(variant: str, public_key: str) -> Tuple[str, ...]:
    if variant == "argent":
        # guardian-based layout: {owner, guardian}
        return (public_key, felt_to_hex(0))
    return (public_key,)


def compute_smart_account_details(
    private_key_hex: str,
    settings: Settings,
    variant: Optional[str] = None,
) -> Optional[SmartAccountDetails]:
    """Precompute the counterfactual account address for a private key.

    Returns ``None`` when the class hash cannot be resolved or the key is
    malformed; callers fall back to :func:`provisional_address`.
    """

    variant = (variant or settings.account_variant).lower()
    class_hash = resolve_class_hash(settings, variant)
    if not class_hash:
        log.info("no class hash available for account variant %s", variant)
        return None
    try:
        public_key = felt_to_hex(public_key_for(private_key_hex))
        calldata = constructor_calldata_for(variant, public_key)
        address = compute_address(
            salt=int(public_key, 16),
            class_hash=int(class_hash, 16),
            constructor_calldata=[int(item, 16) for item in calldata],
            deployer_address=0,
        )
    except (TypeError, ValueError) as exc:
        log.warning("failed to compute smart account details: %s", exc)
        return None
    return SmartAccountDetails(
        class_hash=class_hash,
        public_key=public_key,
        constructor_calldata=calldata,
        address_salt=public_key,
        precalculated_address=felt_to_hex(address),
    )


def provisional_address(private_key_hex: str) -> Optional[str]:
    """Public key used as a stand-in identifier when no address can be computed."""

    try:
        return felt_to_hex(public_key_for(private_key_hex))
    except (TypeError, ValueError) as exc:
        log.warning("failed to derive provisional address: %s", exc)
        return None


def _now_ms() -> int:
    return int(time.time() * 1000)


class AccountStore:
    """In-memory registry mapping chat users to their invisible accounts."""

    def __init__(self, settings: Settings, *, clock_ms: Callable[[], int] = _now_ms) -> None:
        self.settings = settings
        self._clock_ms = clock_ms
        self._accounts: Dict[str, InvisibleAccount] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._accounts)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._accounts

    def get(self, entity_id: str) -> Optional[InvisibleAccount]:
        return self._accounts.get(entity_id)

    def ensure(self, entity_id: str) -> InvisibleAccount:
        with self._lock:
            existing = self._accounts.get(entity_id)
            if existing is not None:
                return existing
            account = self._mint(entity_id)
            self._accounts[entity_id] = account
        log.info(
            "invisible account created entity=%s address=%s deterministic=%s",
            entity_id,
            account.account_address_hex,
            account.deterministic,
        )
        return account

    def _mint(self, entity_id: str) -> InvisibleAccount:
        variant = self.settings.account_variant
        secret = self.settings.shared_derivation_secret
        private_key_hex = private_key_to_hex(derive_private_key(entity_id, secret, variant))
        account = InvisibleAccount(
            user_entity_id=entity_id,
            private_key_hex=private_key_hex,
            created_at_ms=self._clock_ms(),
            account_variant=variant,
            deterministic=bool(secret),
        )
        details = compute_smart_account_details(private_key_hex, self.settings, variant)
        if details:
            account.account_address_hex = details.precalculated_address
        else:
            account.account_address_hex = provisional_address(private_key_hex)
        return account

    def details_for(self, entity_id: str) -> Optional[SmartAccountDetails]:
        account = self.get(entity_id)
        if account is None:
            return None
        return compute_smart_account_details(
            account.private_key_hex, self.settings, account.account_variant
        )

    def set_address(self, entity_id: str, address_hex: str) -> None:
        with self._lock:
            account = self._accounts.get(entity_id)
            if account is None:
                return
            account.account_address_hex = address_hex
        log.info("account address updated entity=%s address=%s", entity_id, address_hex)

    def mark_deployed(self, entity_id: str, address_hex: str, tx_hash: str) -> None:
        with self._lock:
            account = self._accounts.get(entity_id)
            if account is None:
                return
            account.account_address_hex = address_hex
            account.deploy_tx_hash = tx_hash
            account.pending_deploy_tx = None
        log.info("account deployed entity=%s address=%s tx=%s", entity_id, address_hex, tx_hash)

    def mark_deploy_pending(self, entity_id: str, tx_hash: str) -> None:
        with self._lock:
            account = self._accounts.get(entity_id)
            if account is None:
                return
            account.pending_deploy_tx = tx_hash
        log.info("account deploy pending entity=%s tx=%s", entity_id, tx_hash)
