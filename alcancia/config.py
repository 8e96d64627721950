import os
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_ACCOUNT_VARIANT = "oz"
DEFAULT_DEPLOY_TIMEOUT_S = 120.0
DEFAULT_MODEL = "gpt-4.1-mini"


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


@dataclass(frozen=True)
class Settings:
    """Runtime configuration resolved from the environment."""

    shared_derivation_secret: Optional[str] = None
    account_variant: str = DEFAULT_ACCOUNT_VARIANT
    class_hash_override: Optional[str] = None
    rpc_endpoint: Optional[str] = None
    token_contract_address: Optional[str] = None
    chain: str = "sepolia"
    deploy_timeout_s: float = DEFAULT_DEPLOY_TIMEOUT_S
    telegram_token: Optional[str] = None
    openai_api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    mem_dir: str = "mem"

    @property
    def deterministic_keys(self) -> bool:
        return bool(self.shared_derivation_secret)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        if env is None:
            env = os.environ
        # raw value feeds key derivation; address selection lowercases it
        variant = _clean(env.get("STARKNET_ACCOUNT_VARIANT")) or DEFAULT_ACCOUNT_VARIANT
        timeout_raw = _clean(env.get("STARKNET_DEPLOY_TIMEOUT"))
        try:
            deploy_timeout = float(timeout_raw) if timeout_raw else DEFAULT_DEPLOY_TIMEOUT_S
        except ValueError:
            deploy_timeout = DEFAULT_DEPLOY_TIMEOUT_S
        return cls(
            shared_derivation_secret=_clean(env.get("SECRET_SALT")),
            account_variant=variant,
            class_hash_override=_clean(env.get("STARKNET_ACCOUNT_CLASS_HASH")),
            rpc_endpoint=_clean(env.get("STARKNET_RPC_URL")),
            token_contract_address=_clean(env.get("STARKNET_ETH_TOKEN_ADDRESS")),
            chain=(_clean(env.get("STARKNET_CHAIN")) or "sepolia").lower(),
            deploy_timeout_s=deploy_timeout,
            telegram_token=_clean(env.get("TELEGRAM_BOT_TOKEN")),
            openai_api_key=_clean(env.get("OPENAI_API_KEY")),
            model=_clean(env.get("MODEL")) or DEFAULT_MODEL,
            mem_dir=_clean(env.get("MEM_DIR")) or "mem",
        )
