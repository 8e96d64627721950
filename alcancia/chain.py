import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, List, Optional, Sequence

import aiohttp
from starknet_py.hash.selector import get_selector_from_name
from starknet_py.net.account.account import Account
from starknet_py.net.client_models import Call
from starknet_py.net.full_node_client import FullNodeClient
from starknet_py.net.models import StarknetChainId
from starknet_py.net.signer.stark_curve_signer import KeyPair
from starknet_py.transaction_errors import TransactionRejectedError, TransactionRevertedError

from .accounts import compute_smart_account_details
from .config import Settings
from .keys import felt_to_hex, parse_private_key

log = logging.getLogger(__name__)

WEI_PER_TOKEN = 10 ** 18
TOKEN_DECIMALS = 18
UNAVAILABLE = "N/A"

CHAIN_IDS = {
    "mainnet": StarknetChainId.MAINNET,
    "sepolia": StarknetChainId.SEPOLIA,
}


def describe_error(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class TransactionUnconfirmed(RuntimeError):
    """Submitted transaction whose acceptance could not be confirmed."""

    def __init__(self, tx_hash: str, reason: str) -> None:
        super().__init__(f"{tx_hash}: {reason}")
        self.tx_hash = tx_hash
        self.reason = reason


@dataclass(frozen=True)
class DeployOutcome:
    address: Optional[str] = None
    tx_hash: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.address)


def format_wei(wei: Optional[int]) -> str:
    """Render a wei amount as a decimal token string with trailing zeros stripped."""

    if wei is None:
        return UNAVAILABLE
    whole, frac = divmod(wei, WEI_PER_TOKEN)
    frac_text = f"{frac:0{TOKEN_DECIMALS}d}".rstrip("0")
    if not frac_text:
        return str(whole)
    return f"{whole}.{frac_text}"


def parse_token_amount(text: str) -> Optional[int]:
    try:
        amount = Decimal(text.replace(",", "."))
    except ArithmeticError:
        return None
    if not amount.is_finite() or amount <= 0:
        return None
    wei = amount * WEI_PER_TOKEN
    if wei != wei.to_integral_value():
        return None
    return int(wei)


def _felt(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str):
        text = value.strip()
        try:
            parsed = int(text, 16) if text.lower().startswith("0x") else int(text)
        except ValueError:
            return None
        return parsed if parsed >= 0 else None
    return None


def parse_balance_response(response: Any) -> Optional[int]:
    """Decode a ``balanceOf`` result: a single felt or a (low, high) u256 pair."""

    if isinstance(response, dict):
        response = response.get("result")
    if response is None:
        return None
    if isinstance(response, (int, str)) and not isinstance(response, bool):
        response = [response]
    if not isinstance(response, (list, tuple)):
        return None
    if not response:
        return 0
    low = _felt(response[0])
    if low is None:
        return None
    if len(response) > 1:
        high = _felt(response[1])
        if high is None:
            return None
        return low + (high << 128)
    return low


def u256_calldata(value: int) -> List[int]:
    return [value & ((1 << 128) - 1), value >> 128]


class StarknetGateway:
    """Thin async wrapper over the Starknet RPC used by the invisible accounts."""

    def __init__(
        self,
        settings: Settings,
        *,
        client_factory: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self.settings = settings
        self._client_factory = client_factory or self._default_client_factory
        self._client: Optional[Any] = None
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def chain_id(self) -> StarknetChainId:
        return CHAIN_IDS.get(self.settings.chain, StarknetChainId.SEPOLIA)

    def _default_client_factory(self, node_url: str) -> FullNodeClient:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return FullNodeClient(node_url=node_url, session=self._session)

    def _get_client(self) -> Optional[Any]:
        node_url = self.settings.rpc_endpoint
        if not node_url:
            return None
        if self._client is None:
            log.info("creating Starknet RPC client for %s", node_url)
            self._client = self._client_factory(node_url)
        return self._client

    @property
    def available(self) -> bool:
        return bool(self.settings.rpc_endpoint)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
        self._client = None

    async def _wait_for_acceptance(self, client: Any, tx_hash: int) -> None:
        await asyncio.wait_for(
            client.wait_for_tx(tx_hash),
            timeout=self.settings.deploy_timeout_s,
        )

    async def try_deploy(self, private_key_hex: str, variant: Optional[str] = None) -> DeployOutcome:
        client = self._get_client()
        if client is None:
            log.info("deploy skipped: missing STARKNET_RPC_URL")
            return DeployOutcome(error="missing endpoint")
        details = compute_smart_account_details(private_key_hex, self.settings, variant)
        if details is None:
            return DeployOutcome(error="cannot compute smart account details")

        log.info("deploy attempt address=%s", details.precalculated_address)
        try:
            result = await Account.deploy_account_v3(
                address=int(details.precalculated_address, 16),
                class_hash=int(details.class_hash, 16),
                salt=int(details.address_salt, 16),
                key_pair=KeyPair.from_private_key(parse_private_key(private_key_hex)),
                client=client,
                constructor_calldata=[int(item, 16) for item in details.constructor_calldata],
                auto_estimate=True,
            )
        except Exception as exc:  # underfunded accounts land here
            log.warning("deploy submission failed for %s: %s", details.precalculated_address, exc)
            return DeployOutcome(error=describe_error(exc))

        tx_hash = felt_to_hex(result.hash)
        log.info("deploy submitted address=%s tx=%s", details.precalculated_address, tx_hash)
        try:
            await self._wait_for_acceptance(client, result.hash)
        except asyncio.TimeoutError:
            log.warning("deploy confirmation timed out tx=%s", tx_hash)
            return DeployOutcome(tx_hash=tx_hash, error="deploy confirmation timed out")
        except Exception as exc:
            log.warning("deploy confirmation failed tx=%s: %s", tx_hash, exc)
            return DeployOutcome(tx_hash=tx_hash, error=describe_error(exc))
        log.info("deploy confirmed tx=%s", tx_hash)
        return DeployOutcome(address=details.precalculated_address, tx_hash=tx_hash)

    async def get_balance_wei(self, address_hex: str) -> Optional[int]:
        client = self._get_client()
        if client is None:
            log.warning("balance lookup skipped: missing STARKNET_RPC_URL")
            return None
        token = self.settings.token_contract_address
        if not token:
            log.warning("balance lookup skipped: STARKNET_ETH_TOKEN_ADDRESS not set")
            return None
        try:
            call = Call(
                to_addr=int(token, 16),
                selector=get_selector_from_name("balanceOf"),
                calldata=[int(address_hex, 16)],
            )
            response = await client.call_contract(call=call, block_number="latest")
        except Exception as exc:
            log.warning("balance lookup failed for %s: %s", address_hex, exc)
            return None
        balance = parse_balance_response(response)
        if balance is None:
            log.warning("unexpected balanceOf response for %s: %r", address_hex, response)
        return balance

    async def execute(self, private_key_hex: str, sender_hex: str, calls: Sequence[Call]) -> str:
        """Sign and submit ``calls`` from ``sender_hex``; returns the transaction hash.

        Unlike the deploy and balance paths this raises, so the raw action that
        owns the request decides what to tell the user. Failures after the
        transaction reached the node raise :class:`TransactionUnconfirmed`,
        which carries the hash.
        """

        client = self._get_client()
        if client is None:
            raise RuntimeError("missing endpoint")
        account = Account(
            address=int(sender_hex, 16),
            client=client,
            key_pair=KeyPair.from_private_key(parse_private_key(private_key_hex)),
            chain=self.chain_id,
        )
        response = await account.execute_v3(calls=list(calls), auto_estimate=True)
        tx_hash = felt_to_hex(response.transaction_hash)
        log.info("transaction submitted sender=%s tx=%s", sender_hex, tx_hash)
        try:
            await self._wait_for_acceptance(client, response.transaction_hash)
        except (TransactionRejectedError, TransactionRevertedError):
            log.warning("transaction rejected by the network tx=%s", tx_hash)
            raise
        except asyncio.TimeoutError as exc:
            raise TransactionUnconfirmed(tx_hash, "confirmation timed out") from exc
        except Exception as exc:
            raise TransactionUnconfirmed(tx_hash, describe_error(exc)) from exc
        return tx_hash
