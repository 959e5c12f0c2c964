import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from eth_account import Account
from web3 import Web3

from .errors import InsufficientFundsError, RailError
from .identifiers import USDC, USDC_DECIMALS, from_base_units, to_base_units

log = logging.getLogger(__name__)

ARC_TESTNET_CHAIN_ID = 5042002
ARC_USDC_ADDRESS = "0x3600000000000000000000000000000000000000"
NATIVE_DECIMALS = 18
HISTORY_LOOKBACK_BLOCKS = 9999
GAS_BUFFER = 1.2

TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
]


@dataclass(frozen=True)
class TransferReceipt:
    hash: str
    fee: Decimal
    gas_used: int = 0
    block_number: Optional[int] = None
    success: bool = True


@dataclass(frozen=True)
class TransferRecord:
    hash: str
    sender: str
    recipient: str
    amount: Decimal
    block_number: int
    date: Optional[datetime] = None
    currency: str = USDC


@dataclass(frozen=True)
class NetworkInfo:
    chain_id: int
    latest_block: int
    gas_price: int
    rpc_url: str


def _address_topic(address: str) -> str:
    return "0x" + "0" * 24 + address[2:].lower()


def _topic_address(topic) -> str:
    raw = bytes(topic)[-20:]
    return Web3.to_checksum_address("0x" + raw.hex())


class ArcRail:
    """USDC payment rail on the ARC network.

    Every RPC call is blocking web3 code pushed to the default executor, so the
    bot's event loop stays responsive while a transfer waits for its receipt.
    """

    def __init__(
        self,
        *,
        rpc_url: str,
        chain_id: int = ARC_TESTNET_CHAIN_ID,
        token_address: str = ARC_USDC_ADDRESS,
        decimals: int = USDC_DECIMALS,
        receipt_timeout: float = 120.0,
    ) -> None:
        self.rpc_url = rpc_url
        self.chain_id = int(chain_id)
        self.decimals = decimals
        self.receipt_timeout = receipt_timeout
        self.client = Web3(Web3.HTTPProvider(rpc_url))
        self.token_address = Web3.to_checksum_address(token_address)
        self._token = self.client.eth.contract(address=self.token_address, abi=ERC20_ABI)

    @staticmethod
    def generate_wallet() -> Tuple[str, str]:
        account = Account.create()
        return account.address, Web3.to_hex(account.key)

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def get_balance(self, address: str) -> Decimal:
        def _get_balance() -> Decimal:
            units = self._token.functions.balanceOf(Web3.to_checksum_address(address)).call()
            return from_base_units(int(units), self.decimals)

        try:
            return await self._run(_get_balance)
        except Exception as exc:
            log.error("Failed to fetch USDC balance for %s: %s", address, exc)
            raise RailError(f"Failed to get balance: {exc}") from exc

    async def transfer(self, private_key: str, to_address: str, amount: Decimal) -> TransferReceipt:
        account = Account.from_key(private_key)
        available = await self.get_balance(account.address)
        if available < amount:
            log.info(
                "insufficient USDC for %s: need %s, have %s", account.address, amount, available
            )
            raise InsufficientFundsError(amount, available, USDC)
        client = self.client

        def _send():
            to_checksum = client.to_checksum_address(to_address)
            nonce = client.eth.get_transaction_count(account.address)
            tx = self._token.functions.transfer(
                to_checksum, to_base_units(amount, self.decimals)
            ).build_transaction(
                {"from": account.address, "nonce": nonce, "chainId": self.chain_id}
            )
            tx["gas"] = int(tx["gas"] * GAS_BUFFER)
            signed = account.sign_transaction(tx)
            raw = getattr(signed, "raw_transaction", None) or signed.rawTransaction
            tx_hash = client.eth.send_raw_transaction(raw)
            receipt = client.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )
            return Web3.to_hex(tx_hash), receipt

        try:
            tx_hash, receipt = await self._run(_send)
        except Exception as exc:
            log.error(
                "USDC transfer %s -> %s (%s) failed: %s", account.address, to_address, amount, exc
            )
            raise RailError(f"Payment failed: {exc}") from exc

        if int(receipt["status"]) != 1:
            log.error("USDC transfer reverted on chain (tx=%s)", tx_hash)
            raise RailError("Transaction failed on chain", tx_hash=tx_hash)
        gas_used = int(receipt["gasUsed"])
        gas_price = int(receipt.get("effectiveGasPrice") or 0)
        # gas on ARC is paid in native USDC with 18 decimals
        fee = Decimal(gas_used * gas_price).scaleb(-NATIVE_DECIMALS)
        log.info(
            "USDC sent %s -> %s amount=%s tx=%s gas=%s",
            account.address,
            to_address,
            amount,
            tx_hash,
            gas_used,
        )
        return TransferReceipt(
            hash=tx_hash,
            fee=fee,
            gas_used=gas_used,
            block_number=int(receipt.get("blockNumber") or 0) or None,
        )

    async def get_history(self, address: str, limit: int = 10) -> List[TransferRecord]:
        client = self.client

        def _history() -> List[TransferRecord]:
            latest = client.eth.block_number
            base = {
                "fromBlock": max(0, latest - HISTORY_LOOKBACK_BLOCKS),
                "toBlock": "latest",
                "address": self.token_address,
            }
            topic = _address_topic(address)
            sent = client.eth.get_logs({**base, "topics": [TRANSFER_TOPIC, topic]})
            received = client.eth.get_logs({**base, "topics": [TRANSFER_TOPIC, None, topic]})
            unique = {}
            for entry in list(sent) + list(received):
                key = (Web3.to_hex(entry["transactionHash"]), entry["logIndex"])
                unique[key] = entry
            ordered = sorted(
                unique.values(),
                key=lambda entry: (entry["blockNumber"], entry["logIndex"]),
                reverse=True,
            )[:limit]
            timestamps: Dict[int, int] = {}
            records: List[TransferRecord] = []
            for entry in ordered:
                block_number = int(entry["blockNumber"])
                if block_number not in timestamps:
                    timestamps[block_number] = int(client.eth.get_block(block_number)["timestamp"])
                records.append(
                    TransferRecord(
                        hash=Web3.to_hex(entry["transactionHash"]),
                        sender=_topic_address(entry["topics"][1]),
                        recipient=_topic_address(entry["topics"][2]),
                        amount=from_base_units(int.from_bytes(bytes(entry["data"]), "big"), self.decimals),
                        block_number=block_number,
                        date=datetime.fromtimestamp(timestamps[block_number], tz=timezone.utc),
                    )
                )
            return records

        try:
            return await self._run(_history)
        except Exception as exc:
            log.error("Failed to fetch transfer history for %s: %s", address, exc)
            raise RailError(f"Failed to get transaction history: {exc}") from exc

    async def network_info(self) -> NetworkInfo:
        client = self.client

        def _info() -> NetworkInfo:
            return NetworkInfo(
                chain_id=int(client.eth.chain_id),
                latest_block=int(client.eth.block_number),
                gas_price=int(client.eth.gas_price),
                rpc_url=self.rpc_url,
            )

        try:
            return await self._run(_info)
        except Exception as exc:
            log.error("Failed to fetch network info: %s", exc)
            raise RailError(f"Failed to get network info: {exc}") from exc
