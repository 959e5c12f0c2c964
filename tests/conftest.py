from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from paybot.address_book import AddressBook
from paybot.keys import KeyCipher
from paybot.payment_requests import RequestService
from paybot.payments import PaymentFlow
from paybot.profiles import ProfileStore
from paybot.rail import NetworkInfo, TransferReceipt, TransferRecord
from paybot.replies import BotReply, ChatUser
from paybot.resolver import RecipientResolver
from paybot.wallet_bot import WalletBot

ALICE = "0x" + "a1" * 20
BOBBY = "0x" + "b0" * 20
CAROL = "0x" + "c4" * 20
STRANGER = "0x" + "5e" * 20

ALICE_ID = 1001
BOBBY_ID = 1002
CAROL_ID = 1003


class Clock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRail:
    """Records transfers instead of touching a chain."""

    def __init__(self):
        self.balances: Dict[str, Decimal] = {}
        self.transfers: List[tuple] = []
        self.history: List[TransferRecord] = []
        self.fail_with: Optional[Exception] = None
        self._wallets = 0

    def generate_wallet(self):
        self._wallets += 1
        return f"0x{0xdead0000 + self._wallets:040x}", f"0x{self._wallets:064x}"

    async def get_balance(self, address: str) -> Decimal:
        return self.balances.get(address.lower(), Decimal("0"))

    async def transfer(self, private_key: str, to_address: str, amount: Decimal) -> TransferReceipt:
        self.transfers.append((private_key, to_address, amount))
        if self.fail_with is not None:
            raise self.fail_with
        return TransferReceipt(
            hash=f"0x{len(self.transfers):064x}", fee=Decimal("0.0021"), gas_used=52000
        )

    async def get_history(self, address: str, limit: int = 10) -> List[TransferRecord]:
        return list(self.history)[:limit]

    async def network_info(self) -> NetworkInfo:
        return NetworkInfo(
            chain_id=5042002, latest_block=123456, gas_price=160000000000, rpc_url="http://rail"
        )


class RecordingInteraction:
    def __init__(self):
        self.events: List[tuple] = []

    async def answer(self, text=None, *, alert=False):
        self.events.append(("answer", text, alert))

    async def edit(self, reply: BotReply):
        self.events.append(("edit", reply))

    async def reply(self, reply: BotReply):
        self.events.append(("reply", reply))

    @property
    def edits(self) -> List[BotReply]:
        return [event[1] for event in self.events if event[0] == "edit"]

    @property
    def answers(self) -> List[tuple]:
        return [event[1:] for event in self.events if event[0] == "answer"]


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def cipher():
    return KeyCipher(KeyCipher.generate_key())


@pytest.fixture
def profiles(tmp_path, cipher):
    store = ProfileStore(str(tmp_path / "paybot.db"), cipher=cipher)
    yield store
    store.close()


@pytest.fixture
def rail():
    return FakeRail()


@pytest.fixture
def register(profiles):
    def _register(user_id: int, username: Optional[str], address: str):
        return profiles.create_user(user_id, username, address, f"key-{user_id}")

    return _register


@pytest.fixture
def users(register):
    return {
        "alice": register(ALICE_ID, "alice", ALICE),
        "bobby": register(BOBBY_ID, "bobby", BOBBY),
        "carol": register(CAROL_ID, "carol", CAROL),
    }


@pytest.fixture
def address_book(profiles):
    return AddressBook(profiles)


@pytest.fixture
def resolver(profiles, address_book):
    return RecipientResolver(profiles, address_book)


@pytest.fixture
def payments(profiles, rail, clock):
    return PaymentFlow(profiles, rail, clock=clock, ticket_ttl=600, session_ttl=600)


@pytest.fixture
def requests(profiles, clock):
    return RequestService(profiles, clock=clock)


@pytest.fixture
def wallet_bot(profiles, rail, address_book, resolver, payments, requests, clock):
    return WalletBot(
        profiles=profiles,
        rail=rail,
        address_book=address_book,
        resolver=resolver,
        payments=payments,
        requests=requests,
        clock=clock,
    )


@pytest.fixture
def interaction():
    return RecordingInteraction()


def chat_user(user_id: int, username: Optional[str] = None) -> ChatUser:
    return ChatUser(user_id=user_id, username=username, chat_id=user_id)
