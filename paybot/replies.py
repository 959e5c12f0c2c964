from dataclasses import dataclass, field
from typing import List, Optional, Protocol


@dataclass
class Button:
    text: str
    payload: Optional[str] = None
    url: Optional[str] = None


@dataclass
class BotAttachment:
    filename: str
    content: bytes
    mime_type: Optional[str] = None
    description: Optional[str] = None


@dataclass
class BotReply:
    text: str = ""
    buttons: List[List[Button]] = field(default_factory=list)
    attachments: List[BotAttachment] = field(default_factory=list)


@dataclass
class Notification:
    user_id: int
    message: str
    buttons: List[List[Button]] = field(default_factory=list)


@dataclass(frozen=True)
class ChatUser:
    user_id: int
    username: Optional[str] = None
    chat_id: Optional[int] = None
    full_name: Optional[str] = None


class Interaction(Protocol):
    """The message a button was pressed on.

    ``answer`` acknowledges the press (Telegram clears the spinner), ``edit``
    replaces the message in place and drops its buttons unless new ones are
    given, ``reply`` posts a new message to the same chat.
    """

    async def answer(self, text: Optional[str] = None, *, alert: bool = False) -> None:
        ...

    async def edit(self, reply: BotReply) -> None:
        ...

    async def reply(self, reply: BotReply) -> None:
        ...
