import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from openai import AsyncOpenAI

log = logging.getLogger(__name__)

TOOL_CALL = "tool_call"
CHAT_RESPONSE = "chat_response"

MAKE_PAYMENT = "make_payment"
REQUEST_PAYMENT = "request_payment"
TRANSACTION_HISTORY = "get_transaction_history"

DEFAULT_PROMPT_PATH = Path(__file__).with_name("intent_prompt.yaml")

DEFAULT_HELP = (
    "I'm not sure how to help with that. You can ask me to:\n"
    "- send 10 to bob (or an @username or 0x address)\n"
    "- request 5 from @alice\n"
    "- show me my history"
)

_RECIPIENT = r"(0x[a-fA-F0-9]{40}|@?[A-Za-z0-9_-]+)"
_AMOUNT = r"(\d+(?:\.\d+)?)"

PAYMENT_PATTERNS = (
    re.compile(rf"(?:send|pay|transfer)\s+{_AMOUNT}(?:\s+usdc)?\s+to\s+{_RECIPIENT}", re.I),
    re.compile(rf"(?:send|pay|transfer)\s+{_AMOUNT}(?:\s+usdc)?\s+(?!(?:usdc|to)\b){_RECIPIENT}", re.I),
)
REQUEST_PATTERN = re.compile(
    rf"(?:request|ask\s+for)\s+{_AMOUNT}(?:\s+usdc)?\s+from\s+{_RECIPIENT}", re.I
)
HISTORY_PATTERN = re.compile(
    r"(?:show|get|my)\s+(?:me\s+)?(?:my\s+)?(?:transaction\s+)?(?:history|transactions|past payments)",
    re.I,
)

TOOLS = [
    {
        "type": "function",
        "function": {
            "name": TRANSACTION_HISTORY,
            "description": "Get the current user's transaction history.",
            "parameters": {"type": "object", "properties": {}},
        },
    },
    {
        "type": "function",
        "function": {
            "name": MAKE_PAYMENT,
            "description": (
                "Initiate a USDC payment to an address, Telegram username or friend alias."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "recipient": {
                        "type": "string",
                        "description": "EVM address (0x...), @username, user ID or friend alias",
                    },
                    "amount": {
                        "type": "string",
                        "description": "Amount of USDC as a decimal string, e.g. 2.5",
                    },
                },
                "required": ["recipient", "amount"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": REQUEST_PAYMENT,
            "description": "Request a USDC payment from a Telegram username or friend alias.",
            "parameters": {
                "type": "object",
                "properties": {
                    "address": {
                        "type": "string",
                        "description": "@username, user ID or friend alias of the payer",
                    },
                    "amount": {
                        "type": "string",
                        "description": "Amount of USDC as a decimal string",
                    },
                },
                "required": ["address", "amount"],
            },
        },
    },
]

TOOL_NAMES = {tool["function"]["name"] for tool in TOOLS}


@dataclass
class Intent:
    kind: str
    tool: Optional[str] = None
    arguments: Dict[str, Any] = field(default_factory=dict)
    text: str = ""


class RegexIntentResolver:
    """Keyword guesser used when no model is configured or the model call fails."""

    def __init__(self, help_text: str = DEFAULT_HELP) -> None:
        self.help_text = help_text

    def parse(self, text: str) -> Intent:
        text = text or ""
        match = REQUEST_PATTERN.search(text)
        if match:
            return Intent(
                kind=TOOL_CALL,
                tool=REQUEST_PAYMENT,
                arguments={"amount": match.group(1), "address": match.group(2)},
            )
        for pattern in PAYMENT_PATTERNS:
            match = pattern.search(text)
            if match:
                return Intent(
                    kind=TOOL_CALL,
                    tool=MAKE_PAYMENT,
                    arguments={"amount": match.group(1), "recipient": match.group(2)},
                )
        if HISTORY_PATTERN.search(text):
            return Intent(kind=TOOL_CALL, tool=TRANSACTION_HISTORY)
        return Intent(kind=CHAT_RESPONSE, text=self.help_text)

    async def resolve(self, text: str, user_id: Optional[int] = None) -> Intent:
        return self.parse(text)


class IntentPrompt:
    """Model instructions read from YAML, reloaded when the file changes."""

    def __init__(self, path: Path = DEFAULT_PROMPT_PATH) -> None:
        self.path = path
        self._mtime: Optional[float] = None
        self._instructions = ""
        self._fallback = DEFAULT_HELP
        self._load()

    def _read_lines(self, raw: Any) -> List[str]:
        if isinstance(raw, (list, tuple)):
            return [str(item).strip() for item in raw if str(item or "").strip()]
        if isinstance(raw, str) and raw.strip():
            return [raw.strip()]
        return []

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            log.warning("failed to read intent prompt %s: %s", self.path, exc)
            return
        if not isinstance(data, dict):
            return
        instructions = self._read_lines(data.get("instructions"))
        if instructions:
            self._instructions = " ".join(instructions)
        fallback = self._read_lines(data.get("fallback"))
        if fallback:
            self._fallback = "\n".join(fallback)

    def _refresh(self) -> None:
        try:
            mtime = self.path.stat().st_mtime if self.path.exists() else None
        except OSError:
            mtime = None
        if mtime != self._mtime:
            self._mtime = mtime
            self._load()

    @property
    def instructions(self) -> str:
        self._refresh()
        return self._instructions

    @property
    def fallback(self) -> str:
        self._refresh()
        return self._fallback


class OpenAIIntentResolver:
    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        model: str = "gpt-4.1-mini",
        prompt: Optional[IntentPrompt] = None,
        client: Optional[AsyncOpenAI] = None,
        fallback: Optional[RegexIntentResolver] = None,
    ) -> None:
        self.client = client if client is not None else AsyncOpenAI(api_key=api_key)
        self.model = model
        self.prompt = prompt or IntentPrompt()
        self.fallback = fallback or RegexIntentResolver(self.prompt.fallback)

    async def resolve(self, text: str, user_id: Optional[int] = None) -> Intent:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": self.prompt.instructions},
                    {"role": "user", "content": text},
                ],
                tools=TOOLS,
                tool_choice="auto",
                temperature=0,
            )
        except Exception as exc:
            log.warning("intent model call failed for %s, using keyword fallback: %s", user_id, exc)
            return self.fallback.parse(text)

        message = response.choices[0].message
        tool_calls = getattr(message, "tool_calls", None) or []
        if tool_calls:
            call = tool_calls[0]
            name = call.function.name
            try:
                arguments = json.loads(call.function.arguments or "{}")
            except json.JSONDecodeError:
                log.warning("intent model returned malformed arguments for %s", name)
                return self.fallback.parse(text)
            if name not in TOOL_NAMES or not isinstance(arguments, dict):
                log.warning("intent model picked unknown tool %r", name)
                return self.fallback.parse(text)
            return Intent(kind=TOOL_CALL, tool=name, arguments=arguments)
        content = (message.content or "").strip()
        return Intent(kind=CHAT_RESPONSE, text=content or self.prompt.fallback)
