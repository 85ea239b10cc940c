# conversation.py
from dataclasses import dataclass
from typing import Iterable, List, Tuple

from schemas import ChatMessage, ToolInvocation, ToolResult

# roles a caller may replay from its own history; system/tool turns are ours
HISTORY_ROLES = ("user", "assistant")


@dataclass(frozen=True)
class Turn:
    role: str
    content: str
    tool_calls: Tuple[ToolInvocation, ...] = ()
    tool_call_id: str | None = None
    name: str | None = None

    def to_message(self) -> dict:
        message = {"role": self.role, "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = [call.to_message() for call in self.tool_calls]
        if self.tool_call_id is not None:
            message["tool_call_id"] = self.tool_call_id
            message["name"] = self.name
        return message


class Conversation:
    """
    the request-scoped list of turns sent to the model.

    invariants:
    - exactly one system turn, first, fixed at construction
    - every tool turn answers a call of the latest assistant turn,
      and each call is answered at most once
    """

    def __init__(self, system_prompt: str, history: Iterable[ChatMessage] = ()):
        self._system = Turn("system", system_prompt)
        self._turns: List[Turn] = []
        self._pending: dict[str, ToolInvocation] = {}
        for message in history:
            if message.role in HISTORY_ROLES:
                self._turns.append(Turn(message.role, message.content or ""))

    @property
    def turns(self) -> Tuple[Turn, ...]:
        return (self._system, *self._turns)

    def add_user(self, content: str):
        self._turns.append(Turn("user", content))

    def add_assistant(self, content: str | None, tool_calls: Iterable[ToolInvocation] = ()):
        calls = tuple(tool_calls)
        self._turns.append(Turn("assistant", content or "", tool_calls=calls))
        self._pending = {call.id: call for call in calls}

    def add_tool_result(self, invocation: ToolInvocation, result: ToolResult):
        if self._pending.pop(invocation.id, None) is None:
            raise ValueError(f"no pending tool call with id {invocation.id!r}")
        self._turns.append(
            Turn(
                "tool",
                result.to_text(),
                tool_call_id=invocation.id,
                name=invocation.name,
            )
        )

    def to_messages(self) -> List[dict]:
        return [turn.to_message() for turn in self.turns]
