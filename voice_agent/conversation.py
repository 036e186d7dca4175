"""
Conversation transcript shared by the orchestrator and the responder.

Turns are appended in conversation order and never edited. The SYSTEM turn
is seeded at construction and is the only SYSTEM turn a transcript ever has.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Iterator, Optional

if TYPE_CHECKING:
    from .tools import ToolCallIntent


class ChatRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class Turn:
    """One role-tagged contribution to the conversation."""

    role: ChatRole
    content: str
    # Set on TOOL turns: the call this turn is the result of
    tool_call: Optional["ToolCallIntent"] = None
    is_error: bool = False


class ConversationState:
    """Append-only transcript for one session."""

    def __init__(self, system_prompt: str):
        self._turns: list[Turn] = [Turn(role=ChatRole.SYSTEM, content=system_prompt)]

    @property
    def turns(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    @property
    def system_prompt(self) -> str:
        return self._turns[0].content

    def last(self) -> Turn:
        return self._turns[-1]

    def append(
        self,
        role: ChatRole,
        content: str,
        *,
        tool_call: Optional["ToolCallIntent"] = None,
        is_error: bool = False,
    ) -> Turn:
        if role == ChatRole.SYSTEM:
            raise ValueError("the system turn is seeded at construction and cannot be appended")
        if role == ChatRole.TOOL and tool_call is None:
            raise ValueError("tool turns must reference the tool call they answer")
        turn = Turn(role=role, content=content, tool_call=tool_call, is_error=is_error)
        self._turns.append(turn)
        return turn

    def append_user(self, text: str) -> Turn:
        return self.append(ChatRole.USER, text)

    def append_assistant(self, text: str) -> Turn:
        return self.append(ChatRole.ASSISTANT, text)

    def append_tool(self, tool_call: "ToolCallIntent", output: str, *, is_error: bool = False) -> Turn:
        return self.append(ChatRole.TOOL, output, tool_call=tool_call, is_error=is_error)

    def roles(self) -> list[ChatRole]:
        return [turn.role for turn in self._turns]

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(tuple(self._turns))
