from dataclasses import dataclass
from typing import Optional

from savings_ai.core.logging import get_logger
from savings_ai.llm.schemas import ToolCall
from savings_ai.llm.stream import ToolCallDelta

log = get_logger("llm.accumulator")


@dataclass
class _Slot:
    id: str = ""
    name: str = ""
    arguments: str = ""


class ToolCallAccumulator:
    """Reassemble streamed tool-call fragments of one assistant turn.

    OpenAI-compatible providers send each call as many chunks sharing a
    positional ``index``: the first carries id + name, the rest carry pieces
    of the JSON arguments. Slots live in a list indexed by that position so
    the output order is the index order regardless of interleaving.
    """

    def __init__(self):
        self._slots: list[Optional[_Slot]] = []

    def feed(self, delta: ToolCallDelta) -> None:
        idx = delta.index
        if idx is None:
            # providers that omit the index continue the latest call
            idx = max(len(self._slots) - 1, 0)
        if not isinstance(idx, int) or isinstance(idx, bool) or idx < 0:
            log.warning(f"Ignoring tool-call fragment with invalid index {idx!r}")
            return

        while len(self._slots) <= idx:
            self._slots.append(None)
        slot = self._slots[idx]
        if slot is None:
            slot = self._slots[idx] = _Slot()

        if delta.id and not slot.id:
            slot.id = delta.id
        if delta.name:
            slot.name += delta.name
        if delta.arguments:
            slot.arguments += delta.arguments

    def has_calls(self) -> bool:
        return any(s is not None for s in self._slots)

    def finish(self) -> list[ToolCall]:
        calls: list[ToolCall] = []
        for idx, slot in enumerate(self._slots):
            if slot is None:
                continue
            if not slot.name:
                log.warning(f"Dropping tool call #{idx} without a name (args={slot.arguments[:80]!r})")
                continue
            calls.append(
                ToolCall(id=slot.id or f"call_{idx}", name=slot.name, arguments_text=slot.arguments)
            )
        return calls
