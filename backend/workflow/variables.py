"""Per-run variable store.

Each ExecutionRun owns one VariableStore. Steps write their results into it
under a name; later steps read them back through templates. Writes are
last-write-wins and remember which step produced them.

for_each iterations get a child scope from `loop_scope()`. The child binds
`currentItem` / `currentIndex`, reads fall through to the enclosing scope,
and everything written into the child disappears with it.
"""

from dataclasses import dataclass
from typing import Any, Iterator, Optional

from core.constants import CURRENT_INDEX, CURRENT_ITEM


@dataclass
class VariableEntry:
    """A stored value and the 1-based position of the step that wrote it."""
    value: Any
    step_index: Optional[int] = None


class VariableStore:
    """Name → value mapping with optional parent scope."""

    def __init__(
        self,
        initial: Optional[dict[str, Any]] = None,
        parent: Optional["VariableStore"] = None,
    ):
        self._entries: dict[str, VariableEntry] = {}
        self._parent = parent
        for name, value in (initial or {}).items():
            self._entries[name] = VariableEntry(value=value)

    # ─── Reads ────────────────────────────────────────────────

    def __contains__(self, name: str) -> bool:
        if name in self._entries:
            return True
        return self._parent is not None and name in self._parent

    def __getitem__(self, name: str) -> Any:
        return self.entry(name).value

    def get(self, name: str, default: Any = None) -> Any:
        if name not in self:
            return default
        return self[name]

    def entry(self, name: str) -> VariableEntry:
        """Return the visible entry for `name`, innermost scope first.

        Raises:
            KeyError: If no scope defines the name
        """
        if name in self._entries:
            return self._entries[name]
        if self._parent is not None:
            return self._parent.entry(name)
        raise KeyError(name)

    def written_by(self, name: str) -> Optional[int]:
        return self.entry(name).step_index

    def names(self) -> Iterator[str]:
        seen = set()
        scope: Optional[VariableStore] = self
        while scope is not None:
            for name in scope._entries:
                if name not in seen:
                    seen.add(name)
                    yield name
            scope = scope._parent

    def snapshot(self) -> dict[str, Any]:
        """Flatten all visible variables into a plain dict."""
        merged = self._parent.snapshot() if self._parent is not None else {}
        merged.update({name: e.value for name, e in self._entries.items()})
        return merged

    # ─── Writes ───────────────────────────────────────────────

    def set(self, name: str, value: Any, step_index: Optional[int] = None) -> None:
        """Bind `name` in this scope. Never touches the parent."""
        if not name:
            raise ValueError("Variable name must be a non-empty string")
        self._entries[name] = VariableEntry(value=value, step_index=step_index)

    # ─── Scoping ──────────────────────────────────────────────

    @property
    def parent(self) -> Optional["VariableStore"]:
        return self._parent

    @property
    def depth(self) -> int:
        return 0 if self._parent is None else self._parent.depth + 1

    def loop_scope(self, item: Any, index: int) -> "VariableStore":
        """Create the scope for one for_each iteration."""
        scope = VariableStore(parent=self)
        scope.set(CURRENT_ITEM, item)
        scope.set(CURRENT_INDEX, index)
        return scope

    def __repr__(self) -> str:
        return f"<VariableStore depth={self.depth} names={sorted(self.names())}>"
