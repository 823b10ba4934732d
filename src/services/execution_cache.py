from typing import Optional, Dict

# Models
from models.execution_data import ExecutionData


class ExecutionCache:
    """
    In-memory view of the running execution per conversation.

    Only an optimization: every write through the repository still checks
    the stored version, so a stale entry loses its write instead of
    corrupting state. Entries never survive a restart.
    """

    def __init__(self):
        self._entries: Dict[str, ExecutionData] = {}

    def get(self, conversation_id: str) -> Optional[ExecutionData]:
        execution = self._entries.get(conversation_id)
        if execution is None or execution.status != "running":
            return None
        return execution.model_copy(deep=True)

    def put(self, execution: ExecutionData) -> None:
        if execution.status != "running":
            self.invalidate(execution.conversation_id)
            return
        current = self._entries.get(execution.conversation_id)
        # Never replace a newer snapshot of the same execution with an older one
        if current is not None and current.id == execution.id and current.version > execution.version:
            return
        self._entries[execution.conversation_id] = execution.model_copy(deep=True)

    def invalidate(self, conversation_id: str, execution_id: Optional[str] = None) -> None:
        current = self._entries.get(conversation_id)
        if current is None:
            return
        if execution_id is None or current.id == execution_id:
            del self._entries[conversation_id]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
