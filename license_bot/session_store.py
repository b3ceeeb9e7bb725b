from __future__ import annotations

import asyncio
import json
from collections import defaultdict
from pathlib import Path

from .conversation import ConversationState, Idle, dump_state, load_state, order_id_of


class FileConversationStore:
    """One JSON file per chat holding what that chat is doing right now."""

    def __init__(self, sessions_dir: Path) -> None:
        self._sessions_dir = sessions_dir
        self._sessions_dir.mkdir(parents=True, exist_ok=True)
        self._locks: defaultdict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _path_for(self, chat_id: int) -> Path:
        return self._sessions_dir / f"{chat_id}.json"

    async def _read(self, chat_id: int) -> ConversationState:
        path = self._path_for(chat_id)
        if not path.exists():
            return Idle()
        try:
            data = await asyncio.to_thread(path.read_text, encoding="utf-8")
            parsed = json.loads(data)
        except (OSError, ValueError):
            return Idle()
        return load_state(parsed)

    async def _write(self, chat_id: int, state: ConversationState) -> None:
        path = self._path_for(chat_id)
        if isinstance(state, Idle):
            await asyncio.to_thread(path.unlink, missing_ok=True)
            return
        temp_path = path.with_suffix(".tmp")
        payload = json.dumps(dump_state(state), ensure_ascii=False, separators=(",", ":"))
        await asyncio.to_thread(temp_path.write_text, payload, encoding="utf-8")
        await asyncio.to_thread(temp_path.replace, path)

    async def get(self, chat_id: int) -> ConversationState:
        async with self._locks[chat_id]:
            return await self._read(chat_id)

    async def set(self, chat_id: int, state: ConversationState) -> None:
        async with self._locks[chat_id]:
            await self._write(chat_id, state)

    async def clear(self, chat_id: int) -> None:
        await self.set(chat_id, Idle())

    async def clear_if_order(self, chat_id: int, order_id: str) -> bool:
        """Clear the state only while it still points at ``order_id``."""
        async with self._locks[chat_id]:
            current = await self._read(chat_id)
            if order_id_of(current) != order_id:
                return False
            await self._write(chat_id, Idle())
            return True
