"""Message stores keyed by message id.

Conversations are never stored as aggregates: every message is saved on its
own and points at its parent, so a thread is recovered by walking parent ids.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import uuid
from collections import OrderedDict
from pathlib import Path
from typing import Protocol
from urllib.parse import quote

from .types import ChatMessage

LOGGER = logging.getLogger(__name__)
DEFAULT_MAX_SIZE = 10_000


class MessageStore(Protocol):
    """Asynchronous key/value repository of :class:`ChatMessage` records."""

    async def get(self, message_id: str) -> ChatMessage | None:
        ...

    async def put(self, message: ChatMessage) -> None:
        ...


class LRUMessageStore:
    """In-memory store that evicts the least recently used message past ``max_size``.

    Messages are copied on the way in and out, so editing a returned message
    never rewrites stored history.
    """

    def __init__(self, *, max_size: int = DEFAULT_MAX_SIZE) -> None:
        self._max_size = max(1, int(max_size))
        self._entries: OrderedDict[str, ChatMessage] = OrderedDict()

    async def get(self, message_id: str) -> ChatMessage | None:
        message = self._entries.get(message_id)
        if message is None:
            return None
        self._entries.move_to_end(message_id)
        return copy.deepcopy(message)

    async def put(self, message: ChatMessage) -> None:
        self._entries[message.id] = copy.deepcopy(message)
        self._entries.move_to_end(message.id)
        while len(self._entries) > self._max_size:
            evicted, _ = self._entries.popitem(last=False)
            LOGGER.debug("Evicted message %s from LRU store", evicted)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._entries


class JsonFileMessageStore:
    """Directory of ``<message id>.json`` files, written atomically."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    async def get(self, message_id: str) -> ChatMessage | None:
        return await asyncio.to_thread(self._read, message_id)

    async def put(self, message: ChatMessage) -> None:
        await asyncio.to_thread(self._write, message)

    def _path_for(self, message_id: str) -> Path:
        # percent-encoding is reversible, so distinct ids never share a file
        return self._root / f"{quote(message_id, safe='')}.json"

    def _read(self, message_id: str) -> ChatMessage | None:
        path = self._path_for(message_id)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        message = ChatMessage.from_dict(json.loads(text))
        if message.id != message_id:
            LOGGER.warning("Message file %s holds id %s, expected %s", path, message.id, message_id)
            return None
        return message

    def _write(self, message: ChatMessage) -> None:
        path = self._path_for(message.id)
        body = json.dumps(message.to_dict(), ensure_ascii=False, indent=2)
        tmp_path = path.parent / f"{path.name}.{uuid.uuid4().hex}.tmp"
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(path)
        LOGGER.debug("Wrote message %s to %s", message.id, path)


__all__ = ["MessageStore", "LRUMessageStore", "JsonFileMessageStore", "DEFAULT_MAX_SIZE"]
