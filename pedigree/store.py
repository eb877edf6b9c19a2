"""
Кэш узлов на одну сессию просмотра: арена (список узлов) + индекс id → слот.

Повторный запрос того же id (общий предок по линии матери и отца,
инбридинг) не уходит в сеть второй раз; параллельные запросы одного id
делят один и тот же запрос.
"""
from __future__ import annotations
import asyncio
import logging
from dataclasses import replace
from typing import Dict, Iterator, List, Set

from .horse import HorseNode, NotFound
from .lookup import HorseLookup

LOGGER = logging.getLogger(__name__)


class NodeStore:
    def __init__(self, lookup: HorseLookup):
        self.lookup = lookup
        self._nodes: List[HorseNode] = []
        self._index: Dict[int, int] = {}
        self._missing: Set[int] = set()
        self._pending: Dict[int, asyncio.Future] = {}
        self.fetches = 0

    def __contains__(self, horse_id: object) -> bool:
        return horse_id in self._index

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[HorseNode]:
        return iter(self._nodes)

    def put(self, node: HorseNode) -> int:
        """Кладёт узел в арену; свежая копия уже известного id занимает тот же слот."""
        if node.id is None:
            raise ValueError("Only persisted horses (with an id) can be cached")
        slot = self._index.get(node.id)
        if slot is None:
            slot = len(self._nodes)
            self._nodes.append(node)
            self._index[node.id] = slot
        else:
            self._nodes[slot] = node
        self._missing.discard(node.id)
        return slot

    def slot(self, horse_id: int) -> int:
        return self._index[horse_id]

    def node(self, slot: int) -> HorseNode:
        return self._nodes[slot]

    def cached(self, horse_id: int) -> HorseNode | None:
        slot = self._index.get(horse_id)
        return None if slot is None else self._nodes[slot]

    async def checkout(self, horse_id: int) -> HorseNode:
        """Копия узла для редактирования; арена хранит только снимки от сервиса."""
        return replace(await self.get(horse_id))

    def owns(self, node: HorseNode) -> bool:
        return node.id is not None and self.cached(node.id) is node

    async def get(self, horse_id: int) -> HorseNode:
        node = self.cached(horse_id)
        if node is not None:
            return node
        if horse_id in self._missing:
            raise NotFound(f"No horse with ID {horse_id} found")

        pending = self._pending.get(horse_id)
        if pending is None:
            pending = asyncio.ensure_future(self._fetch(horse_id))
            self._pending[horse_id] = pending
            pending.add_done_callback(lambda _f: self._pending.pop(horse_id, None))
        # shield: отмена одного ожидающего не должна отменять общий запрос
        return await asyncio.shield(pending)

    async def _fetch(self, horse_id: int) -> HorseNode:
        self.fetches += 1
        LOGGER.debug("lookup_by_id(%s)", horse_id)
        try:
            node = await self.lookup.lookup_by_id(horse_id)
        except NotFound:
            LOGGER.info("Horse %s not found, chain ends here", horse_id)
            self._missing.add(horse_id)
            raise
        self.put(node)
        return node

    def clear(self) -> None:
        for pending in self._pending.values():
            pending.cancel()
        self._pending.clear()
        self._nodes.clear()
        self._index.clear()
        self._missing.clear()
