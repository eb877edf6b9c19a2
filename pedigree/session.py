"""
Сессия просмотра родословной.

Сессия владеет своим кэшем узлов, деревом и состоянием раскрытия; при
закрытии отменяет все незавершённые запросы. Плюс пакетная проверка всей
таблицы лошадей (``audit_pedigree``) для CLI.
"""
from __future__ import annotations
import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, List, Set, Tuple, TypeVar

import pandas as pd
from tqdm import tqdm

from .expansion import ExpansionState
from .horse import PARENT_SLOTS, HorseNode, Owner
from .kinship import (
    Notifier, assign_parent, filter_parent_candidates, is_chronologically_valid,
    warn_user,
)
from .lookup import AncestorTreeLookup, HorseLookup, OwnerLookup
from .store import NodeStore
from .tree import DEFAULT_GENERATIONS, AncestorTree, TreeAssembler

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
LOGGER = logging.getLogger(__name__)

SUGGESTION_LIMIT = 5

T = TypeVar("T")


class PedigreeSession:
    """
    Пример::

        async with PedigreeSession(lookup) as session:
            tree, state = await session.open_tree(42, generations=3)
            state.toggle(tree.root)
    """

    def __init__(
        self,
        lookup: HorseLookup,
        tree_lookup: AncestorTreeLookup | None = None,
        owner_lookup: OwnerLookup | None = None,
        notify: Notifier = warn_user,
    ):
        self.lookup = lookup
        self.owner_lookup = owner_lookup
        self.notify = notify
        self.store = NodeStore(lookup)
        self.assembler = TreeAssembler(self.store, tree_lookup)
        self.tree: AncestorTree | None = None
        self.expansion: ExpansionState | None = None
        self._tasks: Set[asyncio.Task] = set()
        self.closed = False

    async def __aenter__(self) -> "PedigreeSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _run(self, coro: Awaitable[T]) -> T:
        if self.closed:
            if asyncio.iscoroutine(coro):
                coro.close()
            raise RuntimeError("Pedigree session is closed")
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        try:
            return await task
        finally:
            self._tasks.discard(task)

    async def close(self) -> None:
        self.closed = True
        pending = [t for t in self._tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            LOGGER.debug("Cancelled %d in-flight lookup(s)", len(pending))
            await asyncio.gather(*pending, return_exceptions=True)
        self.store.clear()

    def refresh(self) -> None:
        """Сбрасывает кэш: следующий запрос получит свежий снимок данных."""
        self.store.clear()
        self.tree = None
        self.expansion = None

    async def open_tree(
        self, root_id: int, generations: int | None = DEFAULT_GENERATIONS
    ) -> Tuple[AncestorTree, ExpansionState]:
        self.tree = await self._run(self.assembler.assemble(root_id, generations))
        self.expansion = ExpansionState(self.tree, self.notify)
        return self.tree, self.expansion

    async def horse(self, horse_id: int) -> HorseNode:
        return await self._run(self.store.checkout(horse_id))

    async def owner_of(self, horse: HorseNode) -> Owner | None:
        if horse.owner_id is None or self.owner_lookup is None:
            return None
        return await self._run(self.owner_lookup.lookup_owner(horse.owner_id))

    async def suggest_parents(
        self,
        child: HorseNode,
        slot: str,
        name: str | None = None,
        limit: int = SUGGESTION_LIMIT,
    ) -> List[HorseNode]:
        """Подсказки для слота родителя: только кандидаты, прошедшие все проверки."""
        if not name:
            return []
        # bornBefore в поиске строгий, а ровесник допустим – сдвигаем на день
        born_before = None
        if child.date_of_birth is not None:
            born_before = child.date_of_birth + timedelta(days=1)
        candidates = await self._run(self.lookup.search_by_criteria(
            name=name, sex=PARENT_SLOTS[slot], born_before=born_before, limit=limit,
        ))
        return await self._run(filter_parent_candidates(child, slot, candidates, self.store))

    async def assign_parent(self, child: HorseNode, slot: str, candidate: HorseNode | None) -> bool:
        return await self._run(assign_parent(child, slot, candidate, self.store, self.notify))


# --------------------------------------------------------------------------- #
# Пакетная проверка сохранённой родословной
# --------------------------------------------------------------------------- #
def _find_cycles(parents: dict) -> Set[int]:
    """Id всех лошадей, лежащих на цикле (итеративный DFS с раскраской)."""
    WHITE, GREY, BLACK = 0, 1, 2
    color = {h: WHITE for h in parents}
    on_cycle: Set[int] = set()
    for start in parents:
        if color[start] != WHITE:
            continue
        path: List[int] = [start]
        iters = [iter(parents[start])]
        color[start] = GREY
        while iters:
            nxt = next(iters[-1], None)
            if nxt is None:
                color[path.pop()] = BLACK
                iters.pop()
                continue
            if nxt not in color:
                continue
            if color[nxt] == GREY:
                on_cycle.update(path[path.index(nxt):])
            elif color[nxt] == WHITE:
                color[nxt] = GREY
                path.append(nxt)
                iters.append(iter(parents[nxt]))
    return on_cycle


def audit_pedigree(horses: pd.DataFrame) -> pd.DataFrame:
    """
    Проверяет уже сохранённые данные (там нарушения допустимы при чтении)
    и возвращает таблицу (horse_id, parent_id, slot, issue).
    """
    LOGGER.info("🔍  Auditing %d horses …", len(horses))
    nodes = {
        n.id: n for n in (HorseNode.from_record(r) for r in horses.to_dict("records"))
        if n.id is not None
    }
    rows = []
    for node in tqdm(nodes.values(), desc="audit"):
        for slot, sex in PARENT_SLOTS.items():
            pid = node.parent_id(slot)
            if pid is None:
                continue
            parent = nodes.get(pid)
            if parent is None:
                rows.append((node.id, pid, slot, "dangling"))
                continue
            if parent.sex is not None and parent.sex != sex:
                rows.append((node.id, pid, slot, "sex"))
            if not is_chronologically_valid(node.date_of_birth, parent.date_of_birth):
                rows.append((node.id, pid, slot, "chronology"))

    parents = {h: [p for p in n.parent_ids() if p in nodes] for h, n in nodes.items()}
    for horse_id in sorted(_find_cycles(parents)):
        rows.append((horse_id, None, None, "cycle"))

    issues = pd.DataFrame(rows, columns=["horse_id", "parent_id", "slot", "issue"])
    LOGGER.info("✅  %d issue(s) found", len(issues))
    return issues
