"""
Сборка дерева предков ограниченной глубины от заданной лошади.

Корень – первое поколение, поэтому ``generations=1`` даёт только корень,
а ``generations=3`` на полной родословной – 1 + 2 + 4 = 7 узлов.
Ветви матери и отца запрашиваются параллельно; порядок ответов не важен,
результат сливается в множество по id.
"""
from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterator, List, Set

from .horse import HorseNode, NotFound, TransportError
from .lookup import AncestorTreeLookup
from .store import NodeStore

LOGGER = logging.getLogger(__name__)

DEFAULT_GENERATIONS = 1
MAX_GENERATIONS = 10


def clamp_generations(generations: int | None) -> int:
    if generations is None:
        return DEFAULT_GENERATIONS
    return min(int(generations), MAX_GENERATIONS)


@dataclass
class AncestorTree:
    """
    Результат одного обхода. Узлы живут в арене ``store``; дерево хранит
    только множества id.
    """

    root: HorseNode
    store: NodeStore
    generations: int
    all_ancestors: Set[int] = field(default_factory=set)
    # узлы, у которых родители есть, но не загружены из-за бюджета глубины
    frontier: Set[int] = field(default_factory=set)
    # id родителя → ошибка связи; эта ветвь брошена
    failed: Dict[int, TransportError] = field(default_factory=dict)
    missing: Set[int] = field(default_factory=set)
    _budget: Dict[int, int] = field(default_factory=dict, repr=False)

    def __contains__(self, horse_id: object) -> bool:
        return horse_id in self.all_ancestors

    def __len__(self) -> int:
        return len(self.all_ancestors)

    def __iter__(self) -> Iterator[HorseNode]:
        return (self.store.cached(i) for i in self.all_ancestors)

    @property
    def expanded_ancestors(self) -> FrozenSet[int]:
        """Начальное состояние раскрытия: раскрыто всё найденное."""
        return frozenset(self.all_ancestors)

    def node(self, horse_id: int) -> HorseNode:
        if horse_id not in self.all_ancestors:
            raise KeyError(horse_id)
        return self.store.cached(horse_id)

    def parents(self, node: HorseNode) -> List[HorseNode]:
        """Загруженные в это дерево родители узла (mother first)."""
        return [self.store.cached(p) for p in node.parent_ids() if p in self.all_ancestors]

    def has_parents_loaded(self, node: HorseNode) -> bool:
        return bool(self.parents(node))

    def _visit(self, node: HorseNode, budget: int) -> bool:
        """Регистрирует узел; True, если его родителей стоит (пере)обойти."""
        self.store.put(node)
        self.all_ancestors.add(node.id)
        if self._budget.get(node.id, -1) >= budget:
            return False
        self._budget[node.id] = budget
        self.frontier.discard(node.id)
        return True


class TreeAssembler:
    def __init__(self, store: NodeStore, tree_lookup: AncestorTreeLookup | None = None):
        self.store = store
        self.tree_lookup = tree_lookup

    async def assemble(self, root_id: int, generations: int | None = DEFAULT_GENERATIONS) -> AncestorTree:
        generations = clamp_generations(generations)
        LOGGER.info("🌳  Assembling %d generation(s) for horse %s …", max(generations, 1), root_id)

        if self.tree_lookup is not None and generations > 1:
            try:
                return await self._from_server(root_id, generations)
            except (TransportError, NotImplementedError) as exc:
                LOGGER.warning("Server-side tree unavailable (%s), falling back", exc)

        root = await self.store.get(root_id)
        tree = AncestorTree(root=root, store=self.store, generations=generations)
        tree._visit(root, generations - 1)
        await self._descend(tree, root, generations - 1)
        LOGGER.info("✅  %d node(s), %d frontier, %d failed branch(es)",
                    len(tree), len(tree.frontier), len(tree.failed))
        return tree

    async def _descend(self, tree: AncestorTree, node: HorseNode, budget: int) -> None:
        parent_ids = node.parent_ids()
        if not parent_ids:
            return
        if budget <= 0:
            tree.frontier.add(node.id)
            return
        await asyncio.gather(*(self._branch(tree, pid, budget) for pid in parent_ids))

    async def _branch(self, tree: AncestorTree, parent_id: int, budget: int) -> None:
        try:
            parent = await self.store.get(parent_id)
        except NotFound:
            tree.missing.add(parent_id)
            return
        except TransportError as exc:
            LOGGER.warning("Lookup of horse %s failed, branch abandoned: %s", parent_id, exc)
            tree.failed[parent_id] = exc
            return
        if tree._visit(parent, budget - 1):
            await self._descend(tree, parent, budget - 1)

    # ----------------------------------------------------------------------- #
    # Серверный вариант: дерево приходит целиком с вложенными родителями
    # ----------------------------------------------------------------------- #
    async def _from_server(self, root_id: int, generations: int) -> AncestorTree:
        root = await self.tree_lookup.lookup_ancestor_tree(root_id, generations)
        tree = AncestorTree(root=root, store=self.store, generations=generations)
        stack = [(root, generations - 1)]
        while stack:
            node, budget = stack.pop()
            if not tree._visit(node, budget):
                continue
            for slot in ("parent1", "parent2"):
                nested = getattr(node, slot)
                pid = node.parent_id(slot)
                if nested is not None and budget > 0:
                    stack.append((nested, budget - 1))
                elif pid is not None and budget <= 0:
                    tree.frontier.add(node.id)
                elif pid is not None:
                    tree.missing.add(pid)
        LOGGER.info("✅  %d node(s) from server-side tree", len(tree))
        return tree
