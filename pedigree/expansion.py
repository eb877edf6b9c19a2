"""Какие узлы дерева сейчас раскрыты (показывают своих предков)."""
from __future__ import annotations
import logging
from typing import Iterator, Set, Tuple

from .horse import DepthExceeded, HorseNode
from .kinship import Notifier, warn_user
from .tree import AncestorTree

LOGGER = logging.getLogger(__name__)

NO_PARENTS_MESSAGE = "No parent and/or maximum depth reached"


class ExpansionState:
    def __init__(self, tree: AncestorTree, notify: Notifier = warn_user):
        self.tree = tree
        self.notify = notify
        self.expanded: Set[int] = set(tree.expanded_ancestors)

    def _key(self, node: HorseNode | int) -> int:
        key = node if isinstance(node, int) else node.id
        if key not in self.tree:
            raise KeyError(f"Horse {key} is not part of this tree")
        return key

    def is_expanded(self, node: HorseNode | int) -> bool:
        key = node if isinstance(node, int) else node.id
        return key in self.expanded

    def toggle(self, node: HorseNode | int) -> bool:
        key = self._key(node)
        if key in self.expanded:
            self.expanded.discard(key)
        else:
            self.expanded.add(key)
        LOGGER.debug("toggle(%s) -> expanded=%s", key, key in self.expanded)
        # переключение всё равно происходит, но пользователь должен знать,
        # что показывать нечего
        if not self.tree.has_parents_loaded(self.tree.node(key)):
            self.notify(DepthExceeded(NO_PARENTS_MESSAGE))
        return key in self.expanded

    def expand_all(self) -> None:
        self.expanded = set(self.tree.all_ancestors)

    def collapse_all(self) -> None:
        self.expanded.clear()

    def visible(self) -> Iterator[Tuple[int, HorseNode]]:
        """
        Пары (глубина, узел) в порядке обхода в глубину – то, что покажет
        дерево на экране. Предки свёрнутых узлов скрыты. Узел, встречающийся
        по нескольким линиям, показывается в каждой из них.
        """
        stack = [(0, self.tree.root, frozenset())]
        while stack:
            depth, node, path = stack.pop()
            yield depth, node
            if node.id not in self.expanded or node.id in path:
                continue
            path = path | {node.id}
            # parent1 первым
            for parent in reversed(self.tree.parents(node)):
                stack.append((depth + 1, parent, path))
