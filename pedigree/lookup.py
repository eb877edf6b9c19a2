"""
Внешние сервисы, от которых зависит ядро, и их реализация поверх pandas.

Ядро получает сервисы явно (никаких глобальных синглтонов), поэтому в тестах
их легко подменить фейками.
"""
from __future__ import annotations
import logging
from datetime import date
from pathlib import Path
from typing import List, Protocol, Sequence

import pandas as pd

from .horse import HorseNode, NotFound, Owner, Sex

LOGGER = logging.getLogger(__name__)

HORSE_COLUMNS = [
    "id", "name", "description", "date_of_birth", "sex",
    "owner_id", "parent1_id", "parent2_id",
]
ID_COLUMNS = ["id", "owner_id", "parent1_id", "parent2_id"]


class HorseLookup(Protocol):
    async def lookup_by_id(self, horse_id: int) -> HorseNode: ...

    async def search_by_criteria(
        self,
        name: str | None = None,
        sex: Sex | None = None,
        born_before: date | None = None,
        limit: int | None = None,
    ) -> Sequence[HorseNode]: ...


class AncestorTreeLookup(Protocol):
    async def lookup_ancestor_tree(self, root_id: int, generations: int) -> HorseNode: ...


class OwnerLookup(Protocol):
    async def lookup_owner(self, owner_id: int) -> Owner: ...


def _read_horses(path: Path | str) -> pd.DataFrame:
    horses = pd.read_csv(path, dtype={c: "Int64" for c in ID_COLUMNS})
    for col in HORSE_COLUMNS:
        if col not in horses.columns:
            horses[col] = pd.NA
    horses["date_of_birth"] = pd.to_datetime(horses["date_of_birth"]).dt.date
    return horses[HORSE_COLUMNS]


class FrameHorseLookup:
    """
    Таблица лошадей в памяти (тот же формат, что и ``horses.csv``).

    Реализует все три протокола: поиск по id, поиск по критериям,
    дерево предков «на стороне сервера» и поиск владельца.
    """

    def __init__(self, horses: pd.DataFrame, owners: pd.DataFrame | None = None):
        self.horses = horses.set_index("id", drop=False).rename_axis(None)
        if owners is None:
            owners = pd.DataFrame(columns=["id", "first_name", "last_name", "email"])
        self.owners = owners.set_index("id", drop=False).rename_axis(None)

    @classmethod
    def from_data_dir(cls, data_dir: str) -> "FrameHorseLookup":
        horses = _read_horses(f"{data_dir}/horses.csv")
        owners_path = Path(data_dir) / "owners.csv"
        owners = pd.read_csv(owners_path) if owners_path.exists() else None
        LOGGER.info("📦  Loaded %d horses from %s", len(horses), data_dir)
        return cls(horses, owners)

    def _node(self, horse_id: int) -> HorseNode:
        try:
            row = self.horses.loc[horse_id]
        except KeyError as exc:
            raise NotFound(f"No horse with ID {horse_id} found") from exc
        if isinstance(row, pd.DataFrame):
            row = row.iloc[0]
        return HorseNode.from_record(row.to_dict())

    async def lookup_by_id(self, horse_id: int) -> HorseNode:
        return self._node(horse_id)

    async def search_by_criteria(
        self,
        name: str | None = None,
        sex: Sex | None = None,
        born_before: date | None = None,
        limit: int | None = None,
        owner_name: str | None = None,
    ) -> List[HorseNode]:
        df = self.horses
        if name:
            df = df[df["name"].str.contains(name.strip(), case=False, regex=False, na=False)]
        if sex is not None:
            df = df[df["sex"].str.upper() == Sex.parse(sex).value]
        if born_before is not None:
            df = df[df["date_of_birth"].map(lambda d: not pd.isna(d) and d < born_before)]
        if owner_name:
            owners = self.owners
            full = owners["first_name"].str.cat(owners["last_name"], sep=" ")
            owner_ids = owners.loc[full.str.contains(owner_name.strip(), case=False, na=False), "id"]
            df = df[df["owner_id"].isin(list(owner_ids))]
        if limit is not None:
            df = df.head(limit)
        return [HorseNode.from_record(rec) for rec in df.to_dict("records")]

    async def lookup_ancestor_tree(self, root_id: int, generations: int) -> HorseNode:
        root = self._node(root_id)
        self._attach_parents(root, generations - 1)
        return root

    def _attach_parents(self, node: HorseNode, budget: int) -> None:
        if budget <= 0:
            return
        for slot in ("parent1", "parent2"):
            pid = node.parent_id(slot)
            if pid is None:
                continue
            try:
                parent = self._node(pid)
            except NotFound:
                continue
            setattr(node, slot, parent)
            self._attach_parents(parent, budget - 1)

    async def lookup_owner(self, owner_id: int) -> Owner:
        try:
            row = self.owners.loc[owner_id]
        except KeyError as exc:
            raise NotFound(f"No owner with ID {owner_id} found") from exc
        email = row.get("email")
        return Owner(
            id=int(row["id"]),
            first_name=row["first_name"],
            last_name=row["last_name"],
            email=None if pd.isna(email) else email,
        )
