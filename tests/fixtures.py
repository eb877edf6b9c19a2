"""Мини‑родословные и фейковые сервисы поиска для юнит‑тестов."""
import asyncio
from collections import Counter
from dataclasses import replace
from datetime import date

import pandas as pd

from pedigree.horse import HorseNode, NotFound, Sex, TransportError


class FakeLookup:
    """Словарь id → HorseNode; каждый ответ – свежая копия, как из сети."""

    def __init__(self, horses, broken=(), delay=0.0):
        self.horses = {h.id: h for h in horses}
        self.broken = set(broken)
        self.delay = delay
        self.calls = Counter()

    async def lookup_by_id(self, horse_id):
        self.calls[horse_id] += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if horse_id in self.broken:
            raise TransportError(f"connection reset while fetching {horse_id}")
        if horse_id not in self.horses:
            raise NotFound(f"No horse with ID {horse_id} found")
        return replace(self.horses[horse_id])

    async def search_by_criteria(self, name=None, sex=None, born_before=None, limit=None):
        found = [
            replace(h) for h in self.horses.values()
            if (not name or name.lower() in h.name.lower())
            and (sex is None or h.sex == sex)
            and (born_before is None or h.date_of_birth < born_before)
        ]
        return found[:limit] if limit is not None else found


def horse(horse_id, dam=None, sire=None, born=date(2010, 1, 1), sex=Sex.FEMALE, name=None):
    return HorseNode(
        id=horse_id,
        name=name or f"H{horse_id}",
        date_of_birth=born,
        sex=sex,
        parent1_id=dam,
        parent2_id=sire,
    )


def complete_pedigree(generations):
    """
    Полная бинарная родословная в нумерации кучи: у узла i мать 2i, отец 2i+1.
    Корень – 1, всего 2**generations - 1 лошадей.
    """
    n = 2 ** generations - 1
    horses = []
    for i in range(1, n + 1):
        depth = i.bit_length() - 1
        dam, sire = 2 * i, 2 * i + 1
        horses.append(horse(
            i,
            dam=dam if dam <= n else None,
            sire=sire if sire <= n else None,
            born=date(2020 - 5 * depth, 1, 1),
            sex=Sex.FEMALE if i % 2 == 0 or i == 1 else Sex.MALE,
        ))
    return horses


def cycle(length, start=100):
    """Испорченные данные: цепочка start → start+1 → … → start, длины ``length``."""
    ids = list(range(start, start + length))
    return [horse(h, dam=ids[(k + 1) % length]) for k, h in enumerate(ids)]


# та же маленькая родословная в виде таблицы, как в horses.csv
horses_frame = pd.DataFrame(
    [
        {"id": 1, "name": "Wendy", "date_of_birth": date(2005, 3, 1), "sex": "FEMALE",
         "owner_id": 1, "parent1_id": None, "parent2_id": None, "description": None},
        {"id": 2, "name": "Hugo", "date_of_birth": date(2004, 6, 1), "sex": "MALE",
         "owner_id": None, "parent1_id": None, "parent2_id": None, "description": None},
        {"id": 3, "name": "Bella", "date_of_birth": date(2012, 5, 1), "sex": "FEMALE",
         "owner_id": 1, "parent1_id": 1, "parent2_id": 2, "description": "bay mare"},
        {"id": 4, "name": "Rocky", "date_of_birth": date(2013, 7, 9), "sex": "MALE",
         "owner_id": 2, "parent1_id": 1, "parent2_id": 2, "description": None},
        {"id": 5, "name": "Luna", "date_of_birth": date(2019, 4, 2), "sex": "FEMALE",
         "owner_id": None, "parent1_id": 3, "parent2_id": 4, "description": None},
        {"id": 6, "name": "Bellamy", "date_of_birth": date(2021, 1, 1), "sex": "MALE",
         "owner_id": None, "parent1_id": None, "parent2_id": None, "description": None},
    ]
).astype({"owner_id": "Int64", "parent1_id": "Int64", "parent2_id": "Int64"})

owners_frame = pd.DataFrame(
    [
        {"id": 1, "first_name": "Anna", "last_name": "Gruber", "email": "anna@example.com"},
        {"id": 2, "first_name": "Max", "last_name": "Huber", "email": None},
    ]
)
