"""
Модель данных родословной лошадей и таксономия ошибок.

Каждая лошадь ссылается максимум на двух родителей:
    * parent1 – мать (кобыла, FEMALE);
    * parent2 – отец (жеребец, MALE).
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Tuple

import pandas as pd


class Sex(str, Enum):
    FEMALE = "FEMALE"
    MALE = "MALE"

    @classmethod
    def parse(cls, raw: Any) -> "Sex":
        if isinstance(raw, Sex):
            return raw
        return cls(str(raw).strip().upper())


# слот → требуемый пол родителя
PARENT_SLOTS: Dict[str, Sex] = {"parent1": Sex.FEMALE, "parent2": Sex.MALE}


def _opt_int(raw: Any) -> int | None:
    if raw is None or (not isinstance(raw, str) and pd.isna(raw)) or raw == "":
        return None
    return int(raw)


def _to_date(raw: Any) -> date | None:
    if raw is None or (not isinstance(raw, str) and pd.isna(raw)) or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    return pd.Timestamp(raw).date()


@dataclass
class Owner:
    id: int
    first_name: str
    last_name: str
    email: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


@dataclass
class HorseNode:
    """Одна запись о лошади в том виде, в каком её вернул сервис поиска."""

    name: str | None
    date_of_birth: date | None
    sex: Sex | None
    id: int | None = None
    parent1_id: int | None = None
    parent2_id: int | None = None
    owner_id: int | None = None
    description: str | None = None
    # заполняются только серверным деревом предков
    parent1: "HorseNode | None" = field(default=None, repr=False, compare=False)
    parent2: "HorseNode | None" = field(default=None, repr=False, compare=False)

    def parent_ids(self) -> Tuple[int, ...]:
        return tuple(p for p in (self.parent1_id, self.parent2_id) if p is not None)

    def parent_id(self, slot: str) -> int | None:
        return getattr(self, f"{slot}_id")

    def set_parent(self, slot: str, parent_id: int | None) -> None:
        if slot not in PARENT_SLOTS:
            raise KeyError(slot)
        setattr(self, f"{slot}_id", parent_id)
        setattr(self, slot, None)

    @classmethod
    def from_record(cls, rec: Mapping[str, Any]) -> "HorseNode":
        """Строит узел из строки CSV / JSON-ответа (ключи snake_case или camelCase)."""
        def pick(*keys):
            for k in keys:
                if k in rec:
                    return rec[k]
            return None

        def text(raw):
            if raw is None or isinstance(raw, str):
                return raw
            return None if pd.isna(raw) else str(raw)

        sex = pick("sex")
        description = text(pick("description"))
        node = cls(
            id=_opt_int(pick("id")),
            name=text(pick("name")),
            date_of_birth=_to_date(pick("date_of_birth", "dateOfBirth")),
            sex=None if sex is None or (not isinstance(sex, str) and pd.isna(sex)) else Sex.parse(sex),
            parent1_id=_opt_int(pick("parent1_id", "parentId1", "parent1Id")),
            parent2_id=_opt_int(pick("parent2_id", "parentId2", "parent2Id")),
            owner_id=_opt_int(pick("owner_id", "ownerId")),
            description=description,
        )
        for slot in PARENT_SLOTS:
            nested = rec.get(slot)
            if isinstance(nested, Mapping):
                parent = cls.from_record(nested)
                setattr(node, slot, parent)
                if node.parent_id(slot) is None:
                    setattr(node, f"{slot}_id", parent.id)
        return node


# --------------------------------------------------------------------------- #
# Ошибки и предупреждения
# --------------------------------------------------------------------------- #
class PedigreeError(RuntimeError):
    """Базовый класс ошибок ядра родословной."""


class NotFound(PedigreeError):
    """Идентификатор лошади (или владельца) не разрешается."""


class TransportError(PedigreeError):
    """Сбой связи с сервисом поиска."""


class ValidationError(PedigreeError):
    def __init__(self, message: str, errors: List[str] | None = None):
        super().__init__(message if not errors else f"{message}: {'; '.join(errors)}")
        self.errors = list(errors or [])


class PedigreeWarning(UserWarning):
    """Восстановимое предупреждение для пользователя."""


class ValidationWarning(PedigreeWarning):
    """Цикл в родословной или родитель моложе потомка – блокирует только одно назначение."""


class DepthExceeded(PedigreeWarning):
    """Не ошибка: у узла нет родителей или исчерпан бюджет глубины."""
