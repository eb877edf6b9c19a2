"""
Проверка назначения родителей: циклы, хронология, пол по слоту.

Ребро «потомок → родитель» допустимо, если:
* кандидат – не сам потомок и потомок не встречается среди предков кандидата
  (иначе лошадь стала бы собственным предком);
* кандидат родился не позже потомка;
* пол кандидата совпадает со слотом (parent1 – мать, parent2 – отец).

Уже сохранённые данные могут нарушать эти правила – при чтении это
допускается, запрещаются только новые рёбра.
"""
from __future__ import annotations
import asyncio
import logging
import warnings
from datetime import date
from typing import Callable, Iterable, List, Set

from .horse import (
    PARENT_SLOTS, HorseNode, NotFound, PedigreeWarning, Sex,
    TransportError, ValidationError, ValidationWarning,
)
from .store import NodeStore

LOGGER = logging.getLogger(__name__)

NAME_MAX_LENGTH = 255
DESCRIPTION_MAX_LENGTH = 4095

Notifier = Callable[[PedigreeWarning], None]


def warn_user(warning: PedigreeWarning) -> None:
    """Уведомитель по умолчанию: лог + ``warnings.warn``."""
    LOGGER.warning("⚠️  %s", warning)
    warnings.warn(warning, stacklevel=2)


async def is_ancestor(child_id: int, candidate: HorseNode, store: NodeStore) -> bool:
    """
    True, если ``child_id`` – это сам ``candidate`` или один из его предков,
    т.е. назначение ``candidate`` родителем ``child_id`` замкнуло бы цикл.

    Обход по parent1_id / parent2_id через кэш ``store``. Отсутствующий
    родитель (NotFound) обрывает цепочку. Если id повторно встречается на
    текущем пути – в данных уже есть цикл, и ответ консервативно True.
    Узлы, полностью проверенные по другой ветке (общий предок), повторно
    не обходятся.
    """
    if candidate.id is not None and candidate.id == child_id:
        return True

    on_path: Set[int] = set()
    done: Set[int] = set()

    async def walk(node: HorseNode) -> bool:
        for pid in node.parent_ids():
            if pid == child_id or pid in on_path:
                return True
            if pid in done:
                continue
            try:
                parent = await store.get(pid)
            except NotFound:
                done.add(pid)
                continue
            on_path.add(pid)
            found = await walk(parent)
            on_path.discard(pid)
            if found:
                return True
            done.add(pid)
        return False

    if candidate.id is not None:
        on_path.add(candidate.id)
    return await walk(candidate)


def is_chronologically_valid(child_dob: date | None, parent_dob: date | None) -> bool:
    # неизвестную дату не с чем сравнивать
    if child_dob is None or parent_dob is None:
        return True
    return not parent_dob > child_dob


async def check_parent(
    child: HorseNode, slot: str, candidate: HorseNode, store: NodeStore
) -> List[ValidationWarning]:
    """Все причины, по которым ``candidate`` нельзя поставить в ``slot``."""
    if slot not in PARENT_SLOTS:
        raise KeyError(f"Unknown parent slot: {slot!r}")
    problems: List[ValidationWarning] = []

    wanted = PARENT_SLOTS[slot]
    if candidate.sex is not None and candidate.sex != wanted:
        problems.append(ValidationWarning(
            f"{candidate.name} is {candidate.sex.value.lower()}, "
            f"{slot} must be {wanted.value.lower()}"
        ))
    if not is_chronologically_valid(child.date_of_birth, candidate.date_of_birth):
        problems.append(ValidationWarning(
            f"Parent {candidate.name} ({candidate.date_of_birth}) is younger "
            f"than {child.name} ({child.date_of_birth})"
        ))
    if child.id is not None and await is_ancestor(child.id, candidate, store):
        problems.append(ValidationWarning(
            f"{candidate.name} cannot be a parent of {child.name}: "
            "a horse cannot be its own ancestor"
        ))
    return problems


async def filter_parent_candidates(
    child: HorseNode,
    slot: str,
    candidates: Iterable[HorseNode],
    store: NodeStore,
) -> List[HorseNode]:
    """Убирает из подсказок всех кандидатов, не прошедших хоть одну проверку."""
    candidates = list(candidates)
    results = await asyncio.gather(
        *(check_parent(child, slot, c, store) for c in candidates),
        return_exceptions=True,
    )
    kept = []
    for candidate, result in zip(candidates, results):
        if isinstance(result, TransportError):
            # предков не проверить – кандидата не показываем
            LOGGER.warning("Could not verify candidate %s: %s", candidate.id, result)
            continue
        if isinstance(result, BaseException):
            raise result
        if not result:
            kept.append(candidate)
    if len(kept) < len(candidates):
        LOGGER.debug("Dropped %d of %d %s candidates for %s",
                     len(candidates) - len(kept), len(candidates), slot, child.name)
    return kept


async def assign_parent(
    child: HorseNode,
    slot: str,
    candidate: HorseNode | None,
    store: NodeStore,
    notify: Notifier = warn_user,
) -> bool:
    """
    Назначает ``candidate`` в ``slot`` потомка. При нарушении слот очищается,
    а пользователю уходит восстановимое предупреждение; исключение не бросается.
    ``child`` – копия, принадлежащая вызывающему, а не снимок из ``store``.
    """
    if store.owns(child):
        raise ValueError(f"Horse {child.id} is a cached snapshot, edit a copy from NodeStore.checkout")
    if candidate is None:
        child.set_parent(slot, None)
        return True
    problems = await check_parent(child, slot, candidate, store)
    if problems:
        child.set_parent(slot, None)
        for problem in problems:
            notify(problem)
        return False
    child.set_parent(slot, candidate.id)
    return True


# --------------------------------------------------------------------------- #
# Проверка полей записи
# --------------------------------------------------------------------------- #
def validate_horse(horse: HorseNode) -> None:
    errors: List[str] = []

    if not horse.name:
        errors.append("No Name given")
    elif len(horse.name) >= NAME_MAX_LENGTH:
        errors.append("Name is too long")

    if horse.date_of_birth is None:
        errors.append("No Date of Birth given")

    if horse.sex not in (Sex.FEMALE, Sex.MALE):
        errors.append("Unknown Sex given")

    if horse.description is not None:
        if not horse.description.strip():
            errors.append("Horse description is given but blank")
        if len(horse.description) > DESCRIPTION_MAX_LENGTH:
            errors.append(
                f"Horse description too long: longer than {DESCRIPTION_MAX_LENGTH} characters"
            )

    if errors:
        raise ValidationError("Validation of horse failed", errors)


def validate_for_update(horse: HorseNode) -> None:
    errors: List[str] = []
    if horse.id is None:
        errors.append("No ID given")
    try:
        validate_horse(horse)
    except ValidationError as exc:
        errors.extend(exc.errors)
    if errors:
        raise ValidationError("Validation of horse for update failed", errors)
