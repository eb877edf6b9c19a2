#!/usr/bin/env python3
"""
CLI‑обёртка над ядром родословной.

Примеры:
    python -m pedigree.main tree --data_dir data --id 7 --generations 3
    python -m pedigree.main suggest --data_dir data --id 7 --slot parent1 --name Bella
    python -m pedigree.main audit --data_dir data --out pedigree_issues.csv
"""
from __future__ import annotations
import argparse
import asyncio

from .horse import PARENT_SLOTS, NotFound
from .lookup import FrameHorseLookup
from .session import SUGGESTION_LIMIT, PedigreeSession, audit_pedigree
from .tree import DEFAULT_GENERATIONS, MAX_GENERATIONS


def _parse(argv=None):
    p = argparse.ArgumentParser("horse pedigree")
    p.add_argument("--data_dir", default="data",
                   help="директорий с horses.csv (и, опционально, owners.csv)")
    sub = p.add_subparsers(dest="command", required=True)

    t = sub.add_parser("tree", help="дерево предков лошади")
    t.add_argument("--id", type=int, required=True)
    t.add_argument("--generations", type=int, default=DEFAULT_GENERATIONS,
                   help=f"число поколений, не больше {MAX_GENERATIONS}")
    t.add_argument("--collapse", type=int, nargs="*", default=[],
                   help="id узлов, которые нужно свернуть")

    s = sub.add_parser("suggest", help="подсказки для слота родителя")
    s.add_argument("--id", type=int, required=True)
    s.add_argument("--slot", choices=sorted(PARENT_SLOTS), required=True)
    s.add_argument("--name", required=True)
    s.add_argument("--limit", type=int, default=SUGGESTION_LIMIT)

    a = sub.add_parser("audit", help="проверка всей родословной")
    a.add_argument("--out", default="pedigree_issues.csv")

    return p.parse_args(argv)


async def _tree(lookup: FrameHorseLookup, args) -> None:
    async with PedigreeSession(lookup, tree_lookup=lookup, owner_lookup=lookup) as session:
        tree, state = await session.open_tree(args.id, args.generations)
        for horse_id in args.collapse:
            if horse_id in tree:
                state.toggle(horse_id)
        for depth, node in state.visible():
            marker = "-" if state.is_expanded(node) else "+"
            sex = node.sex.value.lower() if node.sex else "?"
            indent = "    " * depth
            print(f"{indent}{marker} {node.name} ({sex}, "
                  f"{node.date_of_birth}) #{node.id}")


async def _suggest(lookup: FrameHorseLookup, args) -> None:
    async with PedigreeSession(lookup) as session:
        child = await session.horse(args.id)
        found = await session.suggest_parents(child, args.slot, args.name, args.limit)
        for horse in found:
            print(f"{horse.id}\t{horse.name}\t{horse.date_of_birth}")
        print(f"✅  {len(found)} candidate(s) for {args.slot} of {child.name}")


def main(argv=None):
    args = _parse(argv)
    lookup = FrameHorseLookup.from_data_dir(args.data_dir)

    if args.command == "audit":
        df = audit_pedigree(lookup.horses)
        df.to_csv(args.out, index=False)
        print(f"✅  Saved {len(df)} rows → {args.out}")
        return

    try:
        if args.command == "tree":
            asyncio.run(_tree(lookup, args))
        else:
            asyncio.run(_suggest(lookup, args))
    except NotFound as exc:
        raise SystemExit(f"❌  {exc}")


if __name__ == "__main__":
    main()
