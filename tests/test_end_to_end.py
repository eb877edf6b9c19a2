import asyncio
from datetime import date
from pathlib import Path

import pandas as pd
import pytest

from pedigree.horse import Sex
from pedigree.lookup import FrameHorseLookup
from pedigree.main import main
from pedigree.session import PedigreeSession, audit_pedigree
from .fixtures import FakeLookup, horse, horses_frame, owners_frame


def _write_data(tmp_path: Path):
    (tmp_path / "horses.csv").write_text(
        "id,name,description,date_of_birth,sex,owner_id,parent1_id,parent2_id\n"
        "1,Wendy,,2005-03-01,FEMALE,1,,\n"
        "2,Hugo,,2004-06-01,MALE,,,\n"
        "3,Bella,bay mare,2012-05-01,FEMALE,1,1,2\n"
        "4,Rocky,,2013-07-09,MALE,2,1,2\n"
        "5,Luna,,2019-04-02,FEMALE,,3,4\n"
        "6,Bellamy,,2021-01-01,MALE,,,\n"
        # испорченные записи: 7 и 8 – родители друг друга, 9 – «отец» моложе
        "7,Loop,,2000-01-01,FEMALE,,8,\n"
        "8,Pool,,2000-01-01,FEMALE,,7,\n"
        "9,Early,,1999-01-01,FEMALE,,,6\n"
        # 10 ссылается на несуществующую мать, у 11 в матерях жеребец
        "10,Stray,,2015-01-01,FEMALE,,55,\n"
        "11,Mixup,,2015-01-01,FEMALE,,2,\n"
    )
    (tmp_path / "owners.csv").write_text(
        "id,first_name,last_name,email\n1,Anna,Gruber,anna@example.com\n2,Max,Huber,\n"
    )


def test_frame_lookup_from_csv(tmp_path: Path):
    _write_data(tmp_path)
    lookup = FrameHorseLookup.from_data_dir(str(tmp_path))
    luna = asyncio.run(lookup.lookup_by_id(5))
    assert luna.name == "Luna"
    assert luna.date_of_birth == date(2019, 4, 2)
    assert luna.sex is Sex.FEMALE
    assert (luna.parent1_id, luna.parent2_id, luna.owner_id) == (3, 4, None)

    mares = asyncio.run(lookup.search_by_criteria(name="bel", sex=Sex.FEMALE))
    assert [h.name for h in mares] == ["Bella"]
    older = asyncio.run(lookup.search_by_criteria(born_before=date(2005, 1, 1), limit=2))
    assert [h.id for h in older] == [2, 7]
    owned = asyncio.run(lookup.search_by_criteria(owner_name="anna"))
    assert [h.id for h in owned] == [1, 3]
    assert asyncio.run(lookup.lookup_owner(2)).email is None


@pytest.mark.asyncio
async def test_session_suggest_and_assign():
    lookup = FrameHorseLookup(horses_frame, owners_frame)
    notices = []
    async with PedigreeSession(lookup, owner_lookup=lookup, notify=notices.append) as session:
        wendy = await session.horse(1)
        # Bella и Luna моложе Wendy, Bellamy – жеребец
        assert await session.suggest_parents(wendy, "parent1", "") == []
        found = await session.suggest_parents(wendy, "parent1", "l")
        assert found == []

        bellamy = await session.horse(6)
        found = await session.suggest_parents(bellamy, "parent1", "e")
        assert [h.name for h in found] == ["Wendy", "Bella"]

        assert await session.assign_parent(wendy, "parent1", await session.horse(5)) is False
        assert wendy.parent1_id is None
        assert notices

        assert (await session.owner_of(wendy)).full_name == "Anna Gruber"
        assert await session.owner_of(bellamy) is None


@pytest.mark.asyncio
async def test_session_close_cancels_lookups():
    session = PedigreeSession(FakeLookup([], delay=10))
    task = asyncio.ensure_future(session.horse(1))
    await asyncio.sleep(0)
    await session.close()
    with pytest.raises(asyncio.CancelledError):
        await task
    with pytest.raises(RuntimeError):
        await session.horse(1)


@pytest.mark.asyncio
async def test_session_refresh_refetches():
    lookup = FakeLookup([horse(1, dam=2), horse(2)])
    async with PedigreeSession(lookup) as session:
        tree, state = await session.open_tree(1, generations=3)
        assert len(tree) == 2
        assert state.is_expanded(tree.root)
        await session.open_tree(1, generations=3)
        assert lookup.calls[1] == 1

        session.refresh()
        assert len(session.store) == 0
        assert session.tree is None
        await session.open_tree(1, generations=3)
        assert lookup.calls[1] == 2


@pytest.mark.asyncio
async def test_rejected_assignment_keeps_stored_edges():
    # 1 ← 2 ← 3 по линии матерей
    born = date(2000, 1, 1)
    lookup = FakeLookup([horse(1, dam=2, born=born), horse(2, dam=3, born=born), horse(3, born=born)])
    notices = []
    async with PedigreeSession(lookup, notify=notices.append) as session:
        two = await session.horse(2)
        stallion = horse(20, born=date(1990, 1, 1), sex=Sex.MALE)
        assert await session.assign_parent(two, "parent1", stallion) is False
        assert two.parent1_id is None
        assert session.store.cached(2).parent1_id == 3

        # 3 → 1 замкнуло бы цикл 3 → 1 → 2 → 3
        three = await session.horse(3)
        assert await session.assign_parent(three, "parent1", await session.horse(1)) is False
        assert three.parent1_id is None
        assert len(notices) == 2

def test_audit(tmp_path: Path):
    _write_data(tmp_path)
    lookup = FrameHorseLookup.from_data_dir(str(tmp_path))
    issues = audit_pedigree(lookup.horses)
    found = set(issues[["horse_id", "issue"]].itertuples(index=False, name=None))
    assert found == {
        (9, "chronology"), (7, "cycle"), (8, "cycle"), (10, "dangling"), (11, "sex"),
    }


def test_cli(tmp_path: Path, capsys):
    _write_data(tmp_path)
    main(["--data_dir", str(tmp_path), "tree", "--id", "5", "--generations", "3"])
    out = capsys.readouterr().out.splitlines()
    assert out[0] == "- Luna (female, 2019-04-02) #5"
    assert len(out) == 7

    out_csv = tmp_path / "issues.csv"
    main(["--data_dir", str(tmp_path), "audit", "--out", str(out_csv)])
    assert len(pd.read_csv(out_csv)) == 5
