"""GroupRegistry: create/join/leave, member_count invariant, roles."""

import random
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import func, text

from geochat.crud.group_crud import (
    create_group,
    get_group,
    is_group_admin,
    join_group,
    leave_group,
    list_members,
    list_user_groups,
    remove_member,
    search_groups_by_name,
    shares_group,
    set_member_role,
    verify_member_count,
)
from geochat.errors import Conflict, Forbidden, InvariantViolation, NotFound, Unauthorized, ValidationError
from geochat.models.group import ROLE_ADMIN, ROLE_MEMBER, Group, GroupMembership


def _member_rows(session, group_id):
    return session.query(func.count()).select_from(GroupMembership).filter(GroupMembership.group_id == group_id).scalar()


@pytest.fixture
def owner(make_user):
    return make_user(nickname="owner")


@pytest.fixture
def group(db, owner):
    g = create_group(db, "Morning runners", "Riverside", 37.5665, 126.978, "6am loop", None, owner)
    db.commit()
    return g


# ===================================================================
# create
# ===================================================================


class TestCreateGroup:
    def test_creator_is_first_admin_member(self, db, group, owner):
        assert group.member_count == 1
        membership = db.query(GroupMembership).filter_by(group_id=group.group_id, user_id=owner).one()
        assert membership.role == ROLE_ADMIN
        verify_member_count(db, group)

    def test_out_of_range_latitude_leaves_nothing(self, db, owner):
        with pytest.raises(ValidationError):
            create_group(db, "nowhere", "x", 95.0, 0.0, None, None, owner)
        db.rollback()
        assert db.query(Group).count() == 0
        assert db.query(GroupMembership).count() == 0

    def test_unknown_creator(self, db):
        with pytest.raises(NotFound):
            create_group(db, "orphan", "x", 1.0, 1.0, None, None, "ghost")
        db.rollback()
        assert db.query(Group).count() == 0


# ===================================================================
# join / leave
# ===================================================================


class TestJoinLeave:
    def test_join_increments(self, db, group, make_user):
        uid = make_user()
        joined = join_group(db, group.group_id, uid)
        db.commit()
        assert joined.member_count == 2
        assert _member_rows(db, group.group_id) == 2

    def test_duplicate_join_conflicts_without_change(self, db, group, make_user):
        uid = make_user()
        join_group(db, group.group_id, uid)
        db.commit()
        with pytest.raises(Conflict):
            join_group(db, group.group_id, uid)
        db.rollback()
        assert get_group(db, group.group_id).member_count == 2

    def test_join_missing_group(self, db, make_user):
        uid = make_user()
        with pytest.raises(NotFound):
            join_group(db, "no-such-group", uid)

    def test_join_missing_user(self, db, group):
        with pytest.raises(NotFound):
            join_group(db, group.group_id, "ghost")

    def test_leave_decrements(self, db, group, make_user):
        uid = make_user()
        join_group(db, group.group_id, uid)
        db.commit()
        left = leave_group(db, group.group_id, uid)
        db.commit()
        assert left.member_count == 1
        assert _member_rows(db, group.group_id) == 1

    def test_leave_when_not_member(self, db, group, make_user):
        uid = make_user()
        with pytest.raises(NotFound):
            leave_group(db, group.group_id, uid)
        db.rollback()
        assert get_group(db, group.group_id).member_count == 1

    def test_leave_missing_group(self, db, make_user):
        with pytest.raises(NotFound):
            leave_group(db, "no-such-group", make_user())

    def test_counter_never_goes_negative(self, db, group, owner):
        db.execute(text("UPDATE groups SET member_count = 0 WHERE group_id = :g"), {"g": group.group_id})
        db.commit()
        with pytest.raises(InvariantViolation):
            leave_group(db, group.group_id, owner)
        db.rollback()
        assert _member_rows(db, group.group_id) == 1

    def test_mismatch_is_detected(self, db, group):
        db.execute(text("UPDATE groups SET member_count = 5 WHERE group_id = :g"), {"g": group.group_id})
        db.commit()
        db.expire_all()
        with pytest.raises(InvariantViolation):
            verify_member_count(db, get_group(db, group.group_id))


class TestPasswordGroups:
    @pytest.fixture
    def locked(self, db, owner):
        g = create_group(db, "Private", "Attic", 1.0, 1.0, None, "s3cret", owner)
        db.commit()
        return g

    def test_wrong_password(self, db, locked, make_user):
        uid = make_user()
        with pytest.raises(Unauthorized):
            join_group(db, locked.group_id, uid, password="nope")
        db.rollback()
        with pytest.raises(Unauthorized):
            join_group(db, locked.group_id, uid)

    def test_right_password(self, db, locked, make_user):
        uid = make_user()
        g = join_group(db, locked.group_id, uid, password="s3cret")
        db.commit()
        assert g.member_count == 2


# ===================================================================
# concurrency
# ===================================================================


def _run_in_own_session(session_factory, fn, *args):
    session = session_factory()
    try:
        fn(session, *args)
        session.commit()
        return "ok"
    except Conflict:
        session.rollback()
        return "conflict"
    except NotFound:
        session.rollback()
        return "not_found"
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


class TestConcurrentMembership:
    def test_parallel_joins_and_leaves_keep_count_exact(self, db, group, make_user, session_factory):
        users = [make_user() for _ in range(12)]
        with ThreadPoolExecutor(max_workers=6) as pool:
            results = list(pool.map(lambda u: _run_in_own_session(session_factory, join_group, group.group_id, u), users))
        assert results == ["ok"] * 12

        leavers = users[:7]
        with ThreadPoolExecutor(max_workers=6) as pool:
            results = list(pool.map(lambda u: _run_in_own_session(session_factory, leave_group, group.group_id, u), leavers))
        assert results == ["ok"] * 7

        with session_factory() as check:
            g = check.get(Group, group.group_id)
            assert g.member_count == 1 + 12 - 7
            assert _member_rows(check, group.group_id) == g.member_count

    def test_same_user_joining_twice_concurrently(self, db, group, make_user, session_factory):
        uid = make_user()
        with ThreadPoolExecutor(max_workers=5) as pool:
            results = list(pool.map(lambda _: _run_in_own_session(session_factory, join_group, group.group_id, uid), range(5)))
        assert results.count("ok") == 1
        assert results.count("conflict") == 4

        with session_factory() as check:
            assert check.get(Group, group.group_id).member_count == 2

    def test_join_racing_leave_for_existing_member(self, db, group, make_user, session_factory):
        uid = make_user()
        gid = group.group_id

        for _ in range(10):
            with session_factory() as s:
                if s.get(GroupMembership, (gid, uid)) is None:
                    join_group(s, gid, uid)
                    s.commit()

            with ThreadPoolExecutor(max_workers=2) as pool:
                joined = pool.submit(_run_in_own_session, session_factory, join_group, gid, uid)
                left = pool.submit(_run_in_own_session, session_factory, leave_group, gid, uid)
                outcome = (joined.result(), left.result())

            # join first → Conflict, then leave; leave first → both succeed and uid is back in
            assert outcome in {("conflict", "ok"), ("ok", "ok")}
            with session_factory() as check:
                g = check.get(Group, gid)
                rows = _member_rows(check, gid)
                is_member = check.get(GroupMembership, (gid, uid)) is not None
            assert g.member_count == rows
            assert rows == (2 if outcome == ("ok", "ok") else 1)
            assert is_member is (outcome == ("ok", "ok"))

    def test_random_join_leave_mix_keeps_counter_equal_to_rows(self, db, group, make_user, session_factory):
        users = [make_user() for _ in range(8)]
        rng = random.Random(20240914)
        ops = [(rng.choice([join_group, leave_group]), rng.choice(users)) for _ in range(120)]

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda op: _run_in_own_session(session_factory, op[0], group.group_id, op[1]), ops))
        assert set(results) <= {"ok", "conflict", "not_found"}

        with session_factory() as check:
            g = check.get(Group, group.group_id)
            rows = _member_rows(check, group.group_id)
            verify_member_count(check, g)
        assert g.member_count == rows
        assert 1 <= rows <= 1 + len(users)


# ===================================================================
# roles / queries
# ===================================================================


class TestRoles:
    def test_member_cannot_change_roles(self, db, group, make_user):
        a, b = make_user(), make_user()
        join_group(db, group.group_id, a)
        join_group(db, group.group_id, b)
        db.commit()
        with pytest.raises(Forbidden):
            set_member_role(db, group.group_id, a, b, ROLE_ADMIN)

    def test_admin_promotes_member(self, db, group, owner, make_user):
        uid = make_user()
        join_group(db, group.group_id, uid)
        set_member_role(db, group.group_id, owner, uid, ROLE_ADMIN)
        db.commit()
        assert is_group_admin(db, get_group(db, group.group_id), uid)

    def test_creator_stays_admin(self, db, group, owner, make_user):
        uid = make_user()
        join_group(db, group.group_id, uid)
        set_member_role(db, group.group_id, owner, uid, ROLE_ADMIN)
        with pytest.raises(Forbidden):
            set_member_role(db, group.group_id, uid, owner, ROLE_MEMBER)

    def test_unknown_role(self, db, group, owner):
        with pytest.raises(ValidationError):
            set_member_role(db, group.group_id, owner, owner, "moderator")

    def test_admin_removes_member(self, db, group, owner, make_user):
        uid = make_user()
        join_group(db, group.group_id, uid)
        db.commit()
        g = remove_member(db, group.group_id, owner, uid)
        db.commit()
        assert g.member_count == 1
        assert _member_rows(db, group.group_id) == 1

    def test_member_cannot_remove(self, db, group, owner, make_user):
        uid = make_user()
        join_group(db, group.group_id, uid)
        db.commit()
        with pytest.raises(Forbidden):
            remove_member(db, group.group_id, uid, owner)


class TestQueries:
    def test_search_is_case_insensitive_substring(self, db, group, owner):
        create_group(db, "Evening RUNNERS", "Bridge", 1.0, 1.0, None, None, owner)
        create_group(db, "Chess", "Cafe", 1.0, 1.0, None, None, owner)
        db.commit()
        names = {g.name for g in search_groups_by_name(db, "runners")}
        assert names == {"Morning runners", "Evening RUNNERS"}

    def test_search_wildcards_are_literal(self, db, group, owner):
        create_group(db, "100% fun", "x", 1.0, 1.0, None, None, owner)
        db.commit()
        assert [g.name for g in search_groups_by_name(db, "%")] == ["100% fun"]

    def test_list_user_groups_and_members(self, db, group, owner, make_user):
        uid = make_user(nickname="newbie")
        join_group(db, group.group_id, uid)
        db.commit()
        assert [g.group_id for g, _ in list_user_groups(db, uid)] == [group.group_id]
        members = {m.user_id: u.nickname for m, u in list_members(db, group.group_id)}
        assert members == {owner: "owner", uid: "newbie"}

    def test_shares_group(self, db, group, owner, make_user):
        mate, stranger = make_user(), make_user()
        join_group(db, group.group_id, mate)
        db.commit()
        assert shares_group(db, owner, mate)
        assert shares_group(db, mate, owner)
        assert not shares_group(db, owner, stranger)

        leave_group(db, group.group_id, mate)
        db.commit()
        assert not shares_group(db, owner, mate)
