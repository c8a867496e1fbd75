import json
import threading

import pytest
from sqlalchemy import create_engine, update
from sqlalchemy.orm import sessionmaker

from app.core import chain
from app.core.errors import ConcurrentModification, NotCurrentHolder, WorkflowError
from app.core.locks import chain_key, chain_lock
from app.core.policy import Actor
from app.db.base import Base
from app.db.models.assignment import FormAssignment
from app.db.models.form_distribution import FormTemplateLab
from app.db.models.form_template import FormTemplate
from app.db.models.lab import Lab
from app.db.models.user import User
from tests.conftest import DEFAULT_SCHEMA, FILLED, as_actor


@pytest.fixture
def file_db(tmp_path):
    """Separate sessions on one SQLite file, so threads really race."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    s = Session()
    lab = Lab(name="Chemistry Lab")
    s.add(lab)
    s.flush()
    distributor = User(full_name="Distributor", email="d@example.org", lab_id=None, designation="Scientist")
    a = User(full_name="Alice", email="a@example.org", lab_id=lab.id, designation="Director")
    b = User(full_name="Bob", email="b@example.org", lab_id=lab.id)
    c = User(full_name="Carol", email="c@example.org", lab_id=lab.id)
    s.add_all([distributor, a, b, c])
    s.flush()
    t = FormTemplate(title="Race", schema_json=json.dumps(DEFAULT_SCHEMA), created_by_id=distributor.id)
    t.target_labs = [FormTemplateLab(lab_id=lab.id)]
    s.add(t)
    s.commit()

    ids = {"template": t.id, "a": a.id, "b": b.id, "c": c.id, "lab": lab.id}
    s.close()
    try:
        yield Session, ids
    finally:
        engine.dispose()


def _actor(ids, key, authority=False):
    return Actor(id=ids[key], lab_id=ids["lab"], has_approval_authority=authority)


def _race(n, fn):
    barrier = threading.Barrier(n)
    results = [None] * n

    def run(i):
        barrier.wait()
        try:
            results[i] = fn(i)
        except WorkflowError as exc:
            results[i] = exc

    threads = [threading.Thread(target=run, args=(i,)) for i in range(n)]
    for th in threads:
        th.start()
    for th in threads:
        th.join(timeout=30)
    return results


def test_parallel_delegations_admit_exactly_one(file_db, events):
    Session, ids = file_db
    s = Session()
    root, _ = chain.save_draft(s, _actor(ids, "a", True), ids["template"], FILLED)
    root_id = root.id
    s.close()

    targets = [ids["b"], ids["c"]]

    def delegate(i):
        session = Session()
        try:
            return chain.delegate(session, _actor(ids, "a", True), ids["template"], targets[i], "", root_id).id
        finally:
            session.close()

    results = _race(2, delegate)

    wins = [r for r in results if isinstance(r, int)]
    losses = [r for r in results if isinstance(r, WorkflowError)]
    assert len(wins) == 1
    assert len(losses) == 1
    assert isinstance(losses[0], NotCurrentHolder)

    s = Session()
    children = s.query(FormAssignment).filter(FormAssignment.parent_assignment_id == root_id).all()
    assert [c.id for c in children] == wins
    assert chain.verify_chain(s, root_id)
    assert chain.current_holder(s, root_id).id == wins[0]
    s.close()


def test_parallel_first_saves_create_one_root(file_db, events):
    Session, ids = file_db

    def save(i):
        session = Session()
        try:
            a, _ = chain.save_draft(session, _actor(ids, "b"), ids["template"], {**FILLED, "budget": str(i)})
            return a.id
        finally:
            session.close()

    results = _race(3, save)

    assert all(isinstance(r, int) for r in results)
    assert len(set(results)) == 1
    s = Session()
    roots = s.query(FormAssignment).filter(FormAssignment.assigned_to_id == ids["b"]).count()
    assert roots == 1
    s.close()


def test_sequential_double_delegate_is_rejected(db, world, events):
    root, _ = chain.save_draft(db, as_actor(world.a), world.template.id, FILLED)
    chain.delegate(db, as_actor(world.a), world.template.id, world.b.id, "", root.id)

    with pytest.raises(NotCurrentHolder):
        chain.delegate(db, as_actor(world.a), world.template.id, world.c.id, "", root.id)


def test_stale_expected_version_is_rejected(db, world, events):
    root, _ = chain.save_draft(db, as_actor(world.a), world.template.id, FILLED)
    seen = root.chain_version

    chain.save_draft(db, as_actor(world.a), world.template.id, {**FILLED, "budget": "5"}, root.id)

    with pytest.raises(ConcurrentModification) as exc:
        chain.delegate(
            db, as_actor(world.a), world.template.id, world.b.id, "", root.id, expected_version=seen
        )
    assert exc.value.retryable
    assert exc.value.to_dict()["code"] == "concurrent_modification"

    db.expire_all()
    fresh = db.get(FormAssignment, root.id).chain_version
    child = chain.delegate(db, as_actor(world.a), world.template.id, world.b.id, "", root.id, expected_version=fresh)
    assert child.parent_assignment_id == root.id


def test_version_swap_fails_when_chain_moved_underneath(file_db, events):
    Session, ids = file_db
    s = Session()
    root, _ = chain.save_draft(s, _actor(ids, "a", True), ids["template"], FILLED)
    root_id = root.id
    s.close()

    s1 = Session()
    snapshot = chain.load_chain(s1, root_id)

    s2 = Session()
    s2.execute(
        update(FormAssignment)
        .where(FormAssignment.id == root_id)
        .values(chain_version=FormAssignment.chain_version + 1)
    )
    s2.commit()
    s2.close()

    with pytest.raises(ConcurrentModification):
        chain._bump(s1, snapshot)
    s1.rollback()
    s1.close()


def test_invisible_leaf_aborts_instead_of_forking(db, world, events):
    root, _ = chain.save_draft(db, as_actor(world.a), world.template.id, FILLED)
    root_id = root.id
    # leaf pointer names a row this transaction cannot see (stale snapshot)
    db.execute(update(FormAssignment).where(FormAssignment.id == root_id).values(leaf_assignment_id=root_id + 1000))
    db.commit()

    with pytest.raises(ConcurrentModification):
        chain.load_chain(db, root_id, for_update=True)
    db.rollback()
    with pytest.raises(ConcurrentModification):
        chain.delegate(db, as_actor(world.a), world.template.id, world.b.id, "", root_id)

    assert db.query(FormAssignment).count() == 1
    # read-only callers still get an answer from the child links
    assert chain.load_chain(db, root_id).leaf.id == root_id


def test_chain_lock_times_out():
    key = chain_key(424242)
    held = threading.Event()
    release = threading.Event()

    def holder():
        with chain_lock(key):
            held.set()
            release.wait(5)

    th = threading.Thread(target=holder)
    th.start()
    held.wait(5)
    try:
        with pytest.raises(ConcurrentModification):
            with chain_lock(key, timeout=0.05):
                pass
    finally:
        release.set()
        th.join(5)

    # free again once the holder is done
    with chain_lock(key, timeout=0.5):
        pass
