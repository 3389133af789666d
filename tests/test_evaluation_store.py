"""Tests for the evaluation store, class locks and atomic batches."""

import threading

import pytest

from gradelight.core.exceptions import ConcurrencyError
from gradelight.services import ConcurrencyManager, EvaluationStore


@pytest.fixture
def manager():
    return ConcurrencyManager(lock_timeout=0.5)


@pytest.fixture
def store(manager):
    return EvaluationStore(manager)


class TestEvaluationStore:

    def test_write_and_read(self, store):
        assert store.write("c1", "s1", "Design", "MA")
        assert store.get_evaluations("c1", "s1") == {"Design": "MA"}
        assert store.version("c1") == 1

    def test_same_value_is_not_a_change(self, store):
        store.write("c1", "s1", "Design", "MA")
        assert not store.write("c1", "s1", "Design", "MA")
        assert store.version("c1") == 1

    def test_last_write_wins(self, store):
        store.write("c1", "s1", "Design", "MA")
        store.write("c1", "s1", "Design", "MPA")
        assert store.get_evaluations("c1", "s1") == {"Design": "MPA"}

    def test_clear_student(self, store):
        store.write("c1", "s1", "Design", "MA")
        store.write("c1", "s2", "Design", "MPA")
        assert store.clear_student("c1", "s1")
        assert store.get_evaluations("c1", "s1") == {}
        assert "s1" not in store.snapshot("c1")
        assert store.get_evaluations("c1", "s2") == {"Design": "MPA"}

    def test_clear_student_without_grades_is_not_a_change(self, store):
        store.write("c1", "s2", "Design", "MPA")
        assert not store.clear_student("c1", "s1")
        assert store.version("c1") == 1

    def test_classes_are_independent(self, store):
        store.write("c1", "s1", "Design", "MA")
        assert store.get_evaluations("c2", "s1") == {}

    def test_returned_grades_are_copies(self, store):
        store.write("c1", "s1", "Design", "MA")
        store.get_evaluations("c1", "s1")["Design"] = "MANA"
        assert store.get_evaluations("c1", "s1") == {"Design": "MA"}

    def test_batch_commits_all_or_nothing(self, store):
        with store.batch("c1") as batch:
            batch.stage("s1", "Design", "MA")
            batch.stage("s2", "Design", "MPA")
            assert store.snapshot("c1") == {}
        assert store.get_evaluations("c1", "s2") == {"Design": "MPA"}
        assert store.version("c1") == 1

    def test_batch_discarded_on_error(self, store):
        with pytest.raises(RuntimeError):
            with store.batch("c1") as batch:
                batch.stage("s1", "Design", "MA")
                raise RuntimeError("boom")
        assert store.snapshot("c1") == {}
        assert store.version("c1") == 0

    def test_batch_rollback(self, store):
        with store.batch("c1") as batch:
            batch.stage("s1", "Design", "MA")
            batch.rollback()
        assert batch.rolled_back
        assert store.snapshot("c1") == {}

    def test_batch_sees_its_own_staged_writes(self, store):
        store.write("c1", "s1", "Design", "MA")
        with store.batch("c1") as batch:
            batch.stage("s1", "Tests", "MPA")
            assert batch.current("s1") == {"Design": "MA", "Tests": "MPA"}
            assert not batch.stage("s1", "Tests", "MPA")

    def test_drop_class(self, store):
        store.write("c1", "s1", "Design", "MA")
        store.drop_class("c1")
        assert store.snapshot("c1") == {}
        assert store.version("c1") == 0

    def test_readers_never_see_a_partial_batch(self, store):
        students = [f"s{i}" for i in range(50)]
        entered = threading.Event()
        release = threading.Event()

        def writer():
            with store.batch("c1") as batch:
                for student_id in students:
                    batch.stage(student_id, "Design", "MA")
                entered.set()
                release.wait(2)

        thread = threading.Thread(target=writer)
        thread.start()
        assert entered.wait(2)
        assert len(store.snapshot("c1")) == 0
        release.set()
        thread.join(2)
        assert len(store.snapshot("c1")) == len(students)

    def test_concurrent_batches_on_one_class_serialize(self, store):
        errors = []

        def import_batch(concept):
            try:
                with store.batch("c1", timeout=5) as batch:
                    for i in range(20):
                        batch.stage(f"s{i}", "Design", concept)
            except Exception as e:  # pragma: no cover
                errors.append(e)

        threads = [threading.Thread(target=import_batch, args=(c,)) for c in ("MA", "MPA")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(5)

        assert not errors
        concepts = {grades["Design"] for grades in store.snapshot("c1").values()}
        # One batch applied last and overwrote all twenty rows
        assert len(concepts) == 1
        assert store.version("c1") == 2


class TestConcurrencyManager:

    def test_write_lock_times_out_for_other_holder(self, manager):
        lock_id = manager.acquire_lock("class_c1", "holder_a")
        with pytest.raises(ConcurrencyError) as exc_info:
            manager.acquire_lock("class_c1", "holder_b", timeout=0.05)
        assert exc_info.value.error_code == "lock_timeout"
        manager.release_lock(lock_id)
        assert manager.acquire_lock("class_c1", "holder_b", timeout=0.05)

    def test_same_holder_reenters(self, manager):
        with manager.class_write_lock("c1"):
            with manager.class_write_lock("c1", timeout=0.05):
                with pytest.raises(ConcurrencyError):
                    manager.acquire_lock("class_c1", "holder_b", timeout=0.05)
            with pytest.raises(ConcurrencyError):
                manager.acquire_lock("class_c1", "holder_b", timeout=0.05)
        assert manager.acquire_lock("class_c1", "holder_b", timeout=0.05)

    def test_other_resources_are_not_blocked(self, manager):
        manager.acquire_lock("class_c1", "holder_a")
        assert manager.acquire_lock("class_c2", "holder_b", timeout=0.05)

    def test_waiter_proceeds_after_release(self, manager):
        lock_id = manager.acquire_lock("class_c1", "holder_a")
        acquired = threading.Event()

        def waiter():
            with manager.class_write_lock("c1", timeout=2):
                acquired.set()

        thread = threading.Thread(target=waiter)
        thread.start()
        assert not acquired.wait(0.1)
        manager.release_lock(lock_id)
        thread.join(2)
        assert acquired.is_set()

    def test_release_unknown_lock(self, manager):
        assert not manager.release_lock("nope")

    def test_versions(self, manager):
        assert manager.get_version("x") == 0
        assert manager.increment_version("x") == 1
        manager.forget("x")
        assert manager.get_version("x") == 0
