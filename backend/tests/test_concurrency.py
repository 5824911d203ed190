"""Per-IMEI key locks, retry on write conflicts and the 409 they surface as."""

import threading
from datetime import date

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from hpstock.models import StockEvent
from hpstock.services import concurrency, stock_service
from hpstock.services.concurrency import key_lock, run_with_retry
from hpstock.validation import ConcurrencyConflict

IMEI = "358240051111110"


@pytest.fixture
def no_backoff(monkeypatch):
    monkeypatch.setattr(concurrency.time, "sleep", lambda seconds: None)


class TestRunWithRetry:
    def test_stale_rows_exhaust_into_conflict(self, db_session, no_backoff):
        calls = []

        def always_stale():
            calls.append(1)
            raise StaleDataError("stock_entries row version changed")

        with pytest.raises(ConcurrencyConflict) as excinfo:
            run_with_retry(always_stale, attempts=3)

        assert len(calls) == 3
        assert excinfo.value.code == "concurrency_conflict"
        assert excinfo.value.http_status == 409
        assert isinstance(excinfo.value.__cause__, StaleDataError)

    def test_locked_database_is_retried_until_it_succeeds(self, db_session, no_backoff):
        calls = []

        def locked_once():
            calls.append(1)
            if len(calls) == 1:
                raise OperationalError("UPDATE stock_entries", {}, Exception("database is locked"))
            return "done"

        assert run_with_retry(locked_once) == "done"
        assert len(calls) == 2

    def test_other_errors_are_not_retried(self, db_session, no_backoff):
        calls = []

        def broken():
            calls.append(1)
            raise KeyError("missing")

        with pytest.raises(KeyError):
            run_with_retry(broken)
        assert len(calls) == 1

    def test_conflict_answers_409(self, client, loc_a, phone_model, no_backoff, monkeypatch):
        def stale(**kwargs):
            raise StaleDataError("stock_entries row version changed")

        monkeypatch.setattr(stock_service, "_record_locked", stale)

        response = client.post("/api/events", json={
            "kind": "INCOMING",
            "imei": IMEI,
            "location_id": loc_a.id,
            "phone_model_id": phone_model.id,
            "occurred_on": "2024-01-05",
        })

        assert response.status_code == 409
        assert response.json["code"] == "concurrency_conflict"
        assert StockEvent.query.count() == 0


class TestKeyLock:
    def test_keys_taken_once_in_sorted_order(self, db_session, monkeypatch):
        taken = []
        monkeypatch.setattr(concurrency, "_advisory_xact_lock", taken.append)

        with key_lock("b-imei", "a-imei", "b-imei", None, ""):
            pass

        assert taken == ["a-imei", "b-imei"]

    def test_reentrant_in_one_thread(self, db_session):
        with key_lock(IMEI):
            with key_lock(IMEI, "358240052222220"):
                pass

    def test_second_writer_waits_for_the_first(self, app, db_session):
        entered = threading.Event()

        def writer():
            with app.app_context():
                with key_lock(IMEI):
                    entered.set()

        with key_lock(IMEI):
            thread = threading.Thread(target=writer)
            thread.start()
            assert not entered.wait(0.2)

        assert entered.wait(5)
        thread.join(5)

    def test_different_keys_do_not_contend(self, app, db_session):
        entered = threading.Event()

        def writer():
            with app.app_context():
                with key_lock("358240053333330"):
                    entered.set()

        with key_lock(IMEI):
            thread = threading.Thread(target=writer)
            thread.start()
            assert entered.wait(5)
        thread.join(5)

    def test_registry_forgets_released_keys(self, db_session, record, loc_a, phone_model):
        before = len(concurrency._registry)

        for n in range(5):
            record("INCOMING", f"35824005000000{n}", loc_a, phone_model, date(2024, 1, 5))
        with key_lock(IMEI):
            with key_lock(IMEI):
                assert len(concurrency._registry) == before + 1

        assert len(concurrency._registry) == before
