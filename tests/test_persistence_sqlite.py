import threading
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

from tradebook.models import Currency, OptionContract, OptionType, Stock, Trade, TradeDirection
from tradebook.persistence_sqlite import SQLitePersistence

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _trade(trade_id, closed_at, pnl, currency=Currency.USD, user_id="u1", entry="10.00", quantity=10, seq=0):
    return Trade(
        id=trade_id,
        user_id=user_id,
        symbol="AAPL",
        instrument=Stock(),
        currency=currency,
        direction=TradeDirection.LONG,
        quantity=quantity,
        entry_price=Decimal(entry),
        exit_price=Decimal(entry),
        opened_at=closed_at,
        closed_at=closed_at,
        realized_pnl=Decimal(pnl),
        created_at=START + timedelta(seconds=seq),
        updated_at=START + timedelta(seconds=seq),
    )


def test_sqlite_save_and_load(tmp_path: Path):
    persistence = SQLitePersistence(tmp_path / "state.db")
    trade = _trade("t1", date(2024, 5, 1), "12.34")
    trade.instrument = OptionContract(OptionType.CALL, Decimal("150"), date(2024, 6, 21))
    persistence.trades.save(trade)

    loaded = persistence.trades.find_by_id_and_user("t1", "u1")
    assert loaded == trade
    assert persistence.trades.find_by_id_and_user("t1", "someone-else") is None
    persistence.close()


def test_save_updates_in_place_and_keeps_created_at(store):
    trade = _trade("t1", date(2024, 5, 1), "1.00")
    store.trades.save(trade)
    store.trades.save(_trade("t2", date(2024, 5, 1), "2.00", seq=1))

    trade.realized_pnl = Decimal("5.00")
    trade.created_at = START + timedelta(days=30)
    store.trades.save(trade)

    loaded = store.trades.find_by_id_and_user("t1", "u1")
    assert loaded.realized_pnl == Decimal("5.00")
    assert loaded.created_at == START
    # updating does not move the row ahead of later inserts
    assert [t.id for t in store.trades.find_all_for_user("u1")] == ["t2", "t1"]


def test_listing_order_newest_close_then_newest_creation(store):
    store.trades.save(_trade("a", date(2024, 5, 1), "1", seq=0))
    store.trades.save(_trade("b", date(2024, 5, 3), "1", seq=1))
    store.trades.save(_trade("c", date(2024, 5, 1), "1", seq=2))
    assert [t.id for t in store.trades.find_all_for_user("u1")] == ["b", "c", "a"]


def test_delete_scoped_to_owner(store):
    trade = _trade("t1", date(2024, 5, 1), "1")
    store.trades.save(trade)
    store.trades.delete(_trade("t1", date(2024, 5, 1), "1", user_id="intruder"))
    assert store.trades.find_by_id_and_user("t1", "u1") is not None
    store.trades.delete(trade)
    assert store.trades.find_by_id_and_user("t1", "u1") is None


def test_find_page_and_inclusive_range(store):
    for i in range(5):
        store.trades.save(_trade(f"t{i}", date(2024, 5, 1) + timedelta(days=i), "1", seq=i))

    items, total = store.trades.find_page("u1", 0, 2)
    assert total == 5
    assert [t.id for t in items] == ["t4", "t3"]

    items, total = store.trades.find_page("u1", 2, 2, date(2024, 5, 2), date(2024, 5, 4))
    assert total == 3
    assert [t.id for t in items] == ["t1"]

    in_range = store.trades.find_by_user_and_date_range("u1", date(2024, 5, 2), date(2024, 5, 3))
    assert [t.id for t in in_range] == ["t2", "t1"]


def test_sums_convert_per_row_and_return_none_when_empty(store):
    rate = Decimal("0.5")
    assert store.trades.sum_pnl("u1", rate) is None
    assert store.trades.sum_notional("u1", rate) is None
    assert store.trades.count("u1") == 0

    store.trades.save(_trade("usd", date(2024, 5, 1), "20.00", entry="10.00", quantity=10))
    store.trades.save(_trade("cad", date(2024, 5, 2), "10.05", currency=Currency.CAD, entry="3.35", quantity=3, seq=1))

    # 10.05 CAD -> 5.025 -> 5.03 before summing
    assert store.trades.sum_pnl("u1", rate) == Decimal("25.03")
    # 100.00 + round(10.05 * 0.5)
    assert store.trades.sum_notional("u1", rate) == Decimal("105.03")
    assert store.trades.count("u1") == 2


def test_half_open_date_range(store):
    store.trades.save(_trade("apr", date(2024, 4, 30), "1.00"))
    store.trades.save(_trade("may", date(2024, 5, 31), "2.00", seq=1))
    store.trades.save(_trade("jun", date(2024, 6, 1), "4.00", seq=2))
    may = (date(2024, 5, 1), date(2024, 6, 1))
    assert store.trades.count("u1", may) == 1
    assert store.trades.sum_pnl("u1", Decimal("1"), may) == Decimal("2.00")


def test_best_day_and_month_with_ties(store):
    store.trades.save(_trade("a", date(2024, 5, 3), "30.00", seq=0))
    store.trades.save(_trade("b", date(2024, 5, 1), "10.00", seq=1))
    store.trades.save(_trade("c", date(2024, 5, 1), "20.00", seq=2))
    store.trades.save(_trade("d", date(2024, 6, 1), "60.00", seq=3))
    store.trades.save(_trade("e", date(2024, 7, 1), "-5.00", seq=4))
    rate = Decimal("1")

    best_day = store.trades.best_day("u1", rate)
    assert (best_day.period, best_day.pnl, best_day.trades) == ("2024-06-01", Decimal("60.00"), 1)

    # 05-01 and 05-03 both total 30.00; the earlier day wins
    may = (date(2024, 5, 1), date(2024, 6, 1))
    assert store.trades.best_day("u1", rate, may).period == "2024-05-01"

    # May and June both total 60.00
    best_month = store.trades.best_month("u1", rate)
    assert (best_month.period, best_month.pnl, best_month.trades) == ("2024-05", Decimal("60.00"), 3)


def test_best_period_orders_numerically(store):
    store.trades.save(_trade("a", date(2024, 5, 1), "9.00"))
    store.trades.save(_trade("b", date(2024, 5, 2), "10.00", seq=1))
    store.trades.save(_trade("c", date(2024, 5, 3), "-100.00", seq=2))
    assert store.trades.best_day("u1", Decimal("1")).period == "2024-05-02"
    assert store.trades.best_day("nobody", Decimal("1")) is None


def test_latest_closed_at(store):
    assert store.trades.latest_closed_at("u1") is None
    store.trades.save(_trade("a", date(2023, 12, 30), "1"))
    store.trades.save(_trade("b", date(2022, 1, 1), "1", seq=1))
    assert store.trades.latest_closed_at("u1") == date(2023, 12, 30)


def test_rate_history_upsert_and_lookup(store):
    rates = store.rates
    assert rates.find_latest(Currency.CAD, Currency.USD) is None

    rates.upsert(Currency.CAD, Currency.USD, date(2024, 12, 4), Decimal("0.71"))
    rates.upsert(Currency.CAD, Currency.USD, date(2024, 12, 5), Decimal("0.72"))
    rates.upsert(Currency.CAD, Currency.USD, date(2024, 12, 5), Decimal("0.73"))

    assert rates.count() == 2
    latest = rates.find_latest(Currency.CAD, Currency.USD)
    assert latest.effective_date == date(2024, 12, 5)
    assert latest.rate == Decimal("0.73")
    assert rates.find_by_date(Currency.CAD, Currency.USD, date(2024, 12, 4)).rate == Decimal("0.71")
    assert rates.find_by_date(Currency.CAD, Currency.USD, date(2024, 12, 3)) is None
    assert rates.find_latest(Currency.USD, Currency.CAD) is None


def test_kv_round_trip(store):
    assert store.kv_get("CADUSD") is None
    store.kv_put("CADUSD", "one")
    store.kv_put("CADUSD", "two")
    assert store.kv_get("CADUSD") == "two"


def test_save_stamps_missing_timestamps(store):
    trade = _trade("t1", date(2024, 5, 1), "1.00")
    trade.created_at = None
    trade.updated_at = None
    store.trades.save(trade)

    loaded = store.trades.find_by_id_and_user("t1", "u1")
    assert loaded.created_at is not None
    assert loaded.updated_at == loaded.created_at
    assert loaded == trade


def test_rate_upsert_waits_for_open_write(store):
    upserted = threading.Event()

    def refresh():
        store.rates.upsert(Currency.CAD, Currency.USD, date(2024, 12, 5), Decimal("0.8"))
        upserted.set()

    with store.transaction() as cur:
        cur.execute("INSERT INTO kv(key, value, updated_at) VALUES('pending', 'kept', 0)")
        worker = threading.Thread(target=refresh)
        worker.start()
        assert not upserted.wait(0.2)
    worker.join(5)

    assert upserted.is_set()
    assert store.kv_get("pending") == "kept"
    assert store.rates.find_latest(Currency.CAD, Currency.USD).rate == Decimal("0.8")


def test_concurrent_trade_and_rate_writes(store):
    errors = []

    def save_trades():
        try:
            for i in range(50):
                store.trades.save(_trade(f"t{i}", date(2024, 5, 1), "1.00", seq=i))
        except Exception as exc:
            errors.append(exc)

    def upsert_rates():
        try:
            for i in range(50):
                store.rates.upsert(Currency.CAD, Currency.USD, date(2024, 1, 1) + timedelta(days=i), Decimal("0.7"))
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=save_trades), threading.Thread(target=upsert_rates)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert store.trades.count("u1") == 50
    assert store.rates.count() == 50
