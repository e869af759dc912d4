"""
test_sales_journal_service.py — Tests for ledgersync/services/sales_journal_service.py

Covers: per-line HT/TVA math and rounding, totals and tax breakdown,
regeneration idempotence and identity preservation, empty days,
both date formats, validation rules, the bounded conflict retry,
update_journals_for_order, deletion, listing and stats.

Called by: pytest
Depends on: ledgersync/services/sales_journal_service.py, conftest.make_order
"""

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.orm import Session

from conftest import wc_line
from ledgersync.config import settings
from ledgersync.errors import ConflictError, NotFoundError, ValidationError
from ledgersync.models import DocumentNumber, SalesJournal
from ledgersync.services import numbering_service
from ledgersync.services import sales_journal_service as sjs
from ledgersync.utils.retry import RetryPolicy

DAY = date(2026, 3, 18)


@pytest.fixture()
def no_retry_sleep():
    with patch("ledgersync.utils.retry.time.sleep") as sleep:
        yield sleep


# ── Line math ──────────────────────────────────────────────────────────


class TestBuildJournalLine:
    def test_ht_and_tax_from_ttc(self, make_order):
        order = make_order(line_items=[wc_line(total="83.33", total_tax="16.67")])
        line = sjs.build_journal_line(order, order.line_items[0], 20)
        assert line["total_ttc"] == "100.00"
        assert line["total_ht"] == "83.33"
        assert line["tax_amount"] == "16.67"
        assert line["tax_rate"] == 20

    def test_identity_fields(self, make_order):
        order = make_order(order_id=555, line_items=[wc_line(line_id=9, product_id=77, sku="")])
        line = sjs.build_journal_line(order, order.line_items[0], 20)
        assert line["id"] == "555-9"
        assert line["order_id"] == 555
        assert line["order_number"] == "555"
        assert line["sku"] == "PROD-77"
        assert line["customer_name"] == "Amina Benali"
        assert line["customer_email"] == "amina@example.com"

    def test_unit_prices_divide_by_quantity(self, make_order):
        order = make_order(line_items=[wc_line(total="100.00", total_tax="10.00", quantity=2)])
        line = sjs.build_journal_line(order, order.line_items[0], 10)
        assert line["total_ttc"] == "110.00"
        assert line["unit_price_ttc"] == "55.00"
        assert line["total_ht"] == "100.00"
        assert line["unit_price_ht"] == "50.00"

    def test_zero_quantity_does_not_divide_by_zero(self, make_order):
        order = make_order(line_items=[wc_line(total="10.00", total_tax="0.00", quantity=0)])
        line = sjs.build_journal_line(order, order.line_items[0], 0)
        assert line["unit_price_ttc"] == "10.00"

    def test_guest_without_billing(self, make_order):
        order = make_order(billing={})
        line = sjs.build_journal_line(order, order.line_items[0], 20)
        assert line["customer_name"] == "Unknown Customer"
        assert line["customer_email"] is None


class TestComputeTotals:
    def test_sums_rounded_lines(self):
        lines = [
            {"total_ht": "83.33", "total_ttc": "100.00", "tax_amount": "16.67", "tax_rate": 20},
            {"total_ht": "83.33", "total_ttc": "100.00", "tax_amount": "16.67", "tax_rate": 20},
        ]
        totals = sjs.compute_totals(lines)
        assert totals["total_ht"] == "166.66"
        assert totals["total_ttc"] == "200.00"
        assert totals["total_tax"] == "33.34"
        assert totals["tax_breakdown"] == [{"rate": 20, "base": "166.66", "amount": "33.34"}]

    def test_breakdown_sorted_and_zero_base_dropped(self):
        lines = [
            {"total_ht": "50.00", "total_ttc": "60.00", "tax_amount": "10.00", "tax_rate": 20},
            {"total_ht": "0.00", "total_ttc": "0.00", "tax_amount": "0.00", "tax_rate": 10},
            {"total_ht": "30.00", "total_ttc": "30.00", "tax_amount": "0.00", "tax_rate": 0},
        ]
        breakdown = sjs.compute_totals(lines)["tax_breakdown"]
        assert [b["rate"] for b in breakdown] == [0, 20]

    def test_empty(self):
        totals = sjs.compute_totals([])
        assert totals == {"total_ht": "0.00", "total_ttc": "0.00", "total_tax": "0.00", "tax_breakdown": []}


# ── Generation ─────────────────────────────────────────────────────────


class TestGenerateJournal:
    def test_no_orders_no_journal(self, db_session: Session, tax_cache):
        journal, found = sjs.generate_journal(db_session, DAY, tax_cache)
        assert (journal, found) == (None, False)
        assert db_session.query(SalesJournal).count() == 0
        assert db_session.query(DocumentNumber).count() == 0

    def test_two_orders_rounding(self, db_session: Session, make_order, tax_cache):
        make_order(101)
        make_order(102, date_created="2026-03-18T18:45:00")
        journal, found = sjs.generate_journal(db_session, DAY, tax_cache)
        assert found is True
        assert journal.number == "JV-2026-0001"
        assert journal.status == "draft"
        assert journal.orders_included == [101, 102]
        assert journal.totals["total_ht"] == "166.66"
        assert journal.totals["total_ttc"] == "200.00"
        assert journal.totals["total_tax"] == "33.34"
        assert len(journal.lines) == 2
        assert journal.notes == (
            "Sales journal generated automatically for 18/03/2026. "
            "Includes 2 order(s) and 2 product line(s)."
        )

    def test_number_bound_to_journal_id(self, db_session: Session, make_order, tax_cache):
        make_order()
        journal, _ = sjs.generate_journal(db_session, DAY, tax_cache)
        assert numbering_service.get_number_by_entity_id(db_session, journal.id) == journal.number
        assert numbering_service.validate_number(db_session, journal.number)

    def test_only_orders_of_that_day(self, db_session: Session, make_order, tax_cache):
        make_order(101, date_created="2026-03-18T00:00:00")
        make_order(102, date_created="2026-03-18T23:59:59")
        make_order(103, date_created="2026-03-19T00:00:00")
        make_order(104, date_created="2026-03-17T23:59:59")
        journal, _ = sjs.generate_journal(db_session, DAY, tax_cache)
        assert journal.orders_included == [101, 102]

    def test_both_date_formats(self, db_session: Session, make_order, tax_cache):
        make_order()
        iso, _ = sjs.generate_journal(db_session, "2026-03-18", tax_cache)
        fr, _ = sjs.generate_journal(db_session, "18/03/2026", tax_cache)
        assert iso.id == fr.id
        assert fr.date == DAY

    def test_invalid_date(self, db_session: Session, tax_cache):
        with pytest.raises(ValidationError):
            sjs.generate_journal(db_session, "18-03-2026", tax_cache)

    def test_idempotent(self, db_session: Session, make_order, tax_cache):
        make_order(101)
        make_order(102)
        first, _ = sjs.generate_journal(db_session, DAY, tax_cache)
        snapshot = (first.id, first.number, first.created_at, dict(first.totals), list(first.lines))
        second, _ = sjs.generate_journal(db_session, DAY, tax_cache)
        assert (second.id, second.number, second.created_at, second.totals, second.lines) == snapshot
        assert db_session.query(SalesJournal).count() == 1
        assert db_session.query(DocumentNumber).count() == 1

    def test_regeneration_keeps_identity_and_status(self, db_session: Session, make_order, tax_cache):
        order = make_order()
        journal, _ = sjs.generate_journal(db_session, DAY, tax_cache)
        sjs.validate_journal(db_session, journal.id)
        journal_id, number = journal.id, journal.number

        order.line_items = [
            {**order.line_items[0], "total": "166.67", "total_tax": "33.33"}
        ]
        db_session.commit()

        again, _ = sjs.generate_journal(db_session, DAY, tax_cache)
        assert again.id == journal_id
        assert again.number == number
        assert again.status == "validated"
        assert again.totals["total_ttc"] == "200.00"

    def test_line_rate_from_class(self, db_session: Session, make_order, tax_cache):
        make_order(line_items=[wc_line(total="100.00", total_tax="10.00", tax_class="reduced-rate")])
        journal, _ = sjs.generate_journal(db_session, DAY, tax_cache)
        line = journal.lines[0]
        assert line["tax_rate"] == 10
        assert line["total_ht"] == "100.00"
        assert line["tax_amount"] == "10.00"

    def test_line_rate_inferred_when_class_missing(self, db_session: Session, make_order, tax_cache):
        item = wc_line(total="100.00", total_tax="21.00")
        del item["tax_class"]
        make_order(line_items=[item])
        journal, _ = sjs.generate_journal(db_session, DAY, tax_cache)
        assert journal.lines[0]["tax_rate"] == 20
        assert journal.lines[0]["total_ttc"] == "121.00"
        assert journal.lines[0]["total_ht"] == "100.83"
        assert journal.lines[0]["tax_amount"] == "20.17"

    def test_mixed_rates_breakdown(self, db_session: Session, make_order, tax_cache):
        make_order(
            line_items=[
                wc_line(1, 10, total="83.33", total_tax="16.67"),
                wc_line(2, 11, total="100.00", total_tax="7.00", tax_class="super-reduced-rate"),
                wc_line(3, 12, total="40.00", total_tax="0.00", tax_class="zero-rate"),
            ]
        )
        journal, _ = sjs.generate_journal(db_session, DAY, tax_cache)
        breakdown = journal.totals["tax_breakdown"]
        assert [b["rate"] for b in breakdown] == [0, 7, 20]
        assert sum(Decimal(b["base"]) + Decimal(b["amount"]) for b in breakdown) == Decimal(
            journal.totals["total_ttc"]
        )


class TestConflictRetry:
    def test_retries_then_saves(self, db_session: Session, make_order, tax_cache, no_retry_sleep):
        make_order()
        real_save = sjs.save_journal
        save = MagicMock(
            side_effect=[ConflictError("date taken"), ConflictError("date taken"), real_save]
        )

        def flaky_save(db, journal):
            outcome = save(db, journal)
            return outcome(db, journal) if callable(outcome) else outcome

        with patch.object(sjs, "save_journal", side_effect=flaky_save):
            journal, found = sjs.generate_journal(db_session, DAY, tax_cache)

        assert found is True
        assert save.call_count == 3
        assert no_retry_sleep.call_count == 2
        assert db_session.query(SalesJournal).count() == 1
        # Numbers bound to the two unsaved attempts were released
        assert numbering_service.validate_number(db_session, journal.number)
        live = db_session.query(DocumentNumber).filter(DocumentNumber.released_at.is_(None)).count()
        assert live == 1

    def test_gives_up_after_budget(self, db_session: Session, make_order, tax_cache, no_retry_sleep):
        make_order()
        with patch.object(sjs, "save_journal", side_effect=ConflictError("date taken")) as save:
            with pytest.raises(ConflictError):
                sjs.generate_journal(db_session, DAY, tax_cache)
        assert save.call_count == settings.journal_save_max_attempts
        assert db_session.query(SalesJournal).count() == 0

    def test_single_attempt_policy(self, db_session: Session, make_order, tax_cache, no_retry_sleep):
        make_order()
        with patch.object(sjs, "save_journal", side_effect=ConflictError("date taken")) as save:
            with pytest.raises(ConflictError):
                sjs.update_journals_for_order(
                    db_session, 101, tax_cache, order_date=DAY, policy=RetryPolicy(attempts=1)
                )
        assert save.call_count == 1
        no_retry_sleep.assert_not_called()
        live = db_session.query(DocumentNumber).filter(DocumentNumber.released_at.is_(None)).count()
        assert live == 0

    def test_unique_date_surfaces_as_conflict(self, db_session: Session, make_order, tax_cache):
        make_order()
        db_session.add(
            SalesJournal(id="other", number="JV-2026-0900", date=DAY, orders_included=[], lines=[], totals={})
        )
        db_session.commit()
        duplicate = SalesJournal(
            id="dupe", number="JV-2026-0901", date=DAY, orders_included=[], lines=[], totals={}
        )
        with pytest.raises(ConflictError):
            sjs.save_journal(db_session, duplicate)


# ── Order-driven refresh ───────────────────────────────────────────────


class TestUpdateJournalsForOrder:
    def test_regenerates_containing_journal(self, db_session: Session, make_order, tax_cache):
        order = make_order()
        journal, _ = sjs.generate_journal(db_session, DAY, tax_cache)
        order.line_items = [{**order.line_items[0], "total": "50.00", "total_tax": "10.00"}]
        db_session.commit()

        refreshed = sjs.update_journals_for_order(db_session, order.external_id, tax_cache)
        assert [j.id for j in refreshed] == [journal.id]
        assert refreshed[0].totals["total_ttc"] == "60.00"

    def test_creates_journal_for_order_date(self, db_session: Session, make_order, tax_cache):
        order = make_order()
        refreshed = sjs.update_journals_for_order(
            db_session, order.external_id, tax_cache, order_date=DAY
        )
        assert len(refreshed) == 1
        assert refreshed[0].orders_included == [order.external_id]

    def test_no_journal_without_date(self, db_session: Session, make_order, tax_cache):
        order = make_order()
        assert sjs.update_journals_for_order(db_session, order.external_id, tax_cache) == []
        assert db_session.query(SalesJournal).count() == 0

    def test_conflict_propagates(self, db_session: Session, make_order, tax_cache):
        order = make_order()
        sjs.generate_journal(db_session, DAY, tax_cache)
        with patch.object(sjs, "generate_journal", side_effect=ConflictError("busy")):
            with pytest.raises(ConflictError):
                sjs.update_journals_for_order(db_session, order.external_id, tax_cache)

    def test_other_failures_logged_and_skipped(self, db_session: Session, make_order, tax_cache):
        order = make_order()
        sjs.generate_journal(db_session, DAY, tax_cache)
        with patch.object(sjs, "generate_journal", side_effect=RuntimeError("boom")):
            assert sjs.update_journals_for_order(db_session, order.external_id, tax_cache) == []


# ── Lifecycle ──────────────────────────────────────────────────────────


class TestValidateJournal:
    def test_draft_to_validated(self, db_session: Session, make_order, tax_cache):
        make_order()
        journal, _ = sjs.generate_journal(db_session, DAY, tax_cache)
        assert sjs.validate_journal(db_session, journal.id).status == "validated"

    def test_twice_refused(self, db_session: Session, make_order, tax_cache):
        make_order()
        journal, _ = sjs.generate_journal(db_session, DAY, tax_cache)
        sjs.validate_journal(db_session, journal.id)
        with pytest.raises(ValidationError):
            sjs.validate_journal(db_session, journal.id)

    def test_missing(self, db_session: Session):
        with pytest.raises(NotFoundError):
            sjs.validate_journal(db_session, "nope")

    def test_other_journal_for_same_date(self, db_session: Session, make_order, tax_cache):
        make_order()
        journal, _ = sjs.generate_journal(db_session, DAY, tax_cache)
        rival = SalesJournal(id="rival", number="JV-2026-0099", date=DAY, status="validated")
        with patch.object(sjs, "get_journal_by_date", return_value=rival):
            with pytest.raises(ConflictError):
                sjs.validate_journal(db_session, journal.id)
        assert sjs.get_journal(db_session, journal.id).status == "draft"


def test_delete_journal_releases_number(db_session: Session, make_order, tax_cache):
    make_order()
    journal, _ = sjs.generate_journal(db_session, DAY, tax_cache)
    number = journal.number
    assert sjs.delete_journal(db_session, journal.id) is True
    assert sjs.get_journal(db_session, journal.id) is None
    assert numbering_service.validate_number(db_session, number) is False
    assert sjs.delete_journal(db_session, journal.id) is False

    regenerated, _ = sjs.generate_journal(db_session, DAY, tax_cache)
    assert regenerated.number == "JV-2026-0002"


# ── Lookups ────────────────────────────────────────────────────────────


class TestLookups:
    def _three_days(self, db_session, make_order, tax_cache):
        for order_id, day in ((1, "2026-03-16"), (2, "2026-03-17"), (3, "2026-03-18")):
            make_order(order_id, date_created=f"{day}T12:00:00")
            sjs.generate_journal(db_session, day, tax_cache)

    def test_list_newest_first(self, db_session: Session, make_order, tax_cache):
        self._three_days(db_session, make_order, tax_cache)
        rows, total = sjs.list_journals(db_session, limit=2)
        assert total == 3
        assert [j.date for j in rows] == [date(2026, 3, 18), date(2026, 3, 17)]

    def test_range_inclusive(self, db_session: Session, make_order, tax_cache):
        self._three_days(db_session, make_order, tax_cache)
        rows = sjs.journals_for_range(db_session, "17/03/2026", "2026-03-18")
        assert [j.date for j in rows] == [date(2026, 3, 17), date(2026, 3, 18)]

    def test_range_reversed(self, db_session: Session):
        with pytest.raises(ValidationError):
            sjs.journals_for_range(db_session, "2026-03-18", "2026-03-17")

    def test_containing_order(self, db_session: Session, make_order, tax_cache):
        self._three_days(db_session, make_order, tax_cache)
        rows = sjs.journals_containing_order(db_session, 2)
        assert [j.date for j in rows] == [date(2026, 3, 17)]

    def test_stats(self, db_session: Session, make_order, tax_cache):
        self._three_days(db_session, make_order, tax_cache)
        first = sjs.get_journal_by_date(db_session, "2026-03-16")
        sjs.validate_journal(db_session, first.id)
        stats = sjs.journal_stats(db_session)
        assert stats == {
            "total": 3,
            "draft": 2,
            "validated": 1,
            "total_value": "300.00",
            "total_lines": 3,
        }

    def test_preview_number(self, db_session: Session, make_order, tax_cache):
        assert sjs.preview_journal_number(db_session, 2026) == "JV-2026-0001"
        make_order()
        sjs.generate_journal(db_session, DAY, tax_cache)
        assert sjs.preview_journal_number(db_session, 2026) == "JV-2026-0002"
