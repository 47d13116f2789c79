import asyncio
from datetime import date

from asgiref.sync import sync_to_async
from django.test import SimpleTestCase, TestCase

from collection.board import BoardSnapshot, CollectionBoard, emi_months, merge_month, search_rows, sort_rows
from collection.constants import (
    APPLICANT,
    NOT_CALLED,
    PAID,
    PARTIALLY_PAID,
    PTP_NONE,
    PTP_TOMORROW,
    UNPAID,
)
from collection.datasource import DataSourceError, DjangoDataSource
from collection.models import Comment, ContactCallingStatus, FieldStatus, PtpDate

from .fixtures import DEMAND_DATE, PERIOD, aware, make_application, make_collection

TODAY = date(2025, 6, 15)
THROTTLE = 0.05


class UnavailableSource(DjangoDataSource):
    async def select(self, table, **kwargs):
        raise DataSourceError(f"select on {table} failed")


class RowHelpersTests(SimpleTestCase):
    rows = [
        {"applicant_id": "APP-2", "applicant_name": "Zoya", "emi_amount": 300},
        {"applicant_id": "APP-1", "applicant_name": "arjun", "emi_amount": None},
        {"applicant_id": "APP-3", "applicant_name": "Bala", "emi_amount": 100},
    ]

    def test_search_matches_name_or_id(self):
        self.assertEqual([r["applicant_id"] for r in search_rows(self.rows, "ARJ")], ["APP-1"])
        self.assertEqual([r["applicant_id"] for r in search_rows(self.rows, "app-3")], ["APP-3"])
        self.assertEqual(len(search_rows(self.rows, "  ")), 3)

    def test_sort_puts_missing_values_last(self):
        self.assertEqual([r["applicant_id"] for r in sort_rows(list(self.rows), "emi_amount")], ["APP-3", "APP-2", "APP-1"])
        self.assertEqual([r["applicant_id"] for r in sort_rows(list(self.rows), "-emi_amount")], ["APP-2", "APP-3", "APP-1"])
        self.assertEqual(sort_rows(list(self.rows), None), self.rows)

    def test_month_values_override_application_values(self):
        merged = merge_month(
            {"applicant_id": "APP-1", "rm_name": "Ravi", "team_lead": "Asha", "emi_amount": 100},
            {"application_id": "APP-1", "rm_name": "Kiran", "team_lead": None, "emi_amount": 250, "id": 9},
        )
        self.assertEqual(merged["rm_name"], "Kiran")
        self.assertEqual(merged["team_lead"], "Asha")
        self.assertEqual(merged["emi_amount"], 250)
        self.assertNotIn("application_id", merged)
        self.assertNotIn("id", merged)


class CollectionBoardTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        make_application("A", applicant_name="Anil", branch_name="Pune", rm_name="Ravi")
        make_application("B", applicant_name="Bhavna", branch_name="Pune", rm_name="Kiran")
        make_application("C", applicant_name="Chetan", branch_name="Nashik", rm_name="Ravi")
        make_application("D", applicant_name="Deepa", demand_date=date(2025, 5, 5))
        make_collection("C", UNPAID)
        make_collection("D", UNPAID, demand_date=date(2025, 5, 5))

        make_collection("A", PAID)
        FieldStatus.objects.create(application_id="A", status=UNPAID, demand_date=DEMAND_DATE)
        FieldStatus.objects.create(application_id="B", status=PARTIALLY_PAID, demand_date=DEMAND_DATE)
        make_collection("B", UNPAID)
        PtpDate.objects.create(application_id="B", ptp_date=date(2025, 6, 16), demand_date=DEMAND_DATE)
        ContactCallingStatus.objects.create(
            application_id="C", contact_type=APPLICANT, status="No response", demand_date=DEMAND_DATE
        )
        for day in (6, 7, 8):
            Comment.objects.create(
                application_id="C", content=f"note {day}", demand_date=DEMAND_DATE, created_at=aware(2025, 6, day)
            )

    def make_board(self, source=None):
        return CollectionBoard(source=source, throttle=THROTTLE, resume_delay=THROTTLE, comment_limit=2)

    async def test_load_builds_rows_for_the_month(self):
        board = self.make_board()
        snapshot = await board.load(PERIOD, today=TODAY)

        self.assertEqual(snapshot.ids, ["A", "B", "C"])
        self.assertEqual(snapshot.total, 3)
        self.assertFalse(snapshot.stale)
        by_id = {row["applicant_id"]: row for row in snapshot.rows}
        self.assertEqual(by_id["A"]["status"], PAID)
        self.assertEqual(by_id["B"]["status"], PARTIALLY_PAID)
        self.assertEqual(by_id["C"]["status"], UNPAID)
        self.assertEqual(by_id["B"]["ptp_bucket"], PTP_TOMORROW)
        self.assertEqual(by_id["A"]["ptp_bucket"], PTP_NONE)
        self.assertEqual(by_id["C"]["calling_status"][APPLICANT], "No response")
        self.assertEqual(by_id["A"]["calling_status"][APPLICANT], NOT_CALLED)
        self.assertEqual([c["content"] for c in by_id["C"]["recent_comments"]], ["note 8", "note 7"])
        self.assertEqual(snapshot.status_counts["total"], 3)
        self.assertEqual(snapshot.status_counts[PAID], 1)

    async def test_load_applies_criteria_search_and_ordering(self):
        board = self.make_board()
        snapshot = await board.load(PERIOD, {"rm": ["Ravi"]}, ordering="-applicant_name", today=TODAY)
        self.assertEqual(snapshot.ids, ["C", "A"])
        self.assertEqual(snapshot.total, 3)
        self.assertEqual(snapshot.available_options["rm"], ["Ravi", "Kiran"])
        self.assertEqual(snapshot.available_options["branch"], ["Pune", "Nashik"])

        snapshot = await board.load(PERIOD, search="bhav", today=TODAY)
        self.assertEqual(snapshot.ids, ["B"])

    async def test_unavailable_source_gives_stale_snapshot(self):
        board = self.make_board(UnavailableSource())
        with self.assertLogs("collection.board", level="ERROR"):
            snapshot = await board.load(PERIOD)
        self.assertTrue(snapshot.stale)
        self.assertEqual(snapshot.rows, [])

    async def test_failed_reload_keeps_last_snapshot(self):
        board = self.make_board()
        loaded = await board.load(PERIOD, today=TODAY)
        board.source = UnavailableSource()
        with self.assertLogs("collection.board", level="ERROR"):
            snapshot = await board.load(PERIOD)
        self.assertIs(snapshot, loaded)
        self.assertTrue(snapshot.stale)

    async def test_invalid_period_gives_empty_stale_snapshot(self):
        board = self.make_board()
        with self.assertLogs("collection.board", level="WARNING"):
            snapshot = await board.load("2025-6")
        self.assertTrue(snapshot.stale)
        self.assertEqual(snapshot.period, "2025-6")
        self.assertEqual(snapshot.rows, [])
        self.assertIsNone(board.snapshot)

    async def test_mount_refreshes_on_change_and_unmount_stops(self):
        board = self.make_board()
        refreshed = asyncio.Queue()

        snapshot = await board.mount(PERIOD, on_refresh=refreshed.put_nowait)
        self.assertIsInstance(snapshot, BoardSnapshot)
        self.assertEqual(board.router.visible_ids, frozenset(["A", "B", "C"]))

        await sync_to_async(FieldStatus.objects.create)(application_id="C", status=PAID, demand_date=DEMAND_DATE)
        refreshed_snapshot = await asyncio.wait_for(refreshed.get(), 2)
        by_id = {row["applicant_id"]: row for row in refreshed_snapshot.rows}
        self.assertEqual(by_id["C"]["status"], PAID)

        router = board.router
        await board.unmount()
        self.assertIsNone(board.router)
        self.assertEqual(router.pending_timers, 0)
        self.assertFalse(board.alive)
        self.assertIsNone(await board.refresh())

    async def test_changes_to_other_applications_are_ignored(self):
        board = self.make_board()
        calls = []
        await board.mount(PERIOD, {"branch": ["Nashik"]}, on_refresh=calls.append)

        await sync_to_async(FieldStatus.objects.create)(application_id="A", status=PAID, demand_date=DEMAND_DATE)
        await asyncio.sleep(THROTTLE * 4)

        self.assertEqual(calls, [])
        await board.unmount()

    async def test_resume_refreshes_once(self):
        board = self.make_board()
        calls = []
        await board.mount(PERIOD, on_refresh=calls.append)

        self.assertTrue(board.pause())
        self.assertTrue(board.resume())
        await asyncio.sleep(THROTTLE * 6)

        self.assertEqual(len(calls), 1)
        await board.unmount()


class MonthRowsTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        make_application("A", applicant_name="Anil", rm_name="Ravi", demand_date=date(2025, 5, 5))
        make_collection("A", UNPAID, demand_date=date(2025, 5, 5), rm_name="Ravi", last_month_bounce=0)
        make_collection("A", PAID, demand_date=DEMAND_DATE, rm_name="Kiran", collection_rm="Meena", last_month_bounce=1)
        make_application("B", applicant_name="Bhavna", demand_date=DEMAND_DATE)

    async def test_application_shows_in_every_month_it_has_a_collection_row(self):
        board = CollectionBoard()
        june = await board.load("2025-06", today=TODAY)
        self.assertEqual(june.ids, ["A"])
        row = june.rows[0]
        self.assertEqual(row["rm_name"], "Kiran")
        self.assertEqual(row["collection_rm"], "Meena")
        self.assertEqual(row["last_month_bounce"], 1)
        self.assertEqual(row["demand_date"], DEMAND_DATE)
        self.assertEqual(row["status"], PAID)

        may = await board.load("2025-05", today=TODAY)
        self.assertEqual(may.ids, ["A"])
        self.assertEqual(may.rows[0]["rm_name"], "Ravi")
        self.assertEqual(may.rows[0]["status"], UNPAID)

    async def test_month_without_collection_rows_is_empty(self):
        snapshot = await CollectionBoard().load("2025-07", today=TODAY)
        self.assertEqual(snapshot.rows, [])
        self.assertFalse(snapshot.stale)

    async def test_emi_months_latest_first(self):
        await sync_to_async(make_collection)("B", UNPAID, demand_date=date(2024, 12, 5))
        self.assertEqual(await emi_months(DjangoDataSource()), ["2025-06", "2025-05", "2024-12"])
