from asgiref.sync import sync_to_async
from django.test import TestCase

from collection.constants import APPLICANT, PARTIALLY_PAID
from collection.datasource import DataSourceError, DjangoDataSource, Write
from collection.models import ContactCallingStatus, FieldStatus

from .fixtures import DEMAND_DATE, make_application


class DjangoDataSourceTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        make_application("A")

    def setUp(self):
        self.source = DjangoDataSource()

    async def test_upsert_updates_the_matching_row(self):
        key = ("application_id", "contact_type", "demand_date")
        row = {"application_id": "A", "contact_type": APPLICANT, "demand_date": DEMAND_DATE, "status": "No response"}
        first = await self.source.upsert("contact_calling_status", row, key)
        second = await self.source.upsert("contact_calling_status", {**row, "status": "Switched off"}, key)

        self.assertEqual(first["id"], second["id"])
        self.assertEqual((await sync_to_async(ContactCallingStatus.objects.get)()).status, "Switched off")

    async def test_upsert_needs_conflict_columns(self):
        with self.assertRaises(DataSourceError):
            await self.source.upsert("contact_calling_status", {"application_id": "A"}, ["contact_type"])

    async def test_unknown_table(self):
        with self.assertRaises(DataSourceError):
            await self.source.select("loans")

    async def test_write_all_is_all_or_nothing(self):
        writes = [
            Write("field_status", {"application_id": "A", "status": PARTIALLY_PAID, "demand_date": DEMAND_DATE}),
            Write("field_status", {"application_id": "A", "status": PARTIALLY_PAID, "created_at": "not a time"}),
        ]
        with self.assertLogs("collection.datasource", level="WARNING"):
            with self.assertRaises(DataSourceError):
                await self.source.write_all(writes)
        self.assertEqual(await sync_to_async(FieldStatus.objects.count)(), 0)

        rows = await self.source.write_all(writes[:1])
        self.assertEqual([row["status"] for row in rows], [PARTIALLY_PAID])
