from datetime import date

from django.test import SimpleTestCase

from collection.analytics import branch_payment_stats, branch_ptp_stats, collection_summary, status_counts
from collection.constants import (
    AUDIT_FIELD_PTP,
    AUDIT_FIELD_STATUS,
    CASH_COLLECTED,
    PAID,
    PAID_PENDING_APPROVAL,
    PARTIALLY_PAID,
    STATUSES,
    UNPAID,
)

from .fixtures import aware

TODAY = date(2025, 6, 15)

ROWS = [
    {"branch_name": "Pune", "rm_name": "Ravi", "collection_rm": None, "status": UNPAID, "ptp_date": date(2025, 6, 10)},
    {"branch_name": "Pune", "rm_name": "Ravi", "collection_rm": "Dev", "status": PARTIALLY_PAID, "ptp_date": date(2025, 6, 15)},
    {"branch_name": "Pune", "rm_name": "Kiran", "collection_rm": None, "status": PAID, "ptp_date": date(2025, 6, 16)},
    {"branch_name": "Pune", "rm_name": "Ravi", "collection_rm": None, "status": None, "ptp_date": date(2025, 6, 16)},
    {"branch_name": "Nashik", "rm_name": "", "collection_rm": None, "status": CASH_COLLECTED, "ptp_date": None},
]


class StatusCountsTests(SimpleTestCase):
    def test_counts_every_status(self):
        counts = status_counts(ROWS)
        self.assertEqual(counts["total"], 5)
        self.assertEqual(counts[UNPAID], 2)
        self.assertEqual(counts[PAID], 1)
        self.assertEqual(set(counts), {"total", *STATUSES})

    def test_empty(self):
        self.assertEqual(status_counts([])["total"], 0)


class BranchPtpStatsTests(SimpleTestCase):
    def test_paid_applications_are_left_out(self):
        stats = branch_ptp_stats(ROWS, TODAY)

        self.assertEqual([branch["branch_name"] for branch in stats], ["Pune", "Nashik"])
        pune = stats[0]["total_stats"]
        self.assertEqual(pune["total"], 3)
        self.assertEqual((pune["overdue"], pune["today"], pune["tomorrow"], pune["future"]), (1, 1, 1, 0))

        nashik = stats[1]
        self.assertEqual(nashik["total_stats"]["no_ptp_set"], 1)
        self.assertEqual(nashik["rm_stats"][0]["rm_name"], "Unknown RM")

    def test_rm_stats_prefer_collection_rm_and_sort_by_total(self):
        pune = branch_ptp_stats(ROWS, TODAY)[0]
        self.assertEqual([(rm["rm_name"], rm["total"]) for rm in pune["rm_stats"]], [("Ravi", 2), ("Dev", 1)])


class BranchPaymentStatsTests(SimpleTestCase):
    def test_payment_columns(self):
        stats = branch_payment_stats(ROWS)
        pune = stats[0]["total_stats"]
        self.assertEqual(pune["total"], 4)
        self.assertEqual((pune["unpaid"], pune["partially_paid"], pune["paid"]), (2, 1, 1))
        self.assertEqual(stats[1]["total_stats"]["others"], 1)


class CollectionSummaryTests(SimpleTestCase):
    rows = [
        {"applicant_id": "A", "branch_name": "Pune", "rm_name": "Ravi", "collection_rm": None},
        {"applicant_id": "B", "branch_name": "Pune", "rm_name": "Ravi", "collection_rm": "Dev"},
        {"applicant_id": "C", "branch_name": "Nashik", "rm_name": "Kiran", "collection_rm": None},
    ]

    def log(self, application_id, new_value, created_at, field=AUDIT_FIELD_STATUS):
        return {"application_id": application_id, "field": field, "new_value": new_value, "created_at": created_at}

    def test_daily_collections_by_branch_and_rm(self):
        logs = [
            self.log("A", PARTIALLY_PAID, aware(2025, 6, 10, 10)),
            self.log("A", CASH_COLLECTED, aware(2025, 6, 10, 15)),
            self.log("A", PARTIALLY_PAID, aware(2025, 6, 11, 23, 30)),
            self.log("B", PAID_PENDING_APPROVAL, aware(2025, 6, 11, 9)),
            self.log("B", "2025-06-20", aware(2025, 6, 12), field=AUDIT_FIELD_PTP),
            self.log("C", UNPAID, aware(2025, 6, 12)),
            self.log("Z", PARTIALLY_PAID, aware(2025, 6, 12)),
        ]
        summary = collection_summary(self.rows, logs)

        self.assertEqual(summary["dates"], ["2025-06-10", "2025-06-11"])
        self.assertEqual(len(summary["branches"]), 1)
        pune = summary["branches"][0]
        self.assertEqual(pune["branch_name"], "Pune")
        self.assertEqual(pune["total_stats"]["total"], 4)
        self.assertEqual(pune["total_stats"]["daily_counts"], {"2025-06-10": 2, "2025-06-11": 2})
        self.assertEqual([(rm["rm_name"], rm["total"]) for rm in pune["rm_stats"]], [("Ravi", 3), ("Dev", 1)])
        self.assertEqual(pune["rm_stats"][1]["daily_counts"], {"2025-06-10": 0, "2025-06-11": 1})

    def test_no_collections(self):
        self.assertEqual(collection_summary(self.rows, []), {"dates": [], "branches": []})
