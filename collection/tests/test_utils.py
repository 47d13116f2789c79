from datetime import date, datetime

from django.test import SimpleTestCase

from collection.utils import (
    chunked,
    clean_ids,
    is_valid_period,
    month_range,
    normalize_period,
    parse_date,
    period_demand_date,
)


class PeriodTests(SimpleTestCase):
    def test_valid_periods(self):
        self.assertTrue(is_valid_period("2025-06"))
        for value in ("2025-6", "2025-13", "June", None, 202506):
            self.assertFalse(is_valid_period(value))

    def test_month_range(self):
        self.assertEqual(month_range("2024-02"), (date(2024, 2, 1), date(2024, 2, 29)))
        with self.assertRaises(ValueError):
            month_range("2024-2")

    def test_demand_date_is_the_fifth(self):
        self.assertEqual(period_demand_date("2025-06"), date(2025, 6, 5))

    def test_normalize_period(self):
        self.assertEqual(normalize_period("Jun-25"), "2025-06")
        self.assertEqual(normalize_period("2025-06-05"), "2025-06")
        self.assertEqual(normalize_period(date(2025, 1, 9)), "2025-01")
        self.assertIsNone(normalize_period("someday"))


class HelperTests(SimpleTestCase):
    def test_parse_date(self):
        self.assertEqual(parse_date("2025-06-20"), date(2025, 6, 20))
        self.assertEqual(parse_date(datetime(2025, 6, 20, 8, 0)), date(2025, 6, 20))
        self.assertIsNone(parse_date("20/06/2025"))

    def test_clean_ids(self):
        self.assertEqual(clean_ids(["B", " A ", "", None, "B", 7]), ["B", "A"])

    def test_chunked(self):
        self.assertEqual(list(chunked([1, 2, 3, 4, 5], 2)), [[1, 2], [3, 4], [5]])
