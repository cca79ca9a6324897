from __future__ import annotations

import unittest
from decimal import Decimal
from types import SimpleNamespace

from repairshop.services.estimate_service import (
    compute_estimate_totals,
    is_labor_line,
    labor_description,
    line_total,
)


class EstimateCalculatorTests(unittest.TestCase):
    def test_single_line_with_default_rate(self) -> None:
        totals = compute_estimate_totals([{'part_cost': 20, 'labor_cost': 15}])

        self.assertEqual(totals.subtotal, Decimal('35'))
        self.assertEqual(totals.tax, Decimal('2.45'))
        self.assertEqual(totals.total, Decimal('37.45'))
        self.assertEqual(totals.tax_rate, Decimal('0.07'))

    def test_multiple_lines_use_given_rate(self) -> None:
        items = [
            {'part_cost': '10.50', 'labor_cost': '0'},
            {'part_cost': '0', 'labor_cost': '89.50'},
        ]

        totals = compute_estimate_totals(items, Decimal('0.10'))

        self.assertEqual(totals.subtotal, Decimal('100.00'))
        self.assertEqual(totals.tax, Decimal('10.0000'))
        self.assertEqual(totals.total, Decimal('110.0000'))

    def test_empty_estimate_is_zero(self) -> None:
        totals = compute_estimate_totals([])

        self.assertEqual(totals.subtotal, Decimal('0'))
        self.assertEqual(totals.total, Decimal('0'))

    def test_missing_and_malformed_costs_count_as_zero(self) -> None:
        items = [
            {'part_cost': None, 'labor_cost': 'abc'},
            {'labor_cost': '5'},
            SimpleNamespace(part_cost='not-a-number', labor_cost=Decimal('5')),
        ]

        totals = compute_estimate_totals(items, Decimal('0'))

        self.assertEqual(totals.subtotal, Decimal('10'))
        self.assertEqual(totals.total, Decimal('10'))

    def test_accepts_objects(self) -> None:
        item = SimpleNamespace(part_cost=Decimal('12.00'), labor_cost=Decimal('3.00'))

        self.assertEqual(line_total(item), Decimal('15.00'))

    def test_labor_prefix(self) -> None:
        self.assertEqual(labor_description('Motor swap'), '(Labor) Motor swap')
        self.assertEqual(labor_description('(Labor) Motor swap'), '(Labor) Motor swap')
        self.assertTrue(is_labor_line('(Labor) Motor swap'))
        self.assertFalse(is_labor_line('Brush Roll'))
