from __future__ import annotations

import csv
import unittest
from decimal import Decimal
from io import StringIO

from db_fixtures import DatabaseTestCase
from repairshop.services.settings_service import (
    EXPORT_HEADERS,
    export_tickets_csv,
    get_shop_settings,
    get_tax_rate,
    parse_quick_replies,
    parse_tax_percent,
    update_shop_settings,
)


class SettingsParsingTests(unittest.TestCase):
    def test_tax_percent_becomes_rate(self) -> None:
        self.assertEqual(parse_tax_percent('7'), Decimal('0.07'))
        self.assertEqual(parse_tax_percent('8.25'), Decimal('0.0825'))

    def test_tax_percent_bounds(self) -> None:
        for raw in ('-1', '101', 'abc', ''):
            with self.assertRaises(ValueError):
                parse_tax_percent(raw)

    def test_tax_percent_keeps_three_places(self) -> None:
        self.assertEqual(parse_tax_percent('8.875'), Decimal('0.08875'))
        self.assertEqual(parse_tax_percent('7.0000'), Decimal('0.07'))
        with self.assertRaises(ValueError):
            parse_tax_percent('8.8755')

    def test_quick_replies_skip_blank_rows(self) -> None:
        replies = parse_quick_replies(['Ready', '', ''], ['Your device is ready', '', 'Parts are in'])

        self.assertEqual(
            replies,
            [
                {'label': 'Ready', 'text': 'Your device is ready'},
                {'label': 'Parts are in', 'text': 'Parts are in'},
            ],
        )

    def test_quick_reply_needs_text(self) -> None:
        with self.assertRaises(ValueError):
            parse_quick_replies(['Ready'], [''])


class ShopSettingsTests(DatabaseTestCase):
    def test_defaults_until_saved(self) -> None:
        self.assertEqual(get_tax_rate(self.db), Decimal('0.07'))

        shop = get_shop_settings(self.db)

        self.assertEqual(shop.id, 1)
        self.assertEqual(shop.quick_replies, [])

    def test_update_settings(self) -> None:
        update_shop_settings(
            self.db,
            shop_name=' Fix-It Shop ',
            shop_address='1 Main St',
            shop_phone='5551234567',
            tax_percent='8.5',
            default_labor_rate='95',
            receipt_disclaimer='',
            business_hours='Mon-Fri 9-5',
            quick_replies=[{'label': 'Ready', 'text': 'Ready for pickup'}],
        )
        self.db.commit()

        self.assertEqual(get_tax_rate(self.db), Decimal('0.085'))
        shop = get_shop_settings(self.db)
        self.assertEqual(shop.shop_name, 'Fix-It Shop')
        self.assertIsNone(shop.receipt_disclaimer)
        self.assertEqual(shop.default_labor_rate, Decimal('95'))

    def test_negative_labor_rate_rejected(self) -> None:
        with self.assertRaises(ValueError):
            update_shop_settings(
                self.db,
                shop_name='Shop',
                shop_address=None,
                shop_phone=None,
                tax_percent='7',
                default_labor_rate='-10',
                receipt_disclaimer=None,
                business_hours=None,
                quick_replies=[],
            )

    def test_csv_export(self) -> None:
        ticket = self.make_ticket(is_backordered=True, estimate_total=Decimal('37.45'), serial_number='SN-9')
        self.db.commit()

        rows = list(csv.reader(StringIO(export_tickets_csv(self.db))))

        self.assertEqual(rows[0], EXPORT_HEADERS)
        self.assertEqual(rows[1][0], str(ticket.id))
        self.assertEqual(rows[1][2], 'intake')
        self.assertEqual(rows[1][7:], ['SN-9', '37.45', 'Yes'])
