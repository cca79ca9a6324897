from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

from sqlalchemy import select

from db_fixtures import DatabaseTestCase
from repairshop.models import AuditLog, EstimateApproval, EstimateItem, EstimateStatus, TicketStatus
from repairshop.services import estimate_service
from repairshop.services.audit_service import list_ticket_events


class EstimateEditingTests(DatabaseTestCase):
    def test_add_item_refreshes_cached_total(self) -> None:
        ticket = self.make_ticket()

        estimate_service.add_item(
            self.db, ticket=ticket, description='Brush Roll', part_cost='20', labor_cost='15', actor_name='Taylor'
        )

        self.assertEqual(ticket.estimate_total, Decimal('37.45'))

    def test_labor_item_is_prefixed(self) -> None:
        ticket = self.make_ticket()

        item = estimate_service.add_item(
            self.db, ticket=ticket, description='Motor swap', labor_cost='85', is_labor=True, actor_name='Taylor'
        )

        self.assertEqual(item.description, '(Labor) Motor swap')
        self.assertEqual(item.part_cost, Decimal('0'))

    def test_negative_cost_rejected(self) -> None:
        ticket = self.make_ticket()

        with self.assertRaises(ValueError):
            estimate_service.add_item(
                self.db, ticket=ticket, description='Brush Roll', part_cost='-5', actor_name='Taylor'
            )

    def test_add_refused_while_sent(self) -> None:
        ticket = self.make_ticket(estimate_status=EstimateStatus.SENT)

        with self.assertRaises(ValueError):
            estimate_service.add_item(self.db, ticket=ticket, description='Filter', part_cost='5', actor_name='Taylor')

    def test_add_inventory_part_decrements_stock(self) -> None:
        ticket = self.make_ticket()
        part = self.make_part(quantity=1, sku='DY-BR-01')

        item = estimate_service.add_inventory_part(
            self.db, ticket=ticket, inventory_item_id=part.id, actor_name='Taylor'
        )
        estimate_service.add_inventory_part(self.db, ticket=ticket, inventory_item_id=part.id, actor_name='Taylor')

        self.assertEqual(item.inventory_id, part.id)
        self.assertEqual(item.sku, 'DY-BR-01')
        self.assertEqual(item.part_cost, Decimal('20.00'))
        self.assertEqual(part.quantity, 0)

    def test_deleting_stock_item_restocks(self) -> None:
        ticket = self.make_ticket()
        part = self.make_part(quantity=3)
        item = estimate_service.add_inventory_part(
            self.db, ticket=ticket, inventory_item_id=part.id, actor_name='Taylor'
        )

        estimate_service.delete_item(self.db, ticket=ticket, item_id=item.id, actor_name='Taylor')

        self.assertEqual(part.quantity, 3)
        self.assertEqual(estimate_service.list_items(self.db, ticket_id=ticket.id), [])
        self.assertEqual(ticket.estimate_total, Decimal('0'))

    def test_approved_item_is_locked(self) -> None:
        ticket = self.make_ticket()
        item = estimate_service.add_item(
            self.db, ticket=ticket, description='Brush Roll', part_cost='20', actor_name='Taylor'
        )
        item.is_approved = True
        self.db.flush()

        with self.assertRaises(ValueError):
            estimate_service.delete_item(self.db, ticket=ticket, item_id=item.id, actor_name='Taylor')

    def test_unsend_requires_sent(self) -> None:
        ticket = self.make_ticket()

        with self.assertRaises(ValueError):
            estimate_service.unsend_estimate(self.db, ticket=ticket, actor_name='Taylor')

        ticket.estimate_status = EstimateStatus.SENT
        estimate_service.unsend_estimate(self.db, ticket=ticket, actor_name='Taylor')
        self.assertEqual(ticket.estimate_status, EstimateStatus.NONE)


class SendEstimateTests(DatabaseTestCase):
    @patch('repairshop.services.estimate_service.send_email')
    def test_send_marks_sent_after_email(self, send_email_mock) -> None:
        send_email_mock.return_value = {'id': 'msg_1'}
        ticket = self.make_ticket()
        estimate_service.add_item(
            self.db, ticket=ticket, description='Brush Roll', part_cost='20', labor_cost='15', actor_name='Taylor'
        )

        estimate_service.send_estimate(self.db, ticket=ticket, actor_name='Taylor')

        self.assertEqual(ticket.estimate_status, EstimateStatus.SENT)
        kwargs = send_email_mock.call_args.kwargs
        self.assertEqual(kwargs['to'], 'casey@example.com')
        self.assertIn(f'/status/{ticket.id}', kwargs['html'])
        self.assertIn('$37.45', kwargs['html'])

    @patch('repairshop.services.estimate_service.send_email')
    def test_email_failure_leaves_status(self, send_email_mock) -> None:
        send_email_mock.side_effect = RuntimeError('Email API error 500: boom')
        ticket = self.make_ticket()
        estimate_service.add_item(self.db, ticket=ticket, description='Filter', part_cost='5', actor_name='Taylor')

        with self.assertRaises(RuntimeError):
            estimate_service.send_estimate(self.db, ticket=ticket, actor_name='Taylor')

        self.assertEqual(ticket.estimate_status, EstimateStatus.NONE)

    @patch('repairshop.services.estimate_service.send_email')
    def test_send_requires_customer_email(self, send_email_mock) -> None:
        ticket = self.make_ticket(customer=self.make_customer(email=None))
        estimate_service.add_item(self.db, ticket=ticket, description='Filter', part_cost='5', actor_name='Taylor')

        with self.assertRaises(ValueError):
            estimate_service.send_estimate(self.db, ticket=ticket, actor_name='Taylor')
        send_email_mock.assert_not_called()


class ApproveEstimateTests(DatabaseTestCase):
    def _ticket_with_items(self):
        ticket = self.make_ticket(status=TicketStatus.DIAGNOSING, estimate_status=EstimateStatus.SENT)
        for description in ('Brush Roll', 'Filter'):
            self.db.add(
                EstimateItem(
                    ticket_id=ticket.id, description=description, part_cost=Decimal('10'), labor_cost=Decimal('0')
                )
            )
        self.db.commit()
        return ticket

    def _approval_logs(self, ticket_id: int) -> list[AuditLog]:
        return self.db.execute(
            select(AuditLog).where(AuditLog.ticket_id == ticket_id, AuditLog.action == 'ESTIMATE APPROVED')
        ).scalars().all()

    def test_approval_updates_items_status_and_audit(self) -> None:
        ticket = self._ticket_with_items()

        result = estimate_service.approve_estimate(
            self.db,
            ticket_id=ticket.id,
            actor_name='Customer (status link)',
            fingerprint='203.0.113.5 | Mozilla',
            approval_key='key-1',
        )

        self.assertEqual(result.approved_count, 2)
        self.assertFalse(result.replayed)
        self.db.refresh(ticket)
        self.assertEqual(ticket.status, TicketStatus.WAITING_PARTS)
        self.assertEqual(ticket.estimate_status, EstimateStatus.APPROVED)
        self.assertTrue(all(item.is_approved for item in estimate_service.list_items(self.db, ticket_id=ticket.id)))
        logs = self._approval_logs(ticket.id)
        self.assertEqual(len(logs), 1)
        self.assertEqual(logs[0].actor_name, 'Customer (status link)')
        self.assertEqual(logs[0].meta['fingerprint'], '203.0.113.5 | Mozilla')

    def test_replayed_key_writes_nothing(self) -> None:
        ticket = self._ticket_with_items()
        estimate_service.approve_estimate(
            self.db, ticket_id=ticket.id, actor_name='Customer', fingerprint=None, approval_key='key-1'
        )

        replay = estimate_service.approve_estimate(
            self.db, ticket_id=ticket.id, actor_name='Customer', fingerprint=None, approval_key='key-1'
        )

        self.assertTrue(replay.replayed)
        self.assertEqual(replay.approved_count, 2)
        self.assertEqual(len(self._approval_logs(ticket.id)), 1)

    def test_second_approval_with_nothing_pending_is_noop(self) -> None:
        ticket = self._ticket_with_items()
        estimate_service.approve_estimate(
            self.db, ticket_id=ticket.id, actor_name='Customer', fingerprint=None, approval_key='key-1'
        )

        again = estimate_service.approve_estimate(
            self.db, ticket_id=ticket.id, actor_name='Customer', fingerprint=None, approval_key='key-2'
        )

        self.assertEqual(again.approved_count, 0)
        self.assertEqual(len(self._approval_logs(ticket.id)), 1)
        self.assertEqual(
            len(self.db.execute(select(EstimateApproval)).scalars().all()),
            1,
        )

    def test_new_items_after_approval_can_be_approved(self) -> None:
        ticket = self._ticket_with_items()
        estimate_service.approve_estimate(
            self.db, ticket_id=ticket.id, actor_name='Customer', fingerprint=None, approval_key='key-1'
        )
        self.db.add(
            EstimateItem(
                ticket_id=ticket.id, description='Belt', part_cost=Decimal('6.50'), labor_cost=Decimal('0')
            )
        )
        self.db.commit()

        result = estimate_service.approve_estimate(
            self.db, ticket_id=ticket.id, actor_name='Customer', fingerprint=None, approval_key='key-2'
        )

        self.assertEqual(result.approved_count, 1)
        self.assertEqual(len(self._approval_logs(ticket.id)), 2)

    def test_no_items_rejected(self) -> None:
        ticket = self.make_ticket()
        self.db.commit()

        with self.assertRaises(ValueError):
            estimate_service.approve_estimate(
                self.db, ticket_id=ticket.id, actor_name='Customer', fingerprint=None, approval_key='key-1'
            )

    def test_key_for_other_ticket_rejected(self) -> None:
        first = self._ticket_with_items()
        second = self._ticket_with_items()
        estimate_service.approve_estimate(
            self.db, ticket_id=first.id, actor_name='Customer', fingerprint=None, approval_key='shared'
        )

        with self.assertRaises(ValueError):
            estimate_service.approve_estimate(
                self.db, ticket_id=second.id, actor_name='Customer', fingerprint=None, approval_key='shared'
            )

    def test_approval_on_completed_ticket_is_a_reopen(self) -> None:
        ticket = self.make_ticket(status=TicketStatus.COMPLETED, estimate_status=EstimateStatus.APPROVED)
        self.db.commit()
        estimate_service.add_item(self.db, ticket=ticket, description='Belt', part_cost='5', actor_name='Taylor')
        self.db.commit()

        estimate_service.approve_estimate(
            self.db, ticket_id=ticket.id, actor_name='Customer', fingerprint=None, approval_key='key-1'
        )

        self.db.refresh(ticket)
        self.assertEqual(ticket.status, TicketStatus.WAITING_PARTS)
        actions = [e.action for e in list_ticket_events(self.db, ticket_id=ticket.id)]
        self.assertEqual(actions, ['ESTIMATE ITEM ADDED', 'TICKET REOPENED', 'ESTIMATE APPROVED'])

    def test_approval_moves_status_through_workflow(self) -> None:
        ticket = self._ticket_with_items()

        estimate_service.approve_estimate(
            self.db, ticket_id=ticket.id, actor_name='Customer', fingerprint=None, approval_key='key-1'
        )

        change = self.db.execute(
            select(AuditLog).where(AuditLog.ticket_id == ticket.id, AuditLog.action == 'STATUS CHANGE')
        ).scalar_one()
        self.assertEqual(change.meta, {'from': 'diagnosing', 'to': 'waiting_parts'})

    def test_losing_concurrent_approval_writes_nothing(self) -> None:
        ticket = self._ticket_with_items()
        stale_items = [
            SimpleNamespace(is_approved=False, part_cost=Decimal('10'), labor_cost=Decimal('0')),
            SimpleNamespace(is_approved=False, part_cost=Decimal('10'), labor_cost=Decimal('0')),
        ]
        estimate_service.approve_estimate(
            self.db, ticket_id=ticket.id, actor_name='Customer', fingerprint=None, approval_key='key-1'
        )

        # The second request read the items before the first one committed.
        with patch.object(estimate_service, 'list_items', return_value=stale_items):
            result = estimate_service.approve_estimate(
                self.db, ticket_id=ticket.id, actor_name='Customer', fingerprint=None, approval_key='key-2'
            )

        self.assertEqual(result.approved_count, 0)
        self.assertEqual(len(self._approval_logs(ticket.id)), 1)
        self.assertEqual(len(self.db.execute(select(EstimateApproval)).scalars().all()), 1)
