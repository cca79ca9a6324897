from __future__ import annotations

from decimal import Decimal

from db_fixtures import DatabaseTestCase
from repairshop.auth import Principal, Role
from repairshop.models import TicketStatus
from repairshop.security.passwords import verify_password
from repairshop.security.sessions import create_web_session, load_principal_from_token
from repairshop.services import team_service
from repairshop.services.customer_service import customer_stats, filter_customers, search_customers


def _principal(profile) -> Principal:
    return Principal(id=profile.id, email=profile.email, full_name=profile.full_name, role=profile.role, active=True)


class TeamServiceTests(DatabaseTestCase):
    def test_register_profile(self) -> None:
        profile = team_service.register_profile(
            self.db, email=' New@Example.com ', password='longenough', full_name='New Person'
        )

        self.assertEqual(profile.email, 'new@example.com')
        self.assertEqual(profile.role, Role.CUSTOMER)
        self.assertTrue(verify_password('longenough', profile.password_hash))
        with self.assertRaises(ValueError):
            team_service.register_profile(self.db, email='new@example.com', password='longenough', full_name=None)
        with self.assertRaises(ValueError):
            team_service.register_profile(self.db, email='other@example.com', password='short', full_name=None)

    def test_roster_is_ranked(self) -> None:
        self.make_profile(email='emp@example.com', role=Role.EMPLOYEE, full_name='Aaron')
        self.make_profile(email='admin@example.com', role=Role.ADMIN, full_name='Zed')
        self.make_profile(email='mgr@example.com', role=Role.MANAGER, full_name='Mia')
        self.make_profile(email='cust@example.com', role=Role.CUSTOMER, full_name='Cal')

        roster = team_service.list_staff(self.db)

        self.assertEqual([p.full_name for p in roster], ['Zed', 'Mia', 'Aaron'])
        self.assertEqual([p.full_name for p in team_service.list_staff(self.db, search='mgr@')], ['Mia'])

    def test_promote_customer(self) -> None:
        admin = self.make_profile(email='admin@example.com', role=Role.ADMIN)
        customer = self.make_profile(email='cust@example.com', role=Role.CUSTOMER)

        found = team_service.find_promotable(self.db, email='CUST@example.com')
        team_service.change_role(self.db, actor=_principal(admin), profile_id=found.id, new_role=Role.EMPLOYEE)

        self.assertEqual(customer.role, Role.EMPLOYEE)
        with self.assertRaises(ValueError):
            team_service.find_promotable(self.db, email='cust@example.com')

    def test_only_admins_change_roles(self) -> None:
        manager = self.make_profile(email='mgr@example.com', role=Role.MANAGER)
        employee = self.make_profile(email='emp@example.com', role=Role.EMPLOYEE)

        with self.assertRaises(PermissionError):
            team_service.change_role(self.db, actor=_principal(manager), profile_id=employee.id, new_role=Role.MANAGER)

    def test_admin_cannot_demote_self(self) -> None:
        admin = self.make_profile(email='admin@example.com', role=Role.ADMIN)

        with self.assertRaises(ValueError):
            team_service.change_role(self.db, actor=_principal(admin), profile_id=admin.id, new_role=Role.EMPLOYEE)

    def test_removal_revokes_sessions(self) -> None:
        admin = self.make_profile(email='admin@example.com', role=Role.ADMIN)
        employee = self.make_profile(email='emp@example.com', role=Role.EMPLOYEE)
        token = create_web_session(self.db, employee.id, ip=None, user_agent=None)

        team_service.change_role(self.db, actor=_principal(admin), profile_id=employee.id, new_role=Role.CUSTOMER)

        self.assertIsNone(load_principal_from_token(self.db, token))

    def test_member_stats(self) -> None:
        tech = self.make_profile()
        self.make_ticket(status=TicketStatus.COMPLETED, assigned_to=tech.id, estimate_total=Decimal('100.00'))
        self.make_ticket(status=TicketStatus.REPAIRING, assigned_to=tech.id, estimate_total=Decimal('50.00'))

        stats = team_service.member_stats(self.db, profile=tech)

        self.assertEqual(stats['completed'], 1)
        self.assertEqual(stats['active'], 1)
        self.assertEqual(stats['revenue'], Decimal('100.00'))


class CustomerServiceTests(DatabaseTestCase):
    def test_directory_search(self) -> None:
        jane = self.make_customer(full_name='Jane Doe', email='jane@example.com', phone='5551112222')
        self.make_customer(full_name='John Roe', email='john@example.com', phone='5553334444')

        self.assertEqual(filter_customers([jane], ''), [jane])
        self.assertEqual([c.full_name for c in filter_customers([jane], '(555) 111')], ['Jane Doe'])
        self.assertEqual([c.full_name for c in search_customers(self.db, term='jan')], ['Jane Doe'])
        self.assertEqual(search_customers(self.db, term='ja'), [])

    def test_customer_stats(self) -> None:
        customer = self.make_customer()
        tickets = [
            self.make_ticket(customer=customer, status=TicketStatus.COMPLETED, estimate_total=Decimal('80.00')),
            self.make_ticket(customer=customer, status=TicketStatus.REPAIRING, estimate_total=Decimal('20.00')),
        ]

        stats = customer_stats(tickets)

        self.assertEqual(stats['ticket_count'], 2)
        self.assertEqual(stats['total_spent'], Decimal('100.00'))
        self.assertEqual(stats['average_ticket'], Decimal('50'))
        self.assertEqual(stats['active_count'], 1)
