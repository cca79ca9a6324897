from __future__ import annotations

import unittest

from fastapi import HTTPException

from repairshop.auth import (
    Capability,
    Principal,
    PortalMode,
    Role,
    capabilities_for,
    has_capability,
    home_path_for,
    is_management_role,
    is_staff_role,
    portal_allows_role,
    require_capability,
)


class CapabilityTableTests(unittest.TestCase):
    def test_roles_are_cumulative(self) -> None:
        employee = capabilities_for(Role.EMPLOYEE)
        manager = capabilities_for(Role.MANAGER)
        admin = capabilities_for(Role.ADMIN)

        self.assertTrue(employee < manager < admin)

    def test_customer_only_sees_own_tickets(self) -> None:
        self.assertEqual(capabilities_for(Role.CUSTOMER), frozenset({Capability.VIEW_OWN_TICKETS}))
        self.assertFalse(is_staff_role(Role.CUSTOMER))

    def test_employee_limits(self) -> None:
        self.assertTrue(has_capability(Role.EMPLOYEE, Capability.ADJUST_STOCK))
        self.assertTrue(has_capability(Role.EMPLOYEE, Capability.SEND_EMAIL))
        self.assertFalse(has_capability(Role.EMPLOYEE, Capability.MANAGE_INVENTORY))
        self.assertFalse(has_capability(Role.EMPLOYEE, Capability.MANAGE_SETTINGS))

    def test_manager_limits(self) -> None:
        self.assertTrue(is_management_role(Role.MANAGER))
        self.assertTrue(has_capability(Role.MANAGER, Capability.EXPORT_DATA))
        self.assertFalse(has_capability(Role.MANAGER, Capability.MANAGE_TEAM))
        self.assertFalse(has_capability(Role.MANAGER, Capability.DELETE_AUDIT_LOGS))

    def test_admin_only_capabilities(self) -> None:
        for capability in (Capability.MANAGE_TEAM, Capability.DELETE_AUDIT_LOGS, Capability.CLEAR_LOCKOUTS):
            self.assertTrue(has_capability(Role.ADMIN, capability))

    def test_portal_matches_role(self) -> None:
        self.assertTrue(portal_allows_role(PortalMode.STAFF, Role.EMPLOYEE))
        self.assertFalse(portal_allows_role(PortalMode.STAFF, Role.CUSTOMER))
        self.assertTrue(portal_allows_role(PortalMode.CUSTOMER, Role.CUSTOMER))
        self.assertFalse(portal_allows_role(PortalMode.CUSTOMER, Role.ADMIN))

    def test_home_paths(self) -> None:
        self.assertEqual(home_path_for(Role.MANAGER), '/dashboard')
        self.assertEqual(home_path_for(Role.CUSTOMER), '/my-tickets')

    def test_require_capability_dependency(self) -> None:
        dependency = require_capability(Capability.MANAGE_SETTINGS)
        manager = Principal(id=1, email='m@example.com', full_name=None, role=Role.MANAGER, active=True)
        employee = Principal(id=2, email='e@example.com', full_name='Eli', role=Role.EMPLOYEE, active=True)

        self.assertIs(dependency(manager), manager)
        with self.assertRaises(HTTPException) as ctx:
            dependency(employee)
        self.assertEqual(ctx.exception.status_code, 403)
        self.assertEqual(manager.display_name, 'm@example.com')
        self.assertEqual(employee.display_name, 'Eli')
