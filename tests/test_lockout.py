from __future__ import annotations

from datetime import datetime, timedelta, timezone

from db_fixtures import DatabaseTestCase
from repairshop.auth import PortalMode
from repairshop.models import AuthEvent
from repairshop.security.lockout import LOCKED_OUT, clear_lockout, get_lockout_state, list_locked_buckets

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class LockoutTests(DatabaseTestCase):
    def _event(self, minutes_ago: float, *, success=False, reason='BAD_PASSWORD', portal=PortalMode.STAFF, email='tech@example.com'):
        self.db.add(
            AuthEvent(
                attempted_email=email,
                portal=portal,
                success=success,
                failure_reason=None if success else reason,
                created_at=NOW - timedelta(minutes=minutes_ago),
            )
        )
        self.db.flush()

    def test_five_recent_failures_lock_the_bucket(self) -> None:
        for minutes_ago in (5, 4, 3, 2, 1):
            self._event(minutes_ago)

        state = get_lockout_state(self.db, email='Tech@Example.com ', portal=PortalMode.STAFF, now=NOW)

        self.assertTrue(state.locked)
        self.assertEqual(state.failures, 5)
        self.assertEqual(state.locked_until, NOW - timedelta(minutes=1) + timedelta(minutes=15))

    def test_four_failures_do_not_lock(self) -> None:
        for minutes_ago in (4, 3, 2, 1):
            self._event(minutes_ago)

        self.assertFalse(get_lockout_state(self.db, email='tech@example.com', portal=PortalMode.STAFF, now=NOW).locked)

    def test_old_failures_expire(self) -> None:
        for minutes_ago in (40, 30, 20, 2, 1):
            self._event(minutes_ago)

        state = get_lockout_state(self.db, email='tech@example.com', portal=PortalMode.STAFF, now=NOW)

        self.assertFalse(state.locked)
        self.assertEqual(state.failures, 2)

    def test_success_resets_count(self) -> None:
        for minutes_ago in (9, 8, 7):
            self._event(minutes_ago)
        self._event(6, success=True)
        for minutes_ago in (3, 2):
            self._event(minutes_ago)

        self.assertEqual(get_lockout_state(self.db, email='tech@example.com', portal=PortalMode.STAFF, now=NOW).failures, 2)

    def test_buckets_are_per_portal(self) -> None:
        for minutes_ago in (5, 4, 3, 2, 1):
            self._event(minutes_ago, portal=PortalMode.CUSTOMER)

        self.assertFalse(get_lockout_state(self.db, email='tech@example.com', portal=PortalMode.STAFF, now=NOW).locked)
        self.assertTrue(get_lockout_state(self.db, email='tech@example.com', portal=PortalMode.CUSTOMER, now=NOW).locked)

    def test_refused_attempts_while_locked_do_not_extend(self) -> None:
        for minutes_ago in (10, 9, 8, 7, 6):
            self._event(minutes_ago)
        self._event(1, reason=LOCKED_OUT)

        state = get_lockout_state(self.db, email='tech@example.com', portal=PortalMode.STAFF, now=NOW)

        self.assertEqual(state.failures, 5)
        self.assertEqual(state.locked_until, NOW - timedelta(minutes=6) + timedelta(minutes=15))

    def test_admin_clear_unlocks(self) -> None:
        admin = self.make_profile(email='admin@example.com')
        now = datetime.now(tz=timezone.utc)
        for minutes_ago in (5, 4, 3, 2, 1):
            self.db.add(
                AuthEvent(
                    attempted_email='tech@example.com',
                    portal=PortalMode.STAFF,
                    success=False,
                    failure_reason='BAD_PASSWORD',
                    created_at=now - timedelta(minutes=minutes_ago),
                )
            )
        self.db.flush()
        self.assertEqual([b['email'] for b in list_locked_buckets(self.db)], ['tech@example.com'])

        clear_lockout(self.db, email='Tech@example.com', portal=PortalMode.STAFF, cleared_by_principal_id=admin.id, ip=None)
        state = get_lockout_state(self.db, email='tech@example.com', portal=PortalMode.STAFF)

        self.assertFalse(state.locked)
        self.assertEqual(state.failures, 0)
        self.assertEqual(list_locked_buckets(self.db), [])
