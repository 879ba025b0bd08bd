"""
Tests for the Delivery Assignment Ledger:
1. Offers (no reservation)
2. Accept race / one delivery per rider
3. Progress state machine
4. Completion and cancellation
"""

import random

from django.test import SimpleTestCase

from dispatch.ledger import (
    DeliveryLedger, PAYOUT_MAX, PAYOUT_MIN,
    REASON_ALREADY_ACCEPTED, REASON_DUPLICATE, REASON_NOT_CANCELLABLE,
    REASON_NOT_FOUND, REASON_NOT_IN_PROGRESS, REASON_NOT_OWNER, REASON_RIDER_BUSY,
)
from dispatch.models import DeliveryStatus
from dispatch.tests.helpers import FakeClock, make_delivery


class TestDeliveryLedger(SimpleTestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.ledger = DeliveryLedger(clock=self.clock, rng=random.Random(7), archive_size=5)
        self.ledger.add(make_delivery('D1', created_at=self.clock.now))
        self.ledger.add(make_delivery('D2', created_at=self.clock.now + 1))

    # ==========================================
    # Intake & offers
    # ==========================================

    def test_add_rejects_duplicate_id(self):
        """Adding an existing id fails with a duplicate reason."""
        result = self.ledger.add(make_delivery('D1'))
        self.assertFalse(result.ok)
        self.assertEqual(result.reason, REASON_DUPLICATE)

    def test_add_forces_pending_state(self):
        """Whatever status is passed in, a new delivery starts pending."""
        delivery = make_delivery('D3', status=DeliveryStatus.COMPLETED, rider_id='R9')
        self.ledger.add(delivery)
        self.assertEqual(self.ledger.get('D3').status, DeliveryStatus.PENDING)
        self.assertIsNone(self.ledger.get('D3').rider_id)

    def test_publish_available_offers_pending_oldest_first(self):
        """Pending deliveries are offered oldest first."""
        offers = self.ledger.publish_available('R1')
        self.assertEqual([d.delivery_id for d in offers], ['D1', 'D2'])

    def test_publish_available_respects_limit(self):
        """No more offers than the limit."""
        self.assertEqual(len(self.ledger.publish_available('R1', limit=1)), 1)

    def test_offers_do_not_reserve(self):
        """The same pending delivery is offered to several riders."""
        first = [d.delivery_id for d in self.ledger.publish_available('R1')]
        second = [d.delivery_id for d in self.ledger.publish_available('R2')]

        self.assertEqual(first, second)
        self.assertEqual(self.ledger.get('D1').status, DeliveryStatus.PENDING)

    def test_busy_rider_gets_no_offers(self):
        """A rider holding a delivery is offered nothing."""
        self.ledger.accept('D1', 'R1')
        self.assertEqual(self.ledger.publish_available('R1'), [])

    def test_accepted_delivery_is_no_longer_offered(self):
        """Taken deliveries drop out of later offers."""
        self.ledger.accept('D1', 'R1')
        offers = self.ledger.publish_available('R2')
        self.assertEqual([d.delivery_id for d in offers], ['D2'])

    # ==========================================
    # Accept
    # ==========================================

    def test_accept_assigns_rider(self):
        """Accepting binds the rider and stamps the time."""
        result = self.ledger.accept('D1', 'R1')

        self.assertTrue(result.ok)
        delivery = self.ledger.get('D1')
        self.assertEqual(delivery.status, DeliveryStatus.ACCEPTED)
        self.assertEqual(delivery.rider_id, 'R1')
        self.assertEqual(delivery.accepted_at, self.clock.now)
        self.assertIs(self.ledger.active_for('R1'), delivery)

    def test_second_accept_for_same_delivery_rejected(self):
        """Only one of two racing riders gets the delivery."""
        first = self.ledger.accept('D1', 'R1')
        second = self.ledger.accept('D1', 'R2')

        self.assertTrue(first.ok)
        self.assertFalse(second.ok)
        self.assertEqual(second.reason, REASON_ALREADY_ACCEPTED)
        self.assertEqual(self.ledger.get('D1').rider_id, 'R1')
        self.assertIsNone(self.ledger.active_for('R2'))

    def test_rider_cannot_hold_two_deliveries(self):
        """Second accept by the same rider fails."""
        self.ledger.accept('D1', 'R1')
        result = self.ledger.accept('D2', 'R1')

        self.assertFalse(result.ok)
        self.assertEqual(result.reason, REASON_RIDER_BUSY)
        self.assertEqual(self.ledger.get('D2').status, DeliveryStatus.PENDING)

    def test_rider_still_busy_while_in_progress(self):
        """A rider mid-delivery still cannot take another."""
        self.ledger.accept('D1', 'R1')
        self.ledger.progress_tick('D1')
        self.assertEqual(self.ledger.accept('D2', 'R1').reason, REASON_RIDER_BUSY)

    def test_accept_unknown_delivery(self):
        """Unknown ids are reported as not found."""
        self.assertEqual(self.ledger.accept('nope', 'R1').reason, REASON_NOT_FOUND)

    def test_rider_free_again_after_completion(self):
        """After completing, the rider can accept again."""
        self.ledger.accept('D1', 'R1')
        self.ledger.complete('D1', 'R1')
        self.assertTrue(self.ledger.accept('D2', 'R1').ok)

    def test_at_most_one_holder_under_many_attempts(self):
        """Many riders racing for one delivery: exactly one wins."""
        riders = [f"R{i}" for i in range(20)]
        winners = [r for r in riders if self.ledger.accept('D1', r).ok]
        self.assertEqual(winners, ['R0'])

    # ==========================================
    # Progress
    # ==========================================

    def test_progress_follows_fixed_sequence(self):
        """accepted -> picked_up -> out_for_delivery -> arrived, then stops."""
        self.ledger.accept('D1', 'R1')
        seen = []
        while True:
            result = self.ledger.progress_tick('D1')
            if not result:
                break
            seen.append(result.value.status)

        self.assertEqual(seen, [
            DeliveryStatus.PICKED_UP,
            DeliveryStatus.OUT_FOR_DELIVERY,
            DeliveryStatus.ARRIVED,
        ])
        self.assertEqual(self.ledger.progress_tick('D1').reason, REASON_NOT_IN_PROGRESS)

    def test_progress_requires_acceptance(self):
        """Pending deliveries do not advance."""
        self.assertFalse(self.ledger.progress_tick('D1').ok)
        self.assertEqual(self.ledger.get('D1').status, DeliveryStatus.PENDING)

    # ==========================================
    # Completion
    # ==========================================

    def test_complete_by_owner(self):
        """Completion stamps the time and draws a payout in range."""
        self.ledger.accept('D1', 'R1')
        self.clock.advance(600)

        result = self.ledger.complete('D1', 'R1')

        delivery = result.value
        self.assertTrue(result.ok)
        self.assertEqual(delivery.status, DeliveryStatus.COMPLETED)
        self.assertEqual(delivery.completed_at, self.clock.now)
        self.assertTrue(PAYOUT_MIN <= delivery.payout <= PAYOUT_MAX)
        self.assertIsNone(self.ledger.active_for('R1'))

    def test_complete_from_arrived(self):
        """Arrived deliveries can be completed."""
        self.ledger.accept('D1', 'R1')
        for _ in range(3):
            self.ledger.progress_tick('D1')
        self.assertTrue(self.ledger.complete('D1', 'R1').ok)

    def test_complete_by_other_rider_rejected(self):
        """Only the assigned rider may complete."""
        self.ledger.accept('D1', 'R1')
        result = self.ledger.complete('D1', 'R2')

        self.assertEqual(result.reason, REASON_NOT_OWNER)
        self.assertEqual(self.ledger.get('D1').status, DeliveryStatus.ACCEPTED)

    def test_complete_pending_rejected(self):
        """Nobody owns a pending delivery, so it cannot be completed."""
        self.assertEqual(self.ledger.complete('D1', 'R1').reason, REASON_NOT_OWNER)

    def test_complete_twice_rejected(self):
        """An archived delivery cannot be completed again."""
        self.ledger.accept('D1', 'R1')
        self.ledger.complete('D1', 'R1')
        self.assertEqual(self.ledger.complete('D1', 'R1').reason, REASON_NOT_FOUND)

    # ==========================================
    # Cancellation
    # ==========================================

    def test_cancel_pending(self):
        """Cancelling a pending delivery records the reason."""
        result = self.ledger.cancel('D1', 'customer changed mind')

        self.assertTrue(result.ok)
        self.assertEqual(self.ledger.get('D1').status, DeliveryStatus.CANCELLED)
        self.assertEqual(self.ledger.get('D1').cancel_reason, 'customer changed mind')
        self.assertNotIn('D1', [d.delivery_id for d in self.ledger.pending()])

    def test_cancel_accepted_frees_rider(self):
        """Cancelling an accepted delivery releases its rider."""
        self.ledger.accept('D1', 'R1')
        self.ledger.cancel('D1')
        self.assertIsNone(self.ledger.active_for('R1'))
        self.assertTrue(self.ledger.accept('D2', 'R1').ok)

    def test_cancel_in_progress_rejected(self):
        """Once picked up, a delivery cannot be cancelled."""
        self.ledger.accept('D1', 'R1')
        self.ledger.progress_tick('D1')
        self.assertEqual(self.ledger.cancel('D1').reason, REASON_NOT_CANCELLABLE)

    def test_cancelled_delivery_cannot_be_accepted(self):
        """Cancelled deliveries are never handed out."""
        self.ledger.cancel('D1')
        self.assertFalse(self.ledger.accept('D1', 'R1').ok)

    # ==========================================
    # Snapshot / archive
    # ==========================================

    def test_snapshot_contains_live_and_finished(self):
        """The snapshot lists both live and archived deliveries."""
        self.ledger.accept('D1', 'R1')
        self.ledger.complete('D1', 'R1')

        snapshot = {d['id']: d for d in self.ledger.snapshot()}

        self.assertEqual(snapshot['D1']['status'], 'completed')
        self.assertEqual(snapshot['D1']['riderId'], 'R1')
        self.assertEqual(snapshot['D2']['status'], 'pending')

    def test_archive_is_bounded(self):
        """Finished deliveries beyond the archive size are dropped."""
        for i in range(10):
            self.ledger.add(make_delivery(f"X{i}"))
            self.ledger.cancel(f"X{i}")
        self.assertEqual(len(self.ledger.snapshot()), 2 + 5)
