import asyncio
import json
import unittest

import httpx

from tests.support import OTHER_STUDENT_ID, STAFF_ID, STUDENT_ID, BookingTestCase, new_id, window
from services.booking_service.notifications import (
    DeliveryClient,
    HttpDeliveryClient,
    NotificationDispatcher,
    NotificationIntent,
    NotificationTemplate,
    intents_for_event,
)
from shared.domain.equipment import DeviceStatus, IssuePriority, IssueStatus, ReservationStatus
from shared.domain.exceptions import ExternalServiceError, SchedulingConflictError
from shared.events.booking_events import (
    AffectedReservation,
    DeviceStatusChangedEvent,
    IssueReportedEvent,
    IssueStatusChangedEvent,
    ReservationCancelledEvent,
    ReservationCompletedEvent,
    ReservationCreatedEvent,
)


def _reservation_fields():
    start, end = window(1)
    return {
        "aggregate_id": new_id(),
        "device_id": new_id(),
        "device_name": "Oscilloscope",
        "requester_id": STUDENT_ID,
        "start": start,
        "end": end,
    }


class IntentMappingTests(unittest.TestCase):
    def test_creation_without_staff_and_completion_produce_nothing(self):
        fields = _reservation_fields()
        self.assertEqual(
            intents_for_event(ReservationCreatedEvent(status=ReservationStatus.PENDING, **fields)), []
        )
        self.assertEqual(
            intents_for_event(ReservationCompletedEvent(status=ReservationStatus.COMPLETED, **fields)),
            [],
        )

    def test_self_cancellation_produces_nothing(self):
        event = ReservationCancelledEvent(
            status=ReservationStatus.CANCELLED, cancelled_by=STUDENT_ID, **_reservation_fields()
        )
        self.assertEqual(intents_for_event(event), [])

    def test_staff_cancellation_targets_requester(self):
        event = ReservationCancelledEvent(
            status=ReservationStatus.CANCELLED,
            cancelled_by=STAFF_ID,
            reason="Calibration",
            **_reservation_fields(),
        )

        [intent] = intents_for_event(event)
        self.assertEqual(intent.recipient_id, STUDENT_ID)
        self.assertEqual(intent.details["reason"], "Calibration")
        self.assertEqual(intent.source_event_id, event.metadata.event_id)

    def test_only_resolution_notifies_reporter(self):
        common = {
            "aggregate_id": new_id(),
            "device_id": new_id(),
            "device_name": "Oscilloscope",
            "reporter_id": STUDENT_ID,
            "title": "No signal",
        }
        in_progress = IssueStatusChangedEvent(
            previous_status=IssueStatus.REPORTED, status=IssueStatus.IN_PROGRESS, **common
        )
        resolved = IssueStatusChangedEvent(
            previous_status=IssueStatus.IN_PROGRESS,
            status=IssueStatus.RESOLVED,
            resolution="Connector replaced",
            **common,
        )

        self.assertEqual(intents_for_event(in_progress), [])
        [intent] = intents_for_event(resolved)
        self.assertEqual(intent.template, NotificationTemplate.ISSUE_RESOLVED)

    def test_device_unavailable_deduplicates_holders(self):
        windows = [window(1), window(3), window(5)]
        holders = [STUDENT_ID, OTHER_STUDENT_ID, STUDENT_ID]
        event = DeviceStatusChangedEvent(
            aggregate_id=new_id(),
            device_name="Oscilloscope",
            previous_status=DeviceStatus.AVAILABLE,
            status=DeviceStatus.UNAVAILABLE,
            reason="Lamp replacement",
            affected_reservations=[
                AffectedReservation(
                    reservation_id=new_id(),
                    holder_id=holder,
                    start=start,
                    end=end,
                    status=ReservationStatus.APPROVED,
                )
                for holder, (start, end) in zip(holders, windows)
            ],
        )

        intents = intents_for_event(event)

        self.assertEqual([i.recipient_id for i in intents], [STUDENT_ID, OTHER_STUDENT_ID])
        student = intents[0].details
        self.assertEqual(student["reason"], "Lamp replacement")
        self.assertEqual(student["startDate"], windows[0][0].isoformat())
        self.assertEqual(
            [r["endDate"] for r in student["reservations"]],
            [windows[0][1].isoformat(), windows[2][1].isoformat()],
        )

    def test_submitted_reservation_targets_captured_staff(self):
        event = ReservationCreatedEvent(
            status=ReservationStatus.PENDING,
            staff_recipients=[STAFF_ID, STAFF_ID],
            **_reservation_fields(),
        )

        [intent] = intents_for_event(event)
        self.assertEqual(intent.recipient_id, STAFF_ID)
        self.assertEqual(intent.template, NotificationTemplate.RESERVATION_SUBMITTED)
        self.assertEqual(intent.details["requesterId"], str(STUDENT_ID))

    def test_reported_issue_targets_captured_staff(self):
        event = IssueReportedEvent(
            aggregate_id=new_id(),
            device_id=new_id(),
            device_name="Oscilloscope",
            reporter_id=STUDENT_ID,
            title="No signal",
            priority=IssuePriority.HIGH,
            staff_recipients=[STAFF_ID],
        )

        [intent] = intents_for_event(event)
        self.assertEqual(intent.template, NotificationTemplate.ISSUE_REPORTED)
        self.assertEqual(intent.details["priority"], "high")


class _SlowClient(DeliveryClient):
    def __init__(self, delay: float, result: bool = True):
        self.delay = delay
        self.result = result

    async def deliver(self, intent: NotificationIntent) -> bool:
        await asyncio.sleep(self.delay)
        return self.result


class DispatcherTests(unittest.IsolatedAsyncioTestCase):
    def intent(self) -> NotificationIntent:
        return NotificationIntent(
            recipient_id=STUDENT_ID,
            template=NotificationTemplate.RESERVATION_APPROVED,
            details={"deviceName": "Oscilloscope"},
        )

    async def test_timeout_is_logged_and_dropped(self):
        dispatcher = NotificationDispatcher(_SlowClient(delay=5), timeout=0.05)

        [task] = dispatcher.dispatch([self.intent()])
        await dispatcher.drain()

        self.assertFalse(task.result())
        self.assertEqual(dispatcher.failed, 1)
        self.assertEqual(dispatcher.pending, 0)

    async def test_false_result_counts_as_failure(self):
        dispatcher = NotificationDispatcher(_SlowClient(delay=0, result=False), timeout=1)

        dispatcher.dispatch([self.intent()])
        await dispatcher.drain()

        self.assertEqual((dispatcher.delivered, dispatcher.failed), (0, 1))


class NonBlockingDispatchTests(BookingTestCase):
    async def test_operation_returns_before_delivery_finishes(self):
        reservation = await self.reserve()
        self.delivery.gate = asyncio.Event()

        decided = await self.lifecycle.decide_reservation(reservation.id, STAFF_ID, "approve")

        self.assertEqual(decided.status, ReservationStatus.APPROVED.value)
        self.assertEqual(self.delivery.delivered, [])
        self.assertEqual(self.runtime.dispatcher.pending, 1)

        self.delivery.gate.set()
        await self.runtime.dispatcher.drain()
        self.assertEqual(len(self.delivery.delivered), 1)

    async def test_rolled_back_operation_emits_nothing(self):
        await self.reserve(hours_ahead=1, duration_hours=3)
        history_before = len(self.runtime.event_stream.get_event_history())

        with self.assertRaises(SchedulingConflictError):
            await self.reserve(hours_ahead=2, requester=OTHER_STUDENT_ID)

        self.assertEqual(len(self.runtime.event_stream.get_event_history()), history_before)


class HttpDeliveryClientTests(unittest.IsolatedAsyncioTestCase):
    def intent(self) -> NotificationIntent:
        return NotificationIntent(
            recipient_id=STUDENT_ID,
            template=NotificationTemplate.DEVICE_UNAVAILABLE,
            details={"deviceName": "Oscilloscope"},
        )

    async def test_posts_type_user_and_details(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        client = HttpDeliveryClient(
            "https://notify.example/send",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        try:
            self.assertTrue(await client.deliver(self.intent()))
        finally:
            await client.aclose()

        body = json.loads(seen[0].content)
        self.assertEqual(
            body,
            {
                "type": "device_unavailable",
                "userId": str(STUDENT_ID),
                "details": {"deviceName": "Oscilloscope"},
            },
        )

    async def test_error_status_raises_external_service_error(self):
        client = HttpDeliveryClient(
            "https://notify.example/send",
            client=httpx.AsyncClient(
                transport=httpx.MockTransport(lambda request: httpx.Response(502))
            ),
        )
        try:
            with self.assertRaises(ExternalServiceError):
                await client.deliver(self.intent())
        finally:
            await client.aclose()
