from datetime import timedelta

from sqlalchemy import select

from tests.support import (
    ADMIN_ID,
    OTHER_STUDENT_ID,
    STAFF_ID,
    STUDENT_ID,
    BookingTestCase,
    new_id,
)
from services.booking_service.models import DeviceModel, ReservationModel
from services.booking_service.notifications import (
    DEFAULT_UNAVAILABLE_REASON,
    NotificationTemplate,
)
from shared.domain.equipment import DeviceStatus, ReservationStatus, UserRoleType, utcnow
from shared.domain.exceptions import (
    AuthorizationError,
    EntityNotFoundError,
    InvalidTransitionError,
    ValidationError,
)
from shared.security.audit import AuditAction, AuditEntityType


class DeviceStatusTests(BookingTestCase):
    async def test_unavailable_notifies_each_distinct_holder_once(self):
        first = await self.reserve(hours_ahead=1, requester=STUDENT_ID)
        second = await self.approved(hours_ahead=3, requester=STUDENT_ID)
        other = await self.reserve(hours_ahead=5, requester=OTHER_STUDENT_ID)
        await self.settle()

        device = await self.lifecycle.set_device_status(
            self.device.id, STAFF_ID, DeviceStatus.UNAVAILABLE, reason="  Sent for calibration "
        )
        await self.runtime.dispatcher.drain()

        self.assertEqual(device.status, DeviceStatus.UNAVAILABLE.value)
        by_recipient = {i.recipient_id: i for i in self.delivery.delivered}
        self.assertEqual(len(self.delivery.delivered), 2)
        self.assertEqual(set(by_recipient), {STUDENT_ID, OTHER_STUDENT_ID})
        for intent in self.delivery.delivered:
            self.assertEqual(intent.template, NotificationTemplate.DEVICE_UNAVAILABLE)
            self.assertEqual(intent.details["deviceName"], "Oscilloscope")
            self.assertEqual(intent.details["reason"], "Sent for calibration")

        student = by_recipient[STUDENT_ID].details
        self.assertEqual(student["startDate"], first.start_at.isoformat())
        self.assertEqual(student["endDate"], first.end_at.isoformat())
        self.assertEqual(
            [(r["reservationId"], r["status"]) for r in student["reservations"]],
            [(str(first.id), "pending"), (str(second.id), "approved")],
        )
        self.assertEqual(student["reservations"][1]["startDate"], second.start_at.isoformat())

        other_details = by_recipient[OTHER_STUDENT_ID].details
        self.assertEqual(other_details["startDate"], other.start_at.isoformat())
        self.assertEqual(len(other_details["reservations"]), 1)
        self.assertEqual(
            await self.audit_count(action=AuditAction.DEVICE_STATUS_UPDATED.value), 1
        )

    async def test_failed_delivery_does_not_stop_other_holders(self):
        await self.reserve(hours_ahead=1, requester=STUDENT_ID)
        await self.reserve(hours_ahead=3, requester=OTHER_STUDENT_ID)
        self.delivery.fail_for.add(STUDENT_ID)

        await self.lifecycle.set_device_status(self.device.id, STAFF_ID, DeviceStatus.UNAVAILABLE)
        await self.runtime.dispatcher.drain()

        self.assertEqual(len(self.delivery.attempts), 2)
        self.assertEqual([i.recipient_id for i in self.delivery.delivered], [OTHER_STUDENT_ID])
        self.assertEqual(self.runtime.dispatcher.failed, 1)
        self.assertEqual(
            self.delivery.delivered[0].details["reason"], DEFAULT_UNAVAILABLE_REASON
        )

    async def test_reservations_survive_device_becoming_unavailable(self):
        reservation = await self.approved()

        await self.lifecycle.set_device_status(self.device.id, STAFF_ID, DeviceStatus.UNAVAILABLE)

        async with self.runtime.session_factory() as session:
            reloaded = await session.get(ReservationModel, reservation.id)
        self.assertEqual(reloaded.status, ReservationStatus.APPROVED.value)

    async def test_other_statuses_send_nothing(self):
        await self.reserve()

        await self.lifecycle.set_device_status(self.device.id, STAFF_ID, DeviceStatus.MAINTENANCE)
        await self.runtime.dispatcher.drain()

        self.assertEqual(self.delivery.attempts, [])

    async def test_same_status_is_rejected(self):
        with self.assertRaises(InvalidTransitionError):
            await self.lifecycle.set_device_status(self.device.id, STAFF_ID, DeviceStatus.AVAILABLE)

    async def test_non_staff_cannot_change_status(self):
        with self.assertRaises(AuthorizationError):
            await self.lifecycle.set_device_status(self.device.id, STUDENT_ID, DeviceStatus.MAINTENANCE)
        self.assertEqual(
            await self.audit_count(action=AuditAction.DEVICE_STATUS_UPDATED.value), 0
        )

    async def test_status_is_not_a_booking_gate(self):
        await self.lifecycle.set_device_status(self.device.id, STAFF_ID, DeviceStatus.MAINTENANCE)

        reservation = await self.reserve()
        self.assertEqual(reservation.status, ReservationStatus.PENDING.value)


class AvailableDuringReservationTests(BookingTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.start = utcnow().replace(microsecond=0) + timedelta(hours=1)
        self.end = self.start + timedelta(hours=2)

    async def book(self, approve: bool = True):
        reservation = await self.lifecycle.create_reservation(
            self.device.id, STUDENT_ID, self.start, self.end, "oscillator bring-up"
        )
        if approve:
            reservation = await self.lifecycle.decide_reservation(reservation.id, STAFF_ID, "approve")
        await self.lifecycle.set_device_status(self.device.id, STAFF_ID, DeviceStatus.IN_USE)
        return reservation

    def move_clock_to(self, instant):
        self.lifecycle.clock = lambda: instant

    async def device_status(self) -> str:
        async with self.runtime.session_factory() as session:
            return (await session.get(DeviceModel, self.device.id)).status

    async def test_cannot_make_available_while_approved_reservation_is_running(self):
        reservation = await self.book()
        self.move_clock_to(self.start + timedelta(minutes=30))

        with self.assertRaises(InvalidTransitionError) as ctx:
            await self.lifecycle.set_device_status(self.device.id, STAFF_ID, DeviceStatus.AVAILABLE)

        self.assertEqual(ctx.exception.context["reservation_ids"], [str(reservation.id)])
        self.assertEqual(await self.device_status(), DeviceStatus.IN_USE.value)
        self.assertEqual(
            await self.audit_count(action=AuditAction.DEVICE_STATUS_UPDATED.value), 1
        )

    async def test_window_start_is_inside_and_end_is_outside(self):
        await self.book()

        self.move_clock_to(self.start)
        with self.assertRaises(InvalidTransitionError):
            await self.lifecycle.set_device_status(self.device.id, STAFF_ID, DeviceStatus.AVAILABLE)

        self.move_clock_to(self.end)
        device = await self.lifecycle.set_device_status(self.device.id, STAFF_ID, DeviceStatus.AVAILABLE)
        self.assertEqual(device.status, DeviceStatus.AVAILABLE.value)

    async def test_pending_reservation_does_not_hold_the_device(self):
        await self.book(approve=False)
        self.move_clock_to(self.start + timedelta(minutes=30))

        device = await self.lifecycle.set_device_status(self.device.id, STAFF_ID, DeviceStatus.AVAILABLE)
        self.assertEqual(device.status, DeviceStatus.AVAILABLE.value)

    async def test_other_statuses_stay_allowed_during_reservation(self):
        await self.book()
        self.move_clock_to(self.start + timedelta(minutes=30))

        device = await self.lifecycle.set_device_status(self.device.id, STAFF_ID, DeviceStatus.MAINTENANCE)
        self.assertEqual(device.status, DeviceStatus.MAINTENANCE.value)


class DeviceCatalogueTests(BookingTestCase):
    async def test_register_requires_staff_and_name(self):
        with self.assertRaises(AuthorizationError):
            await self.lifecycle.register_device(STUDENT_ID, "Projector")
        with self.assertRaises(ValidationError):
            await self.lifecycle.register_device(STAFF_ID, "  ")

        device = await self.lifecycle.register_device(STAFF_ID, "Projector", description="Room 4")
        self.assertEqual(device.status, DeviceStatus.AVAILABLE.value)
        self.assertEqual(
            await self.audit_count(action=AuditAction.DEVICE_CREATED.value, entity_id=device.id), 1
        )

    async def test_update_details(self):
        location = new_id()

        device = await self.lifecycle.update_device_details(
            self.device.id, STAFF_ID, {"description": "Bench 3", "location_id": location}
        )

        self.assertEqual(device.description, "Bench 3")
        self.assertEqual(device.location_id, location)
        self.assertEqual(await self.audit_count(action=AuditAction.DEVICE_UPDATED.value), 1)

    async def test_update_rejects_status_and_no_op_changes(self):
        with self.assertRaises(ValidationError):
            await self.lifecycle.update_device_details(
                self.device.id, STAFF_ID, {"status": DeviceStatus.UNAVAILABLE.value}
            )
        with self.assertRaises(ValidationError):
            await self.lifecycle.update_device_details(
                self.device.id, STAFF_ID, {"name": "Oscilloscope"}
            )
        self.assertEqual(await self.audit_count(action=AuditAction.DEVICE_UPDATED.value), 0)

    async def test_delete_refused_while_reservations_are_active(self):
        reservation = await self.reserve()

        with self.assertRaises(InvalidTransitionError):
            await self.lifecycle.delete_device(self.device.id, STAFF_ID)

        await self.lifecycle.cancel_reservation(reservation.id, STUDENT_ID)
        await self.lifecycle.delete_device(self.device.id, STAFF_ID)

        async with self.runtime.session_factory() as session:
            self.assertIsNone(await session.get(DeviceModel, self.device.id))
            remaining = (await session.execute(select(ReservationModel))).scalars().all()
        self.assertEqual(remaining, [])
        self.assertEqual(
            await self.audit_count(
                action=AuditAction.DEVICE_DELETED.value, entity_id=self.device.id
            ),
            1,
        )

    async def test_delete_unknown_device(self):
        with self.assertRaises(EntityNotFoundError):
            await self.lifecycle.delete_device(new_id(), STAFF_ID)


class RoleChangeTests(BookingTestCase):
    async def test_admin_changes_role_and_it_takes_effect(self):
        reservation = await self.reserve()
        with self.assertRaises(AuthorizationError):
            await self.lifecycle.decide_reservation(reservation.id, OTHER_STUDENT_ID, "approve")

        role = await self.lifecycle.change_user_role(OTHER_STUDENT_ID, ADMIN_ID, "technician")
        self.assertEqual(role, UserRoleType.TECHNICIAN)

        decided = await self.lifecycle.decide_reservation(reservation.id, OTHER_STUDENT_ID, "approve")
        self.assertEqual(decided.status, ReservationStatus.APPROVED.value)
        self.assertEqual(
            await self.audit_count(
                action=AuditAction.ROLE_UPDATED.value,
                entity_type=AuditEntityType.USER_ROLE.value,
                entity_id=OTHER_STUDENT_ID,
            ),
            1,
        )

    async def test_technician_cannot_change_roles(self):
        with self.assertRaises(AuthorizationError):
            await self.lifecycle.change_user_role(STUDENT_ID, STAFF_ID, UserRoleType.ADMIN)

    async def test_same_role_is_rejected(self):
        with self.assertRaises(InvalidTransitionError):
            await self.lifecycle.change_user_role(STUDENT_ID, ADMIN_ID, UserRoleType.STUDENT)
        with self.assertRaises(InvalidTransitionError):
            await self.lifecycle.change_user_role(STAFF_ID, ADMIN_ID, UserRoleType.TECHNICIAN)

    async def test_demotion_revokes_staff_rights(self):
        await self.lifecycle.change_user_role(STAFF_ID, ADMIN_ID, UserRoleType.TEACHER)

        with self.assertRaises(AuthorizationError):
            await self.lifecycle.set_device_status(self.device.id, STAFF_ID, DeviceStatus.MAINTENANCE)
