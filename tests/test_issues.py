from tests.support import ADMIN_ID, OTHER_STUDENT_ID, STAFF_ID, STUDENT_ID, BookingTestCase, new_id
from services.booking_service.notifications import NotificationTemplate
from shared.domain.equipment import IssuePriority, IssueStatus
from shared.domain.exceptions import (
    AuthorizationError,
    EntityNotFoundError,
    InvalidTransitionError,
    ValidationError,
)
from shared.security.audit import AuditAction


class IssueLifecycleTests(BookingTestCase):
    async def report(self, **kwargs):
        issue = await self.lifecycle.report_issue(
            self.device.id,
            kwargs.pop("reporter", STUDENT_ID),
            kwargs.pop("title", "Screen flickers"),
            kwargs.pop("description", "Flickers after ten minutes of use"),
            **kwargs,
        )
        await self.settle()
        return issue

    async def test_any_user_can_report(self):
        issue = await self.report(priority=IssuePriority.HIGH)

        self.assertEqual(issue.status, IssueStatus.REPORTED.value)
        self.assertEqual(issue.priority, IssuePriority.HIGH.value)
        self.assertIsNone(issue.resolved_at)
        self.assertEqual(await self.audit_count(action=AuditAction.ISSUE_REPORTED.value), 1)

    async def test_report_alerts_staff(self):
        await self.lifecycle.report_issue(
            self.device.id, STUDENT_ID, "No power", "Does not turn on", IssuePriority.CRITICAL
        )
        await self.runtime.dispatcher.drain()

        recipients = sorted(str(i.recipient_id) for i in self.delivery.delivered)
        self.assertEqual(recipients, sorted([str(STAFF_ID), str(ADMIN_ID)]))
        for intent in self.delivery.delivered:
            self.assertEqual(intent.template, NotificationTemplate.ISSUE_REPORTED)
            self.assertEqual(
                intent.details,
                {"deviceName": "Oscilloscope", "issueTitle": "No power", "priority": "critical"},
            )

    async def test_staff_reporter_is_not_alerted_about_own_report(self):
        await self.lifecycle.report_issue(self.device.id, STAFF_ID, "Fan noise", "Loud fan")
        await self.runtime.dispatcher.drain()

        self.assertEqual([i.recipient_id for i in self.delivery.delivered], [ADMIN_ID])

    async def test_priority_defaults_to_medium(self):
        issue = await self.report()
        self.assertEqual(issue.priority, IssuePriority.MEDIUM.value)

    async def test_blank_title_or_description_is_rejected(self):
        with self.assertRaises(ValidationError):
            await self.report(title="   ")
        with self.assertRaises(ValidationError):
            await self.report(description="")
        self.assertEqual(await self.audit_count(action=AuditAction.ISSUE_REPORTED.value), 0)

    async def test_report_against_unknown_device(self):
        with self.assertRaises(EntityNotFoundError):
            await self.lifecycle.report_issue(new_id(), STUDENT_ID, "Broken", "Does not start")

    async def test_full_chain_stamps_resolved_at_once(self):
        issue = await self.report()

        in_progress = await self.lifecycle.update_issue_status(issue.id, STAFF_ID, IssueStatus.IN_PROGRESS)
        self.assertIsNone(in_progress.resolved_at)

        resolved = await self.lifecycle.update_issue_status(
            issue.id, STAFF_ID, IssueStatus.RESOLVED, "Replaced the backlight"
        )
        self.assertEqual(resolved.resolution, "Replaced the backlight")
        self.assertIsNotNone(resolved.resolved_at)

        closed = await self.lifecycle.update_issue_status(issue.id, STAFF_ID, IssueStatus.CLOSED)
        self.assertEqual(closed.status, IssueStatus.CLOSED.value)
        self.assertEqual(closed.resolved_at, resolved.resolved_at)
        self.assertEqual(await self.audit_count(action=AuditAction.ISSUE_STATUS_UPDATED.value), 3)

    async def test_resolve_directly_from_reported_notifies_reporter(self):
        issue = await self.report(reporter=OTHER_STUDENT_ID)

        await self.lifecycle.update_issue_status(
            issue.id, STAFF_ID, "resolved", "Loose cable reseated"
        )
        await self.runtime.dispatcher.drain()

        self.assertEqual(len(self.delivery.delivered), 1)
        intent = self.delivery.delivered[0]
        self.assertEqual(intent.recipient_id, OTHER_STUDENT_ID)
        self.assertEqual(intent.template, NotificationTemplate.ISSUE_RESOLVED)
        self.assertEqual(intent.details["issueTitle"], "Screen flickers")
        self.assertEqual(intent.details["resolution"], "Loose cable reseated")

    async def test_resolving_requires_resolution(self):
        issue = await self.report()

        with self.assertRaises(ValidationError):
            await self.lifecycle.update_issue_status(issue.id, STAFF_ID, IssueStatus.RESOLVED, "  ")
        with self.assertRaises(ValidationError):
            await self.lifecycle.update_issue_status(issue.id, STAFF_ID, IssueStatus.RESOLVED)

        self.assertEqual(await self.audit_count(action=AuditAction.ISSUE_STATUS_UPDATED.value), 0)

    async def test_illegal_edges(self):
        issue = await self.report()

        for target in (IssueStatus.CLOSED, IssueStatus.REPORTED):
            with self.assertRaises(InvalidTransitionError):
                await self.lifecycle.update_issue_status(issue.id, STAFF_ID, target)

        await self.lifecycle.update_issue_status(issue.id, STAFF_ID, IssueStatus.IN_PROGRESS)
        with self.assertRaises(InvalidTransitionError):
            await self.lifecycle.update_issue_status(issue.id, STAFF_ID, IssueStatus.REPORTED)

        await self.lifecycle.update_issue_status(issue.id, STAFF_ID, IssueStatus.RESOLVED, "Fixed")
        await self.lifecycle.update_issue_status(issue.id, STAFF_ID, IssueStatus.CLOSED)
        for target in IssueStatus:
            with self.assertRaises(InvalidTransitionError):
                await self.lifecycle.update_issue_status(issue.id, STAFF_ID, target, "again")

    async def test_non_staff_cannot_update(self):
        issue = await self.report()

        with self.assertRaises(AuthorizationError):
            await self.lifecycle.update_issue_status(issue.id, STUDENT_ID, IssueStatus.IN_PROGRESS)

    async def test_non_resolving_transitions_send_nothing(self):
        issue = await self.report()

        await self.lifecycle.update_issue_status(issue.id, STAFF_ID, IssueStatus.IN_PROGRESS)
        await self.runtime.dispatcher.drain()

        self.assertEqual(self.delivery.attempts, [])
