"""Reconcile stored bookings with the events of a Google Calendar."""
import logging
from dataclasses import replace
from typing import Any, Dict, List

import requests

from gcal.calendar_client import EVENT_SOURCE, CalendarAPIError
from sync.models import Booking, PlannedAction, SyncAction, SyncPlan, SyncResult

logger = logging.getLogger(__name__)


def plan_sync(bookings: List[Booking], remote_events: List[Dict[str, Any]]) -> SyncPlan:
    """
    Decide what to do with every booking and remote event.

    A remote event is claimed by the first linked booking that references it
    and removed from the lookup, so later bookings pointing at the same id are
    re-created instead. Events left unclaimed are orphans.

    Args:
        bookings: Every booking of the account, in store order
        remote_events: Raw events listed from the calendar

    Returns:
        SyncPlan with one action per booking and the orphan events by id
    """
    remote_by_id = {event['id']: event for event in remote_events if event.get('id')}
    plan = SyncPlan()

    for booking in bookings:
        if not booking.is_linked:
            action = SyncAction.CREATE
        elif booking.event_id not in remote_by_id:
            action = SyncAction.RECREATE
        else:
            del remote_by_id[booking.event_id]
            action = SyncAction.UPDATE if booking.has_drift else SyncAction.SKIP
        plan.actions.append(PlannedAction(action=action, booking=booking))

    plan.orphans = remote_by_id
    return plan


class CalendarReconciler:
    """Push an account's bookings to its calendar and remove stray events."""

    def __init__(self, booking_store, calendar_client, delete_untagged: bool = True):
        """
        Args:
            booking_store: Reads bookings and stores event links
            calendar_client: GoogleCalendarClient for the remote calendar
            delete_untagged: Also delete orphan events this app did not create
        """
        self.booking_store = booking_store
        self.calendar_client = calendar_client
        self.delete_untagged = delete_untagged

    def sync_all(self, account_id: str) -> SyncResult:
        """
        Synchronize every booking of an account with its primary calendar.

        Creates and updates run first, one booking at a time; orphan deletion
        only starts once every booking has been handled.

        Args:
            account_id: Account to synchronize

        Returns:
            SyncResult with the added, updated and deleted bookings

        Raises:
            CalendarAuthError: If the account has no usable calendar token
            CalendarAPIError: If listing, creating or updating fails
        """
        logger.info(f"Starting calendar sync for account {account_id}")

        bookings = self.booking_store.get_bookings_for_account(account_id)
        remote_events = self.calendar_client.list_events(account_id)

        plan = plan_sync(bookings, remote_events)
        logger.info(
            f"Sync plan: {plan.count(SyncAction.CREATE)} to add, "
            f"{plan.count(SyncAction.RECREATE)} to re-add, "
            f"{plan.count(SyncAction.UPDATE)} to update, "
            f"{plan.count(SyncAction.SKIP)} unchanged, "
            f"{plan.count(SyncAction.DELETE)} to delete"
        )

        result = SyncResult(total=len(bookings))

        for planned in plan.actions:
            self._apply(account_id, planned, result)

        for event_id, event in plan.orphans.items():
            self._delete_orphan(account_id, event_id, event, result)

        logger.info(
            f"Sync complete: {len(result.added)} added, {len(result.updated)} updated, "
            f"{len(result.deleted)} deleted, {result.total} bookings expected on calendar"
        )
        return result

    def _apply(self, account_id: str, planned: PlannedAction, result: SyncResult) -> None:
        booking = planned.booking

        if planned.action is SyncAction.SKIP:
            return

        if planned.action is SyncAction.CREATE:
            logger.info(f"Adding event for booking {booking.id} ({booking.start_date_time})")
            result.added.append(self._create(account_id, booking))
            return

        if planned.action is SyncAction.RECREATE:
            logger.info(
                f"Event {booking.event_id} of booking {booking.id} not found on calendar, "
                f"adding it again"
            )
            result.added.append(self._create(account_id, booking))
            return

        logger.info(f"Updating event {booking.event_id} for booking {booking.id}")
        try:
            self.calendar_client.update_event(account_id, booking.event_id, booking)
        except CalendarAPIError as e:
            if not e.is_not_found:
                raise
            logger.info(f"Event {booking.event_id} disappeared before update, re-creating")
            result.added.append(self._create(account_id, booking))
            return

        self.booking_store.link_booking(booking.id, booking.event_id, booking.date)
        result.updated.append(replace(booking, last_synced_date=booking.date))

    def _create(self, account_id: str, booking: Booking) -> Booking:
        created = self.calendar_client.create_event(account_id, booking)
        event_id = created['id']
        self.booking_store.link_booking(booking.id, event_id, booking.date)
        return replace(booking, event_id=event_id, last_synced_date=booking.date)

    def _delete_orphan(
        self,
        account_id: str,
        event_id: str,
        event: Dict[str, Any],
        result: SyncResult
    ) -> None:
        if not self.delete_untagged and not self._is_tagged(event):
            logger.info(f"Ignoring personal event {event_id}: {event.get('summary')}")
            return

        try:
            self.calendar_client.delete_event_with_backoff(account_id, event_id)
        except CalendarAPIError as e:
            if not e.is_not_found:
                self._skip_orphan(event_id, e, result)
                return
            logger.debug(f"Event {event_id} was already deleted")
        except requests.RequestException as e:
            self._skip_orphan(event_id, e, result)
            return

        result.deleted.append(Booking.from_remote_event(event, account_id))

    def _skip_orphan(self, event_id: str, error: Exception, result: SyncResult) -> None:
        error_msg = f"Error deleting event {event_id}: {error}"
        logger.error(error_msg)
        result.errors.append(error_msg)

    def _is_tagged(self, event: Dict[str, Any]) -> bool:
        private = (event.get('extendedProperties') or {}).get('private') or {}
        return private.get('source') == EVENT_SOURCE
