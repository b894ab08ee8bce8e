import unittest
import gc
import threading
import time
from dataclasses import replace
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo
import os
import sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
sys.path.insert(0, os.path.dirname(__file__))
from lounge_booking.config import Settings
from lounge_booking.booking.booking_writer import create_booking, IntervalLocks
from lounge_booking.booking.calendar_service import event_id_for_key
from lounge_booking.booking.error_utils import CapacityExceededError
from lounge_booking.booking.slots import validate_booking_request
from fake_calendar import FakeCalendar, timed_event

JST = ZoneInfo("Asia/Tokyo")


def booking_for(start="2026-01-16T10:00:00+09:00", end="2026-01-16T11:00:00+09:00", key=None):
    payload = {"name": "Taro", "email": "t@example.com", "start": start, "end": end}
    return validate_booking_request(payload, JST, 30, idempotency_key=key)


def disjoint_events_inside(start: str, n: int, minutes=10) -> list[dict]:
    # n back to back events, none overlapping each other, all inside the target interval
    begin = datetime.fromisoformat(start)
    events = []
    for i in range(n):
        event_start = begin + timedelta(minutes=minutes * i)
        events.append(timed_event(event_start.isoformat(), (event_start + timedelta(minutes=minutes)).isoformat()))
    return events


class BookingWriterTest(unittest.TestCase):

    def setUp(self):
        self.settings = Settings(capacity=6)
        self.locks = IntervalLocks()

    def test_accepts_with_capacity_minus_one(self):
        calendar = FakeCalendar(disjoint_events_inside("2026-01-16T10:00:00+09:00", 5))
        result = create_booking(calendar, booking_for(), self.settings, self.locks)
        self.assertEqual(result.overlapping, 5)
        self.assertFalse(result.replayed)
        self.assertEqual(len(calendar.inserted), 1)
        self.assertEqual(result.event_id, calendar.inserted[0]["id"])

    def test_rejects_at_capacity(self):
        calendar = FakeCalendar(disjoint_events_inside("2026-01-16T10:00:00+09:00", 6))
        with self.assertRaises(CapacityExceededError) as ctx:
            create_booking(calendar, booking_for(), self.settings, self.locks)
        self.assertEqual(ctx.exception.capacity, 6)
        self.assertEqual(ctx.exception.current, 6)
        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(calendar.inserted, [])

    def test_queries_the_requested_interval(self):
        calendar = FakeCalendar()
        booking = booking_for(start="2026-01-16T10:15:00+09:00", end="2026-01-16T10:45:00+09:00")
        create_booking(calendar, booking, self.settings, self.locks)
        self.assertEqual(calendar.list_calls, [(booking.start, booking.end)])

    def test_touching_events_do_not_count(self):
        calendar = FakeCalendar([timed_event("2026-01-16T09:00:00+09:00", "2026-01-16T10:00:00+09:00"),
                                 timed_event("2026-01-16T11:00:00+09:00", "2026-01-16T12:00:00+09:00")])
        calendar.list_events = lambda time_min, time_max: calendar.events
        result = create_booking(calendar, booking_for(), replace(self.settings, capacity=1), self.locks)
        self.assertEqual(result.overlapping, 0)

    def test_zero_tolerance_with_capacity_one(self):
        calendar = FakeCalendar([timed_event("2026-01-16T10:50:00+09:00", "2026-01-16T12:00:00+09:00")])
        with self.assertRaises(CapacityExceededError):
            create_booking(calendar, booking_for(), replace(self.settings, capacity=1), self.locks)

    def test_inserted_event_uses_supplied_instants(self):
        calendar = FakeCalendar()
        create_booking(calendar, booking_for(start="2026-01-16T01:07:00Z", end="2026-01-16T01:52:00Z"),
                       self.settings, self.locks)
        event = calendar.inserted[0]
        self.assertEqual(event["start"], {"dateTime": "2026-01-16T01:07:00Z"})
        self.assertEqual(event["end"], {"dateTime": "2026-01-16T01:52:00Z"})
        self.assertEqual(event["summary"], "Reservation: Taro")
        self.assertEqual(event["description"], "Email: t@example.com\nLounge booking")

    def test_idempotency_key_sets_event_id(self):
        calendar = FakeCalendar()
        result = create_booking(calendar, booking_for(key="submit-1"), self.settings, self.locks)
        self.assertEqual(result.event_id, event_id_for_key("submit-1"))
        self.assertEqual(calendar.inserted[0]["id"], event_id_for_key("submit-1"))

    def test_replay_found_in_listing_is_not_inserted_again(self):
        calendar = FakeCalendar()
        create_booking(calendar, booking_for(key="submit-1"), self.settings, self.locks)
        # Fill the interval after the first submission went through
        calendar.events.extend(disjoint_events_inside("2026-01-16T10:00:00+09:00", 6))
        result = create_booking(calendar, booking_for(key="submit-1"), self.settings, self.locks)
        self.assertTrue(result.replayed)
        self.assertEqual(len(calendar.inserted), 1)

    def test_replay_reported_by_calendar(self):
        calendar = FakeCalendar()
        create_booking(calendar, booking_for(key="submit-1"), self.settings, self.locks)
        # Same key, different interval: listing doesn't see it, insert reports the duplicate id
        result = create_booking(calendar, booking_for(start="2026-01-16T15:00:00+09:00",
                                                      end="2026-01-16T16:00:00+09:00", key="submit-1"),
                                self.settings, self.locks)
        self.assertTrue(result.replayed)
        self.assertEqual(len(calendar.inserted), 1)

    def test_local_times_are_sent_with_booking_timezone(self):
        calendar = FakeCalendar()
        create_booking(calendar, booking_for(start="2026-01-16T10:00:00", end="2026-01-16T11:00:00"),
                       self.settings, self.locks)
        event = calendar.inserted[0]
        self.assertEqual(event["start"], {"dateTime": "2026-01-16T10:00:00", "timeZone": "Asia/Tokyo"})
        self.assertEqual(event["end"], {"dateTime": "2026-01-16T11:00:00", "timeZone": "Asia/Tokyo"})

    def test_local_booking_counts_against_later_offset_booking(self):
        calendar = FakeCalendar()
        settings = replace(self.settings, capacity=1)
        create_booking(calendar, booking_for(start="2026-01-16T10:00:00", end="2026-01-16T11:00:00"),
                       settings, self.locks)
        with self.assertRaises(CapacityExceededError):
            create_booking(calendar, booking_for(start="2026-01-16T01:30:00Z", end="2026-01-16T02:30:00Z"),
                           settings, self.locks)


class SlowCalendar(FakeCalendar):
    """
    Holds every listing open for a moment and records how many were in flight at once.
    """

    def __init__(self, events=None):
        super().__init__(events)
        self._in_flight = 0
        self._counter = threading.Lock()
        self.max_in_flight = 0

    def list_events(self, time_min, time_max):
        with self._counter:
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            time.sleep(0.05)
            return super().list_events(time_min, time_max)
        finally:
            with self._counter:
                self._in_flight -= 1


class ConcurrentBookingTest(unittest.TestCase):

    def book_concurrently(self, calendar, bookings, settings):
        locks = IntervalLocks()
        barrier = threading.Barrier(len(bookings))
        outcomes = []

        def submit(booking):
            barrier.wait()
            try:
                outcomes.append(create_booking(calendar, booking, settings, locks))
            except CapacityExceededError as e:
                outcomes.append(e)

        threads = [threading.Thread(target=submit, args=(booking,)) for booking in bookings]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)
        return outcomes

    def test_same_interval_last_seat_goes_to_one_request(self):
        calendar = SlowCalendar()
        outcomes = self.book_concurrently(calendar, [booking_for(), booking_for()], Settings(capacity=1))

        self.assertEqual(len(outcomes), 2)
        self.assertEqual(len(calendar.inserted), 1)
        self.assertEqual(sum(isinstance(outcome, CapacityExceededError) for outcome in outcomes), 1)
        self.assertEqual(calendar.max_in_flight, 1)

    def test_same_day_bookings_wait_for_each_other(self):
        calendar = SlowCalendar()
        bookings = [booking_for(), booking_for(start="2026-01-16T15:00:00+09:00", end="2026-01-16T16:00:00+09:00")]
        outcomes = self.book_concurrently(calendar, bookings, Settings(capacity=1))

        self.assertEqual(len(calendar.inserted), 2)
        self.assertTrue(all(not isinstance(outcome, CapacityExceededError) for outcome in outcomes))
        self.assertEqual(calendar.max_in_flight, 1)

    def test_different_days_do_not_share_a_lock(self):
        calendar = SlowCalendar()
        bookings = [booking_for(), booking_for(start="2026-01-17T10:00:00+09:00", end="2026-01-17T11:00:00+09:00")]
        self.book_concurrently(calendar, bookings, Settings(capacity=1))

        self.assertEqual(len(calendar.inserted), 2)
        self.assertEqual(calendar.max_in_flight, 2)


class IntervalLocksTest(unittest.TestCase):

    def test_one_lock_per_date(self):
        locks = IntervalLocks()
        first = locks.for_date(date(2026, 1, 16))
        self.assertIs(locks.for_date(date(2026, 1, 16)), first)
        self.assertIsNot(locks.for_date(date(2026, 1, 17)), first)

    def test_unused_locks_are_dropped(self):
        locks = IntervalLocks()
        for offset in range(30):
            with locks.for_date(date(2026, 1, 1) + timedelta(days=offset)):
                pass
        gc.collect()
        self.assertEqual(len(locks._locks), 0)

    def test_held_lock_is_kept(self):
        locks = IntervalLocks()
        held = locks.for_date(date(2026, 1, 16))
        gc.collect()
        self.assertIs(locks.for_date(date(2026, 1, 16)), held)
        self.assertEqual(len(locks._locks), 1)


if __name__ == '__main__':
    unittest.main()
