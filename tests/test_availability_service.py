import unittest
from datetime import time

from factories import MONDAY, FixedTimeProvider, SqliteDatabase, local, seed_attendance, seed_session, seed_teacher

from attendance_engine.services.availability_service import (
    Availability,
    list_teacher_availability,
    teacher_availability,
)


class AvailabilityServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._database = SqliteDatabase('test_availability')
        cls._session_factory = cls._database.session_factory

    @classmethod
    def tearDownClass(cls):
        cls._database.dispose()

    def setUp(self):
        self._database.reset()

    def test_checked_out_teacher_is_not_free(self):
        db = self._session_factory()
        try:
            teacher = seed_teacher(db, 'Bu Rina')
            seed_attendance(db, teacher, check_in=time(7, 0), check_out=time(12, 0))

            result = list_teacher_availability(
                db,
                target_date=MONDAY,
                time_provider=FixedTimeProvider(local(MONDAY, 13, 0)),
            )

            self.assertEqual([item['id'] for item in result['checked_out']], [teacher.id])
            self.assertEqual(result['free'], [])
            self.assertEqual(result['busy'], [])
            entry = result['teachers'][0]
            self.assertEqual(entry['state'], 'checked-out')
            self.assertTrue(entry['hasCheckedOut'])
            self.assertFalse(entry['isCheckedIn'])
            self.assertEqual(entry['checkOutAt'], '2026-03-02T12:00:00')
            self.assertEqual(teacher_availability(db, teacher.id, MONDAY), Availability.CHECKED_OUT)
        finally:
            db.close()

    def test_groups_are_disjoint_and_cover_present_teachers(self):
        db = self._session_factory()
        try:
            free = seed_teacher(db, 'Pak Andi')
            busy = seed_teacher(db, 'Bu Sari')
            covering = seed_teacher(db, 'Pak Dodi')
            gone = seed_teacher(db, 'Bu Rina')
            absent = seed_teacher(db, 'Pak Eko')
            for teacher in (free, busy, covering):
                seed_attendance(db, teacher)
            seed_attendance(db, gone, check_out=time(11, 0))
            seed_session(db, teacher=busy, status='ongoing')
            seed_session(db, teacher=absent, substitute=covering, status='ongoing', class_name='XI IPS 2')
            seed_session(db, teacher=free, start=time(13, 0), end=time(14, 0), class_name='XII IPA 1')

            clock = FixedTimeProvider(local(MONDAY, 10, 30))
            result = list_teacher_availability(db, time_provider=clock)

            free_ids = {item['id'] for item in result['free']}
            busy_ids = {item['id'] for item in result['busy']}
            out_ids = {item['id'] for item in result['checked_out']}
            self.assertEqual(free_ids, {free.id})
            self.assertEqual(busy_ids, {busy.id, covering.id})
            self.assertEqual(out_ids, {gone.id})
            self.assertFalse(free_ids & busy_ids or free_ids & out_ids or busy_ids & out_ids)
            self.assertEqual(free_ids | busy_ids | out_ids, {item['id'] for item in result['teachers']})
            self.assertNotIn(absent.id, free_ids | busy_ids | out_ids)
            self.assertEqual(result['date'], '2026-03-02')
            self.assertEqual(teacher_availability(db, absent.id, MONDAY, time_provider=clock), Availability.ABSENT)
            self.assertEqual(teacher_availability(db, covering.id, MONDAY, time_provider=clock), Availability.BUSY)
        finally:
            db.close()

    def test_checked_out_wins_over_busy(self):
        db = self._session_factory()
        try:
            teacher = seed_teacher(db, 'Bu Sari')
            seed_attendance(db, teacher, check_out=time(10, 15))
            seed_session(db, teacher=teacher, status='ongoing')

            clock = FixedTimeProvider(local(MONDAY, 10, 30))
            self.assertEqual(teacher_availability(db, teacher.id, MONDAY, time_provider=clock), Availability.CHECKED_OUT)
        finally:
            db.close()

    def test_teacher_is_free_once_started_session_window_has_passed(self):
        db = self._session_factory()
        try:
            teacher = seed_teacher(db, 'Bu Sari')
            seed_attendance(db, teacher)
            seed_session(db, teacher=teacher, start=time(8, 0), end=time(9, 0), status='ongoing')

            during = FixedTimeProvider(local(MONDAY, 8, 30))
            self.assertEqual(teacher_availability(db, teacher.id, MONDAY, time_provider=during), Availability.BUSY)

            noon = FixedTimeProvider(local(MONDAY, 12, 0))
            self.assertEqual(teacher_availability(db, teacher.id, MONDAY, time_provider=noon), Availability.FREE)
            result = list_teacher_availability(db, target_date=MONDAY, time_provider=noon)
            self.assertEqual([item['id'] for item in result['free']], [teacher.id])
            self.assertEqual(result['busy'], [])
        finally:
            db.close()


if __name__ == '__main__':
    unittest.main()
