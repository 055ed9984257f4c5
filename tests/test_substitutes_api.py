import unittest
from datetime import time
from unittest.mock import patch

from fastapi import FastAPI
from fastapi.testclient import TestClient

from factories import MONDAY, SqliteDatabase, local, seed_attendance, seed_session, seed_teacher

from attendance_engine.core.event_bus import SessionEventBus
from attendance_engine.db import get_db
from attendance_engine.main import app as service_app, include_routers, register_exception_handlers


ADMIN = {'x-user-id': '1', 'x-user-role': 'admin'}
TEACHER = {'x-user-id': '7', 'x-user-role': 'teacher'}


class SubstitutesApiTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._database = SqliteDatabase('test_substitutes_api')
        cls._session_factory = cls._database.session_factory

        app = FastAPI()
        register_exception_handlers(app)
        include_routers(app)
        app.state.event_bus = SessionEventBus()

        def override_get_db():
            db = cls._session_factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        cls.app = app
        cls.client = TestClient(app)

    @classmethod
    def tearDownClass(cls):
        cls.app.dependency_overrides.clear()
        cls._database.dispose()

    def setUp(self):
        self._database.reset()
        db = self._session_factory()
        try:
            home = seed_teacher(db, 'Bu Sari', teacher_id=3)
            andi = seed_teacher(db, 'Pak Andi', teacher_id=7)
            seed_teacher(db, 'Pak Dodi', teacher_id=9)
            seed_attendance(db, andi)
            seed_session(db, teacher=home, session_id=42)
            seed_session(db, teacher=home, start=time(13, 0), end=time(14, 0), session_id=43, class_name='XI IPS 1')
        finally:
            db.close()
        self._now = patch(
            'attendance_engine.services.session_store_service.default_time_provider.now',
            return_value=local(MONDAY, 10, 45),
        )
        self._now.start()
        self.addCleanup(self._now.stop)

    def test_board_lists_window_with_warning_flags(self):
        response = self.client.get('/api/substitutes/sessions', params={'hours': 6})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual([item['id'] for item in body['sessions']], [42, 43])
        current = body['sessions'][0]
        self.assertEqual(current['sessionStatus'], 'ongoing')
        self.assertTrue(current['warning'])
        self.assertEqual(current['serverTimeMs'], body['serverTimeMs'])
        self.assertEqual(body['sessions'][1]['sessionStatus'], 'upcoming')
        self.assertFalse(body['sessions'][1]['warning'])

    def test_invalid_lookahead_is_rejected(self):
        response = self.client.get('/api/substitutes/sessions', params={'hours': 0})
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()['code'], 'validation_error')

    def test_assign_then_conflict(self):
        first = self.client.put('/api/substitutes/sessions/42/substitute/7', headers=ADMIN)
        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json()['session']['substituteTeacherId'], 7)

        second = self.client.put('/api/substitutes/sessions/42/substitute/9', headers=ADMIN)
        self.assertEqual(second.status_code, 409)
        self.assertEqual(second.json()['code'], 'conflict')

        snapshot = self.client.get('/api/substitutes/sessions/42').json()
        self.assertEqual(snapshot['substituteTeacherId'], 7)
        self.assertFalse(snapshot['warning'])

    def test_assign_requires_admin(self):
        self.assertEqual(self.client.put('/api/substitutes/sessions/42/substitute/7').status_code, 401)
        self.assertEqual(
            self.client.put('/api/substitutes/sessions/42/substitute/7', headers=TEACHER).status_code,
            403,
        )

    def test_error_mapping(self):
        missing = self.client.put('/api/substitutes/sessions/999/substitute/7', headers=ADMIN)
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()['code'], 'not_found')

        own_teacher = self.client.put('/api/substitutes/sessions/42/substitute/3', headers=ADMIN)
        self.assertEqual(own_teacher.status_code, 409)
        self.assertEqual(own_teacher.json()['code'], 'teacher_unavailable')

    def test_reassign_endpoint(self):
        self.client.put('/api/substitutes/sessions/43/substitute/7', headers=ADMIN)
        stale = self.client.post(
            '/api/substitutes/sessions/43/reassign',
            json={'expected_teacher_id': 9, 'teacher_id': 9},
            headers=ADMIN,
        )
        self.assertEqual(stale.status_code, 422)
        swapped = self.client.post(
            '/api/substitutes/sessions/43/reassign',
            json={'expected_teacher_id': 7, 'teacher_id': 9},
            headers=ADMIN,
        )
        self.assertEqual(swapped.status_code, 200)
        self.assertEqual(swapped.json()['session']['previousTeacherId'], 7)

    def test_teacher_availability_endpoint(self):
        response = self.client.get('/api/substitutes/teachers', params={'date': '2026-03-02'})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual([item['id'] for item in body['free']], [7])
        self.assertEqual(body['teachers'][0]['state'], 'free')

    def test_assignment_is_pushed_to_event_stream(self):
        with self.client.websocket_connect('/ws/events?events=substitute:assigned') as websocket:
            response = self.client.put('/api/substitutes/sessions/42/substitute/7', headers=ADMIN)
            self.assertEqual(response.status_code, 200)
            message = websocket.receive_json()

        self.assertEqual(message['event'], 'substitute:assigned')
        self.assertEqual(message['payload'], {'sessionId': 42, 'teacherId': 7, 'teacherName': 'Pak Andi'})
        self.assertIn('serverTimeMs', message)

    def test_admin_operations_on_sessions(self):
        self.assertEqual(self.client.post('/api/substitutes/sweep', headers=TEACHER).status_code, 403)
        sweep = self.client.post('/api/substitutes/sweep', headers=ADMIN)
        self.assertEqual(sweep.json(), {'inspected': 0, 'closed': 0, 'sessionIds': []})

        expand = self.client.post('/api/sessions/expand', params={'date': '2026-03-02'}, headers=ADMIN)
        self.assertEqual(expand.json(), {'date': '2026-03-02', 'slots': 0, 'created': 0})

    def test_teacher_cannot_start_someone_elses_session(self):
        response = self.client.post('/api/sessions/42/start', json={'teacher_id': 3}, headers=TEACHER)
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()['context']['teacher_id'], 7)

    def test_health_reports_subscribers(self):
        response = TestClient(service_app).get('/health')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['status'], 'ok')
        self.assertEqual(response.json()['subscribers'], 0)

    def test_teacher_check_in_uses_own_identity(self):
        response = self.client.post('/api/attendance/check-in', json={'teacher_id': 9}, headers=TEACHER)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['teacherId'], 7)
        self.assertTrue(response.json()['idempotent'])


if __name__ == '__main__':
    unittest.main()
