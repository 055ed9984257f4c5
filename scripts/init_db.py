from datetime import time
from pathlib import Path
import sys


# Ensure imports work when running this file directly: `python scripts/init_db.py`.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from attendance_engine.core.time_provider import default_time_provider
from attendance_engine.db import Base, SessionLocal, engine
from attendance_engine.models import ScheduleSlot, SchoolClass, Subject, Teacher
from attendance_engine.services.session_store_service import expand_schedule_for_date


Base.metadata.create_all(bind=engine)

db = SessionLocal()
try:
    if not db.query(Teacher).first():
        teachers = [
            Teacher(name='Siti Rahma', employee_id='G-001'),
            Teacher(name='Budi Santoso', employee_id='G-002'),
            Teacher(name='Dewi Lestari', employee_id='G-003'),
        ]
        classes = [SchoolClass(name='X IPA 1'), SchoolClass(name='X IPS 2')]
        subjects = [Subject(name='Matematika', code='MTK'), Subject(name='Bahasa Indonesia', code='BIN')]
        db.add_all([*teachers, *classes, *subjects])
        db.commit()

        periods = [(time(7, 0), time(8, 30)), (time(8, 30), time(10, 0)), (time(10, 15), time(11, 45))]
        for weekday in range(6):
            for index, (start, end) in enumerate(periods):
                db.add(
                    ScheduleSlot(
                        class_id=classes[index % 2].id,
                        subject_id=subjects[index % 2].id,
                        teacher_id=teachers[index].id,
                        weekday=weekday,
                        start_time=start,
                        end_time=end,
                    )
                )
        db.commit()

    result = expand_schedule_for_date(db, default_time_provider.today())
finally:
    db.close()

print(f"DB initialized; sessions for {result['date']}: {result['created']} created.")
