from datetime import date, datetime, time
from enum import Enum

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Time, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from attendance_engine.db import Base


class Role(str, Enum):
    ADMIN = 'admin'
    TEACHER = 'teacher'


class SessionStatus(str, Enum):
    SCHEDULED = 'scheduled'
    ONGOING = 'ongoing'
    COMPLETED = 'completed'


class AttendanceStatus(str, Enum):
    PRESENT = 'present'
    LATE = 'late'


class Teacher(Base):
    __tablename__ = 'teachers'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(160))
    employee_id: Mapped[str] = mapped_column(String(40), unique=True, index=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)


class SchoolClass(Base):
    __tablename__ = 'school_classes'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(80))


class Subject(Base):
    __tablename__ = 'subjects'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(120))
    code: Mapped[str] = mapped_column(String(20), default='')


class ScheduleSlot(Base):
    __tablename__ = 'schedule_slots'
    __table_args__ = (
        Index('ix_schedule_slots_weekday_start_time', 'weekday', 'start_time'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    class_id: Mapped[int] = mapped_column(ForeignKey('school_classes.id'), index=True)
    subject_id: Mapped[int] = mapped_column(ForeignKey('subjects.id'), index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey('teachers.id'), index=True)
    # 0=Monday ... 6=Sunday, as date.weekday()
    weekday: Mapped[int] = mapped_column(Integer)
    start_time: Mapped[time] = mapped_column(Time)
    end_time: Mapped[time] = mapped_column(Time)
    active: Mapped[bool] = mapped_column(Boolean, default=True)


class ClassSession(Base):
    __tablename__ = 'class_sessions'
    __table_args__ = (
        UniqueConstraint('schedule_slot_id', 'session_date', name='uq_class_sessions_slot_date'),
        Index('ix_class_sessions_date_start', 'session_date', 'start_time'),
        Index('ix_class_sessions_status', 'status'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    schedule_slot_id: Mapped[int | None] = mapped_column(ForeignKey('schedule_slots.id'), nullable=True, index=True)
    session_date: Mapped[date] = mapped_column(Date, index=True)
    start_time: Mapped[time] = mapped_column(Time)
    end_time: Mapped[time] = mapped_column(Time)
    class_id: Mapped[int] = mapped_column(ForeignKey('school_classes.id'), index=True)
    subject_id: Mapped[int] = mapped_column(ForeignKey('subjects.id'), index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey('teachers.id'), index=True)
    substitute_teacher_id: Mapped[int | None] = mapped_column(ForeignKey('teachers.id'), nullable=True, index=True)
    substitute_assigned_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=SessionStatus.SCHEDULED.value)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    auto_closed: Mapped[bool] = mapped_column(Boolean, default=False)

    school_class = relationship('SchoolClass')
    subject = relationship('Subject')
    teacher = relationship('Teacher', foreign_keys=[teacher_id])
    substitute_teacher = relationship('Teacher', foreign_keys=[substitute_teacher_id])
    check_ins = relationship('SessionCheckIn', back_populates='session')


class TeacherAttendance(Base):
    __tablename__ = 'teacher_attendance'
    __table_args__ = (
        UniqueConstraint('teacher_id', 'attendance_date', name='uq_teacher_attendance_teacher_date'),
        Index('ix_teacher_attendance_date', 'attendance_date'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey('teachers.id'), index=True)
    attendance_date: Mapped[date] = mapped_column(Date)
    check_in_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    check_out_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=AttendanceStatus.PRESENT.value)


class SessionCheckIn(Base):
    __tablename__ = 'session_check_ins'
    __table_args__ = (
        UniqueConstraint('teacher_id', 'session_id', name='uq_session_check_ins_teacher_session'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey('teachers.id'), index=True)
    session_id: Mapped[int] = mapped_column(ForeignKey('class_sessions.id'), index=True)
    check_in_at: Mapped[datetime] = mapped_column(DateTime)
    check_out_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    auto_checkout: Mapped[bool] = mapped_column(Boolean, default=False)

    session = relationship('ClassSession', back_populates='check_ins')
