from attendance_engine.routers import attendance, events, sessions, substitutes

__all__ = [
    'attendance',
    'events',
    'sessions',
    'substitutes',
]
