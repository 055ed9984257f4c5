from attendance_engine.sdk.client import AssignmentOutcome, SubstituteBoardClient

__all__ = ['AssignmentOutcome', 'SubstituteBoardClient']
