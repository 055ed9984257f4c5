from pydantic import BaseModel, Field


class ReassignSubstituteRequest(BaseModel):
    expected_teacher_id: int = Field(gt=0)
    teacher_id: int = Field(gt=0)


class AttendanceCheckRequest(BaseModel):
    teacher_id: int = Field(gt=0)


class SessionCheckRequest(BaseModel):
    teacher_id: int = Field(gt=0)
