from __future__ import annotations


class EngineError(Exception):
    status_code = 400
    code = 'engine_error'

    def __init__(self, message: str = '', **context) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context

    def to_payload(self) -> dict:
        payload = {'detail': self.message, 'code': self.code}
        if self.context:
            payload['context'] = self.context
        return payload


class NotFoundError(EngineError):
    status_code = 404
    code = 'not_found'


class ConflictError(EngineError):
    status_code = 409
    code = 'conflict'


class UnavailableTeacherError(EngineError):
    status_code = 409
    code = 'teacher_unavailable'


class ValidationError(EngineError):
    status_code = 422
    code = 'validation_error'
