# adoption_app/core/errors.py
"""
대화/입양 계약 코어에서 사용하는 오류 종류.

각 오류는 API 계층이 전송 상태 코드로 매핑할 수 있도록
고정된 error_code 와 http_status 를 가집니다.
- 호출자가 고칠 수 있는 오류: NotFound, Forbidden, Conflict, InvalidState
- 재시도해야 하는 오류: Transient
"""


class AdoptionError(Exception):
    """코어 도메인 오류의 기반 클래스."""
    error_code = "ADOPTION_ERROR"
    http_status = 400
    retryable = False

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"error_code": self.error_code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(AdoptionError):
    """참조한 엔티티가 존재하지 않습니다."""
    error_code = "NOT_FOUND"
    http_status = 404


class ForbiddenError(AdoptionError):
    """참여자가 아니거나, 리스팅 소유자가 아니거나, 계약 당사자가 아닌 경우."""
    error_code = "FORBIDDEN"
    http_status = 403


class ConflictError(AdoptionError):
    """유일성 또는 1회성 제약 위반 (중복 계약, 중복 서명 등)."""
    error_code = "CONFLICT"
    http_status = 409


class InvalidStateError(AdoptionError):
    """엔티티의 현재 라이프사이클 상태에서 허용되지 않는 작업."""
    error_code = "INVALID_STATE"
    http_status = 409


class TransientError(AdoptionError):
    """쓰기 충돌 재시도 횟수를 모두 소진했습니다. 작업 전체를 다시 시도해야 합니다."""
    error_code = "TRANSIENT_FAILURE"
    http_status = 503
    retryable = True
