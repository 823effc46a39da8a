# adoption_app/core/config.py

import os  # 환경 변수를 읽기 위해 사용합니다.


def _int_env(key: str, default: int) -> int:
    value = os.getenv(key)
    return int(value) if value else default


class Config:
    """모든 환경 설정의 기반이 되는 공통 설정 클래스입니다."""
    # JWT 토큰 서명 키. 신원 제공자가 발급한 토큰의 identity 를 프로필 ID 로 신뢰합니다.
    JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY')

    FIREBASE_STORAGE_BUCKET = os.getenv('FIREBASE_STORAGE_BUCKET')

    # 엔티티 저장소 구현: 'firestore' 또는 'memory'
    STORE_BACKEND = os.getenv('STORE_BACKEND', 'firestore')
    # 쓰기 충돌 시 read-modify-write 를 다시 시도하는 최대 횟수
    STORE_MAX_ATTEMPTS = _int_env('STORE_MAX_ATTEMPTS', 5)

    # 메시지 목록 페이지 크기
    MESSAGE_PAGE_LIMIT = _int_env('MESSAGE_PAGE_LIMIT', 50)
    MESSAGE_PAGE_LIMIT_MAX = 100
    # 읽음 처리 한 트랜잭션당 갱신할 최대 메시지 수 (Firestore 트랜잭션 쓰기 한도 500 이하)
    MARK_READ_BATCH_SIZE = _int_env('MARK_READ_BATCH_SIZE', 400)

    # 계약서 문서 생성 (외부 렌더링 서비스) 재시도 설정
    DOCUMENT_RENDER_ATTEMPTS = _int_env('DOCUMENT_RENDER_ATTEMPTS', 3)
    DOCUMENT_RENDER_BACKOFF_SECONDS = 1.0
    # True 이면 계약 확정 후 백그라운드 Thread 에서 문서를 생성합니다.
    DOCUMENT_RENDER_ASYNC = True


class DevelopmentConfig(Config):
    """개발 환경을 위한 설정 클래스입니다."""
    DEBUG = True
    FIREBASE_CREDENTIALS_PATH = os.getenv('DEV_FIREBASE_CREDENTIALS_PATH')


class TestingConfig(Config):
    """테스트 환경을 위한 설정 클래스입니다. Firebase 없이 인메모리 저장소를 사용합니다."""
    TESTING = True
    DEBUG = False
    FIREBASE_CREDENTIALS_PATH = os.getenv('TEST_FIREBASE_CREDENTIALS_PATH')
    JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY', 'test-secret-key-with-enough-length-32b')
    FIREBASE_STORAGE_BUCKET = None
    STORE_BACKEND = 'memory'
    DOCUMENT_RENDER_ASYNC = False
    DOCUMENT_RENDER_BACKOFF_SECONDS = 0.0


class ProductionConfig(Config):
    """운영 환경 설정 클래스입니다."""
    DEBUG = False
    FIREBASE_CREDENTIALS_PATH = os.getenv('FIREBASE_CREDENTIALS_PATH')


# FLASK_ENV 값에 따라 create_app 에서 설정 클래스를 선택합니다.
config_by_name = dict(
    development=DevelopmentConfig,
    testing=TestingConfig,
    production=ProductionConfig
)
