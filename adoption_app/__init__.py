# adoption_app/__init__.py

# =====================================================================================
# 1. 환경 변수 로드 (가장 먼저 실행)
# =====================================================================================
from dotenv import load_dotenv
load_dotenv()

# =====================================================================================
# 2. 모듈 임포트 (Module Imports)
# =====================================================================================
import os
import logging
from flask import Flask, jsonify
from marshmallow import ValidationError
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
import firebase_admin
from firebase_admin import credentials

# - 설정 및 오류
from adoption_app.core.config import config_by_name
from adoption_app.core.errors import AdoptionError

# - API 블루프린트
from adoption_app.api.conversations.routes import conversations_bp
from adoption_app.api.messages.routes import messages_bp
from adoption_app.api.agreements.routes import agreements_bp
from adoption_app.api.listings.routes import listings_bp
from adoption_app.api.events.routes import events_bp

# - 서비스 모듈
from adoption_app.services.store import MemoryEntityStore
from adoption_app.services.consistency_guard import ListingConsistencyGuard
from adoption_app.services.event_service import StoreEventPublisher
from adoption_app.services.document_service import DocumentService, StorageDocumentRenderer
from adoption_app.api.conversations.services import ConversationService
from adoption_app.api.messages.services import MessageService
from adoption_app.api.agreements.services import AgreementService
from adoption_app.api.listings.services import ListingService


def _init_firebase(app: Flask) -> None:
    if firebase_admin._apps:
        return
    cred_path = app.config.get('FIREBASE_CREDENTIALS_PATH')
    if not cred_path or not os.path.exists(cred_path):
        raise FileNotFoundError(f"Firebase 인증 파일을 찾을 수 없습니다: {cred_path}")
    cred = credentials.Certificate(cred_path)
    firebase_admin.initialize_app(cred, {
        'storageBucket': app.config['FIREBASE_STORAGE_BUCKET']
    })


def _create_store(app: Flask):
    backend = app.config['STORE_BACKEND']
    max_attempts = app.config['STORE_MAX_ATTEMPTS']
    if backend == 'memory':
        return MemoryEntityStore(max_attempts=max_attempts)
    if backend == 'firestore':
        # firebase_admin 초기화 이후에만 firestore.client() 를 만들 수 있습니다.
        from adoption_app.services.store.firestore_store import FirestoreEntityStore
        return FirestoreEntityStore(max_attempts=max_attempts)
    raise ValueError(f"알 수 없는 STORE_BACKEND 값입니다: {backend}")


def create_app(config_name=None, store=None, event_publisher=None, document_renderer=None):
    """
    Flask 애플리케이션 팩토리 함수.
    테스트에서는 store, event_publisher, document_renderer 를 직접 주입할 수 있습니다.
    """
    # =====================================================================================
    # 3. Flask 앱 생성 및 기본 설정
    # =====================================================================================
    config_name = config_name or os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])
    app.json.ensure_ascii = False

    # =====================================================================================
    # 4. 확장 기능 및 외부 서비스 초기화
    # =====================================================================================
    JWTManager(app)

    uses_firestore = store is None and app.config['STORE_BACKEND'] == 'firestore'
    if uses_firestore or (document_renderer is None and app.config.get('FIREBASE_STORAGE_BUCKET')):
        _init_firebase(app)

    # =====================================================================================
    # 5. 서비스 인스턴스 생성 및 'app.services'에 저장 (의존성 주입)
    # =====================================================================================
    app.services = {}

    # 5-1. 다른 서비스의 기반이 되는 저장소, 규칙 엔진, 실시간 전달 채널
    app.services['store'] = store or _create_store(app)
    logging.info(f"Entity store initialized: {type(app.services['store']).__name__}")
    app.services['guard'] = ListingConsistencyGuard()
    app.services['events'] = event_publisher or StoreEventPublisher(app.services['store'])

    if document_renderer is None and app.config.get('FIREBASE_STORAGE_BUCKET'):
        try:
            document_renderer = StorageDocumentRenderer()
            document_renderer.init_app(app)
            logging.info("Document renderer initialized successfully")
        except Exception as e:
            logging.error(f"Failed to initialize document renderer: {e}")
            raise
    elif document_renderer is None:
        logging.warning("FIREBASE_STORAGE_BUCKET 이 설정되지 않아 계약서 문서 생성이 비활성화됩니다.")

    app.services['documents'] = DocumentService(
        store=app.services['store'],
        renderer=document_renderer,
        attempts=app.config['DOCUMENT_RENDER_ATTEMPTS'],
        backoff_seconds=app.config['DOCUMENT_RENDER_BACKOFF_SECONDS'],
        run_async=app.config['DOCUMENT_RENDER_ASYNC']
    )

    # 5-2. 다른 서비스를 주입받아야 하는 도메인 서비스 생성
    app.services['conversations'] = ConversationService(
        store=app.services['store'],
        guard=app.services['guard'],
        event_publisher=app.services['events']
    )
    app.services['messages'] = MessageService(
        store=app.services['store'],
        conversation_service=app.services['conversations'],
        event_publisher=app.services['events'],
        page_limit=app.config['MESSAGE_PAGE_LIMIT'],
        page_limit_max=app.config['MESSAGE_PAGE_LIMIT_MAX'],
        mark_read_batch_size=app.config['MARK_READ_BATCH_SIZE']
    )
    app.services['agreements'] = AgreementService(
        store=app.services['store'],
        guard=app.services['guard'],
        event_publisher=app.services['events'],
        document_service=app.services['documents']
    )
    app.services['listings'] = ListingService(
        store=app.services['store'],
        guard=app.services['guard'],
        event_publisher=app.services['events']
    )

    # =====================================================================================
    # 6. 블루프린트 등록
    # =====================================================================================
    app.register_blueprint(conversations_bp, url_prefix='/api/conversations')
    app.register_blueprint(messages_bp, url_prefix='/api/conversations')
    app.register_blueprint(agreements_bp, url_prefix='/api/agreements')
    app.register_blueprint(listings_bp, url_prefix='/api/listings')
    app.register_blueprint(events_bp, url_prefix='/api/events')

    # =====================================================================================
    # 7. 전역 에러 핸들러 설정
    # =====================================================================================
    @app.errorhandler(AdoptionError)
    def handle_adoption_error(err):
        if err.retryable:
            logging.warning(f"Retryable failure: {err.error_code} - {err.message}")
        return jsonify(err.to_dict()), err.http_status

    @app.errorhandler(ValidationError)
    def handle_marshmallow_validation(err):
        response = {"error_code": "VALIDATION_ERROR", "details": err.messages}
        return jsonify(response), 400

    @app.errorhandler(HTTPException)
    def handle_http_exception(err):
        response = {"error_code": err.name.upper().replace(' ', '_'), "message": err.description}
        return jsonify(response), err.code

    @app.errorhandler(Exception)
    def handle_generic_exception(err):
        # 다른 핸들러에서 처리되지 않은 모든 예외를 여기서 처리
        logging.error(f"An unhandled exception occurred: {err}", exc_info=True)
        response = {"error_code": "INTERNAL_SERVER_ERROR", "message": "서버 내부에서 예상치 못한 오류가 발생했습니다."}
        return jsonify(response), 500

    # =====================================================================================
    # 8. 로깅 및 앱 반환
    # =====================================================================================
    if not app.debug:
        logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]')

    logging.info(f"Flask app created for '{config_name}' environment.")

    return app
