# adoption_app/conftest.py
"""
공용 pytest 픽스처.

모든 서비스는 인메모리 저장소 위에서 동작하며, Firebase 연결 없이 실행됩니다.
- 프로필: owner-1, adopter-1, adopter-2, other-1
- 공고: listing-1, listing-2 (둘 다 owner-1 소유, AVAILABLE)
"""

import pytest
from flask_jwt_extended import create_access_token

from adoption_app import create_app
from adoption_app.api.agreements.services import AgreementService
from adoption_app.api.conversations.services import ConversationService
from adoption_app.api.listings.services import ListingService
from adoption_app.api.messages.services import MessageService
from adoption_app.services import collections
from adoption_app.services.consistency_guard import ListingConsistencyGuard
from adoption_app.services.document_service import DocumentRenderer, DocumentService
from adoption_app.services.event_service import EventPublisher
from adoption_app.services.store import MemoryEntityStore


class RecordingEventPublisher(EventPublisher):
    """발행된 이벤트를 순서대로 기록하는 테스트용 채널."""

    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)

    def list_events(self, recipient_id, limit=50):
        mine = [e for e in reversed(self.events) if recipient_id in e.recipient_ids]
        return [e.to_document() for e in mine[:limit]]

    def of_type(self, event_type):
        return [e for e in self.events if e.type is event_type]


class FakeDocumentRenderer(DocumentRenderer):
    """처음 failures 번은 실패하고 이후에는 결정적인 참조를 반환합니다."""

    def __init__(self, failures=0):
        self.failures = failures
        self.calls = 0

    def render(self, agreement, owner, adopter):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError("rendering service unavailable")
        return f"agreements/{agreement.agreement_id}.txt"


@pytest.fixture
def store():
    store = MemoryEntityStore(max_attempts=20)
    for profile_id, name in [('owner-1', '보호자'), ('adopter-1', '입양자'),
                             ('adopter-2', '입양자2'), ('other-1', '제3자')]:
        store.put(collections.PROFILES, profile_id, {'profile_id': profile_id, 'display_name': name})
    for listing_id in ('listing-1', 'listing-2'):
        store.put(collections.LISTINGS, listing_id, {
            'listing_id': listing_id,
            'owner_id': 'owner-1',
            'status': 'AVAILABLE',
            'title': f'{listing_id} 입양 공고',
        })
    return store


@pytest.fixture
def events():
    return RecordingEventPublisher()


@pytest.fixture
def guard():
    return ListingConsistencyGuard()


@pytest.fixture
def renderer():
    return FakeDocumentRenderer()


@pytest.fixture
def document_service(store, renderer):
    return DocumentService(store, renderer, attempts=3, backoff_seconds=0, run_async=False)


@pytest.fixture
def conversation_service(store, guard, events):
    return ConversationService(store, guard, events)


@pytest.fixture
def message_service(store, conversation_service, events):
    return MessageService(store, conversation_service, events, page_limit=50, page_limit_max=100)


@pytest.fixture
def agreement_service(store, guard, events, document_service):
    return AgreementService(store, guard, events, document_service)


@pytest.fixture
def listing_service(store, guard, events):
    return ListingService(store, guard, events)


@pytest.fixture
def app(store, renderer):
    return create_app('testing', store=store, document_renderer=renderer)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(app):
    def _headers(profile_id):
        with app.app_context():
            token = create_access_token(identity=profile_id)
        return {'Authorization': f'Bearer {token}'}
    return _headers
