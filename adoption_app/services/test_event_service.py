# adoption_app/services/test_event_service.py
"""
실시간 이벤트 발행(StoreEventPublisher) 테스트

사용법: python -m pytest adoption_app/services/test_event_service.py -v
"""

from datetime import timedelta

from adoption_app.core.errors import TransientError
from adoption_app.models.realtime_event import EventType
from adoption_app.services import collections
from adoption_app.services.event_service import StoreEventPublisher, build_event
from adoption_app.services.store import MemoryEntityStore


class UnavailableStore(MemoryEntityStore):
    def run_in_transaction(self, fn):
        raise TransientError("저장소를 사용할 수 없습니다.")


def test_build_event_deduplicates_recipients():
    event = build_event(EventType.MESSAGE_POSTED, 'conv-1', ['b', 'a', 'b'], {'sequence': 1})
    assert event.recipient_ids == ['a', 'b']
    assert event.to_document()['type'] == 'MESSAGE_POSTED'


def test_publish_writes_event_documents():
    store = MemoryEntityStore()
    publisher = StoreEventPublisher(store)
    older = build_event(EventType.MESSAGE_POSTED, 'conv-1', ['a', 'b'])
    older.created_at = older.created_at - timedelta(seconds=5)
    newer = build_event(EventType.MESSAGES_READ, 'conv-1', ['a'])

    publisher.publish_all([older, newer])

    assert store.get(collections.REALTIME_EVENTS, older.event_id)['target_id'] == 'conv-1'
    assert [e['event_id'] for e in publisher.list_events('a')] == [newer.event_id, older.event_id]
    assert [e['event_id'] for e in publisher.list_events('b')] == [older.event_id]


def test_publish_skips_events_without_recipients():
    store = MemoryEntityStore()
    publisher = StoreEventPublisher(store)
    publisher.publish(build_event(EventType.MESSAGE_POSTED, 'conv-1', []))
    assert store.query(collections.REALTIME_EVENTS) == []


def test_publish_failure_is_not_propagated(caplog):
    publisher = StoreEventPublisher(UnavailableStore())
    publisher.publish(build_event(EventType.AGREEMENT_FINALIZED, 'agreement-1', ['a']))
    assert "이벤트 발행 중 오류 발생" in caplog.text
