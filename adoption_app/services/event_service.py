# adoption_app/services/event_service.py
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from adoption_app.models.realtime_event import RealtimeEvent, EventType
from adoption_app.services import collections
from adoption_app.services.store.base import EntityStore

logger = logging.getLogger(__name__)


def build_event(n_type: EventType, target_id: str, recipient_ids: Iterable[str],
                payload: Optional[Dict[str, Any]] = None) -> RealtimeEvent:
    return RealtimeEvent(
        event_id=str(uuid.uuid4()),
        type=n_type,
        target_id=target_id,
        recipient_ids=sorted(set(recipient_ids)),
        payload=payload or {}
    )


class EventPublisher(ABC):
    """
    실시간 전달(fan-out) 채널 인터페이스.
    전달은 best-effort, at-least-once 이며 코어의 저장 상태 정합성과는 무관합니다.
    """

    @abstractmethod
    def publish(self, event: RealtimeEvent) -> None:
        pass

    @abstractmethod
    def list_events(self, recipient_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """특정 사용자에게 발행된 이벤트 문서를 최신순으로 반환합니다."""
        pass

    def publish_all(self, events: Iterable[RealtimeEvent]) -> None:
        for event in events:
            self.publish(event)


class StoreEventPublisher(EventPublisher):
    """
    이벤트를 'realtime_events' 컬렉션에 기록하는 구현.
    연결된 클라이언트는 Firestore 리스너로 자신에게 온 이벤트를 실시간 수신합니다.
    - 수신자가 없는 이벤트는 기록하지 않습니다.
    - 기록 실패는 로그만 남기고 호출자에게 전파하지 않습니다. (이미 커밋된 상태에는 영향 없음)
    """

    def __init__(self, store: EntityStore):
        self.store = store

    def publish(self, event: RealtimeEvent) -> None:
        if not event.recipient_ids:
            return

        try:
            document = event.to_document()
            self.store.run_in_transaction(
                lambda tx: tx.set(collections.REALTIME_EVENTS, event.event_id, document)
            )
            logger.info(f"{event.type.value} 이벤트 발행 완료: target={event.target_id}, recipients={len(event.recipient_ids)}")
        except Exception as e:
            logger.error(f"이벤트 발행 중 오류 발생 ({event.type.value}, target={event.target_id}): {e}", exc_info=True)

    def list_events(self, recipient_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """특정 사용자에게 발행된 이벤트를 최신순으로 조회합니다."""
        return self.store.query(
            collections.REALTIME_EVENTS,
            [('recipient_ids', 'array_contains', recipient_id)],
            order_by='created_at', descending=True, limit=limit
        )
