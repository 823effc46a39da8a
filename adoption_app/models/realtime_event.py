# adoption_app/models/realtime_event.py
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Dict, Any, List

from adoption_app.utils.datetime_utils import DateTimeUtils


class EventType(Enum):
    """실시간 전달 채널로 내보내는 이벤트 유형"""
    MESSAGE_POSTED = "MESSAGE_POSTED"
    MESSAGES_READ = "MESSAGES_READ"
    CONVERSATION_STATUS_CHANGED = "CONVERSATION_STATUS_CHANGED"
    AGREEMENT_SIGNED = "AGREEMENT_SIGNED"
    AGREEMENT_FINALIZED = "AGREEMENT_FINALIZED"
    AGREEMENT_VOIDED = "AGREEMENT_VOIDED"


@dataclass
class RealtimeEvent:
    """
    Firestore 'realtime_events' 컬렉션의 문서 구조.
    클라이언트는 recipient_ids 에 자신이 포함된 문서를 구독하여 이벤트를 받습니다.
    """
    event_id: str
    type: EventType
    target_id: str             # 이벤트 대상 ID (conversation_id, agreement_id)
    recipient_ids: List[str]
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=DateTimeUtils.now)

    def to_document(self) -> Dict[str, Any]:
        event_dict = asdict(self)
        # Enum 멤버를 문자열 값으로 변환하여 저장
        event_dict['type'] = self.type.value
        return DateTimeUtils.for_firestore(event_dict)
