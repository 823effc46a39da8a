# adoption_app/models/conversation.py
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

from adoption_app.utils.datetime_utils import DateTimeUtils


class ConversationStatus(Enum):
    PENDING = "PENDING"  # 참여자 2명 미만
    ACTIVE = "ACTIVE"    # 참여자 2명 이상
    CLOSED = "CLOSED"    # 종료됨 (더 이상 변경 불가)


def derive_status(participant_count: int, is_closed: bool) -> ConversationStatus:
    """
    대화 상태는 저장하지 않고 참여자 수로부터 계산합니다.
    CLOSED 가 아니라면 참여자가 2명 이상일 때만 ACTIVE 입니다.
    """
    if is_closed:
        return ConversationStatus.CLOSED
    if participant_count >= 2:
        return ConversationStatus.ACTIVE
    return ConversationStatus.PENDING


@dataclass
class Membership:
    """Conversation 문서 내부에 저장될 참여자 정보."""
    profile_id: str
    joined_at: datetime = field(default_factory=DateTimeUtils.now)
    last_read_sequence: int = 0  # 이 참여자가 읽음 처리한 가장 큰 메시지 번호


@dataclass
class Conversation:
    """
    Firestore 'conversations' 컬렉션의 문서 구조를 정의하는 데이터클래스.
    하나의 입양 공고(listing)에 대한 대화방이며, 참여자 목록과 메시지 번호 카운터를 소유합니다.
    """
    conversation_id: str
    listing_id: str
    owner_id: str        # 공고 소유자 (생성 시 자동 참여)
    requester_id: str    # 대화를 시작한 입양 희망자
    participants: List[Membership] = field(default_factory=list)
    last_sequence: int = 0
    created_at: datetime = field(default_factory=DateTimeUtils.now)
    updated_at: datetime = field(default_factory=DateTimeUtils.now)
    closed_at: Optional[datetime] = None
    closed_reason: Optional[str] = None

    @property
    def is_closed(self) -> bool:
        return self.closed_at is not None

    @property
    def participant_ids(self) -> List[str]:
        return [m.profile_id for m in self.participants]

    @property
    def status(self) -> ConversationStatus:
        return derive_status(len(self.participants), self.is_closed)

    def get_membership(self, profile_id: str) -> Optional[Membership]:
        for membership in self.participants:
            if membership.profile_id == profile_id:
                return membership
        return None

    def has_participant(self, profile_id: str) -> bool:
        return self.get_membership(profile_id) is not None

    def add_member(self, profile_id: str, joined_at: Optional[datetime] = None) -> bool:
        """참여자를 추가합니다. 이미 참여 중이면 False 를 반환합니다."""
        if self.has_participant(profile_id):
            return False
        self.participants.append(Membership(profile_id=profile_id, joined_at=joined_at or DateTimeUtils.now()))
        return True

    def remove_member(self, profile_id: str) -> bool:
        membership = self.get_membership(profile_id)
        if membership is None:
            return False
        self.participants.remove(membership)
        return True

    def close(self, reason: str, closed_at: Optional[datetime] = None) -> bool:
        """대화를 종료합니다. 이미 종료된 경우 False 를 반환합니다."""
        if self.is_closed:
            return False
        self.closed_at = closed_at or DateTimeUtils.now()
        self.closed_reason = reason
        self.updated_at = self.closed_at
        return True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Conversation":
        processed_data = DateTimeUtils.from_firestore(data.copy())
        # 조회용 파생 필드는 모델 필드가 아니므로 제거
        processed_data.pop('status', None)
        processed_data.pop('participant_ids', None)
        processed_data['participants'] = [Membership(**m) for m in processed_data.get('participants') or []]
        return cls(**processed_data)

    def to_document(self) -> Dict[str, Any]:
        """
        Firestore 저장용 딕셔너리.
        participant_ids 는 array_contains 조회를 위해 participants 로부터 매번 다시 계산됩니다.
        status 는 저장하지 않습니다.
        """
        doc = asdict(self)
        doc['participant_ids'] = self.participant_ids
        return DateTimeUtils.for_firestore(doc)

    def to_dict(self) -> Dict[str, Any]:
        """API 응답용 딕셔너리 (파생 상태 포함)."""
        conversation_dict = asdict(self)
        conversation_dict['participant_ids'] = self.participant_ids
        conversation_dict['status'] = self.status.value
        return conversation_dict
