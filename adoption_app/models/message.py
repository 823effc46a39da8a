# adoption_app/models/message.py
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Optional, List, Dict, Any

from adoption_app.utils.datetime_utils import DateTimeUtils


def make_message_id(conversation_id: str, sequence: int) -> str:
    """대화방 내 메시지 번호로부터 결정적인 문서 ID 를 만듭니다. (정렬 가능)"""
    return f"{conversation_id}_{sequence:010d}"


@dataclass
class Message:
    """
    Firestore 'messages' 컬렉션의 문서 구조를 정의하는 데이터클래스.
    생성 이후에는 read_by 를 제외한 모든 필드가 불변입니다.
    """
    message_id: str
    conversation_id: str
    sender_id: str
    sequence: int
    content: Optional[str] = None         # 텍스트 메시지
    attachment_ref: Optional[str] = None  # 첨부 파일 참조 (Storage 경로 등)
    read_by: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=DateTimeUtils.now)

    def add_reader(self, profile_id: str) -> bool:
        """읽은 사람 목록에 추가합니다. 목록은 늘어나기만 합니다."""
        if profile_id in self.read_by:
            return False
        self.read_by.append(profile_id)
        return True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(**DateTimeUtils.from_firestore(data))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_document(self) -> Dict[str, Any]:
        return DateTimeUtils.for_firestore(asdict(self))
