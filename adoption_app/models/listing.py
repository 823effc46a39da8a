from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
import logging

from adoption_app.utils.datetime_utils import DateTimeUtils


class ListingStatus(Enum):
    AVAILABLE = "AVAILABLE"
    PENDING = "PENDING"      # 입양 계약 진행 중
    ADOPTED = "ADOPTED"      # 계약 확정 (종료 상태)


@dataclass
class Listing:
    """
    Firestore 'listings' 컬렉션 문서 구조 (입양 공고).
    공고의 생성/수정/검색은 외부 서비스가 담당하며, 이 코어는 status 와 withdrawn_at 필드만 기록합니다.
    """
    listing_id: str
    owner_id: str
    status: ListingStatus = ListingStatus.AVAILABLE
    pet_id: Optional[str] = None
    title: Optional[str] = None
    withdrawn_at: Optional[datetime] = None  # 철회 시각. 철회된 공고에는 새 대화/계약을 만들 수 없습니다.

    @property
    def is_adopted(self) -> bool:
        return self.status is ListingStatus.ADOPTED

    @property
    def is_withdrawn(self) -> bool:
        return self.withdrawn_at is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Listing":
        """
        Firestore 문서로부터 Listing 인스턴스를 생성합니다.
        외부 서비스가 관리하는 나머지 필드는 무시합니다.
        """
        status_str = data.get('status') or ListingStatus.AVAILABLE.value
        try:
            status = ListingStatus(status_str)
        except ValueError:
            logging.warning(f"Invalid ListingStatus value '{status_str}' for listing {data.get('listing_id')}. Defaulting to AVAILABLE.")
            status = ListingStatus.AVAILABLE
        return cls(
            listing_id=data['listing_id'],
            owner_id=data['owner_id'],
            status=status,
            pet_id=data.get('pet_id'),
            title=data.get('title'),
            withdrawn_at=DateTimeUtils.from_firestore(data.get('withdrawn_at'))
        )

    def to_dict(self) -> Dict[str, Any]:
        listing_dict = asdict(self)
        listing_dict['status'] = self.status.value
        return listing_dict
