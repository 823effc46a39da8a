# adoption_app/services/store/base.py
"""
엔티티 저장소 포트(인터페이스).

모든 상태 전이는 run_in_transaction 으로 감싼 하나의 원자적 단위로 적용됩니다.
트랜잭션 안에서 읽은 문서의 버전이 커밋 시점에 바뀌었다면(조건부 쓰기 실패)
저장소 구현이 read-modify-write 전체를 제한된 횟수만큼 다시 실행하고,
그래도 실패하면 TransientError 를 발생시킵니다.

트랜잭션 함수는 Firestore 와 같은 규칙을 따릅니다.
- 모든 읽기는 첫 번째 쓰기보다 먼저 수행해야 합니다.
- 함수는 재시도 시 여러 번 실행될 수 있으므로 외부 부수효과를 일으키면 안 됩니다.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

T = TypeVar('T')

# (필드명, 연산자, 값) 형태의 조회 조건. 연산자: '==', 'array_contains', 'in', '<', '<=', '>', '>='
Filter = Tuple[str, str, Any]


class WriteConflict(Exception):
    """커밋 시점에 트랜잭션이 읽은 문서의 버전이 바뀌었습니다. (저장소 내부용)"""


class StoreTransaction(ABC):
    """하나의 read-modify-write 단위 안에서 사용하는 저장소 핸들."""

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """문서를 읽고 그 버전을 커밋 시 검증 대상으로 기록합니다."""

    @abstractmethod
    def query(self, collection: str, filters: Sequence[Filter] = (),
              order_by: Optional[str] = None, descending: bool = False,
              limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """조건에 맞는 문서들을 읽습니다."""

    @abstractmethod
    def create(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        """문서를 새로 만듭니다. 이미 존재하면 커밋이 ConflictError 로 실패합니다."""

    @abstractmethod
    def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        """최상위 필드 일부만 갱신합니다. 문서가 없으면 NotFoundError."""

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> None:
        pass


class EntityStore(ABC):
    """트랜잭션 단위 원자성과 조건부 쓰기를 제공하는 엔티티 저장소."""

    def __init__(self, max_attempts: int = 5):
        if max_attempts < 1:
            raise ValueError("max_attempts는 1 이상이어야 합니다.")
        self.max_attempts = max_attempts

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """트랜잭션 밖에서의 단건 조회 (강한 read-after-write 일관성)."""

    @abstractmethod
    def query(self, collection: str, filters: Sequence[Filter] = (),
              order_by: Optional[str] = None, descending: bool = False,
              limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """트랜잭션 밖에서의 조회."""

    @abstractmethod
    def run_in_transaction(self, fn: Callable[[StoreTransaction], T]) -> T:
        """fn 을 하나의 원자적 트랜잭션으로 실행하고 그 반환값을 돌려줍니다."""
