# adoption_app/services/store/__init__.py
"""
엔티티 저장소 패키지

FirestoreEntityStore 는 firebase_admin 초기화 이후에만 생성할 수 있으므로
여기서는 인터페이스와 인메모리 구현만 내보냅니다.
"""

from .base import EntityStore, StoreTransaction, WriteConflict
from .memory_store import MemoryEntityStore

__all__ = ['EntityStore', 'StoreTransaction', 'WriteConflict', 'MemoryEntityStore']
