# adoption_app/services/store/memory_store.py
"""
인메모리 엔티티 저장소.

로컬 개발과 테스트에서 Firestore 대신 사용합니다.
낙관적 동시성 제어로 동작합니다. 트랜잭션이 읽은 문서의 버전을 기록해 두었다가
커밋 시 현재 버전과 비교(expected-version 조건부 쓰기)하고, 다르면 전체 함수를 다시 실행합니다.
버전은 저장소 전역에서 단조 증가하는 값이라 삭제 후 재생성된 문서도 구분됩니다.
"""

import copy
import logging
import operator
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from adoption_app.core.errors import ConflictError, NotFoundError, TransientError
from adoption_app.services.store.base import EntityStore, Filter, StoreTransaction, T, WriteConflict

logger = logging.getLogger(__name__)

_COMPARATORS = {
    '<': operator.lt,
    '<=': operator.le,
    '>': operator.gt,
    '>=': operator.ge,
}


def _matches(doc: Dict[str, Any], filters: Sequence[Filter]) -> bool:
    for field_name, op, value in filters:
        actual = doc.get(field_name)
        if op == '==':
            ok = actual == value
        elif op == '!=':
            ok = actual != value
        elif op == 'array_contains':
            ok = isinstance(actual, list) and value in actual
        elif op == 'in':
            ok = actual in value
        elif op in _COMPARATORS:
            ok = actual is not None and _COMPARATORS[op](actual, value)
        else:
            raise ValueError(f"지원하지 않는 조회 연산자입니다: {op}")
        if not ok:
            return False
    return True


class MemoryTransaction(StoreTransaction):
    """읽은 문서 버전과 쓰기 목록을 모아 두었다가 커밋 시 한 번에 적용합니다."""

    def __init__(self, store: "MemoryEntityStore"):
        self._store = store
        self.read_versions: Dict[Tuple[str, str], Optional[int]] = {}
        self.writes: List[Tuple[str, str, str, Optional[Dict[str, Any]]]] = []

    def _ensure_no_writes(self):
        # Firestore 트랜잭션과 동일하게 쓰기 이후의 읽기를 금지합니다.
        if self.writes:
            raise RuntimeError("트랜잭션에서 모든 읽기는 쓰기보다 먼저 수행해야 합니다.")

    def get(self, collection, doc_id):
        self._ensure_no_writes()
        version, data = self._store._read(collection, doc_id)
        self.read_versions.setdefault((collection, doc_id), version)
        return data

    def query(self, collection, filters=(), order_by=None, descending=False, limit=None):
        self._ensure_no_writes()
        results = self._store._query(collection, filters, order_by, descending, limit)
        for doc_id, version, _ in results:
            self.read_versions.setdefault((collection, doc_id), version)
        return [data for _, _, data in results]

    def create(self, collection, doc_id, data):
        self.writes.append(('create', collection, doc_id, copy.deepcopy(data)))

    def set(self, collection, doc_id, data):
        self.writes.append(('set', collection, doc_id, copy.deepcopy(data)))

    def update(self, collection, doc_id, fields):
        self.writes.append(('update', collection, doc_id, copy.deepcopy(fields)))

    def delete(self, collection, doc_id):
        self.writes.append(('delete', collection, doc_id, None))


class MemoryEntityStore(EntityStore):
    """스레드 안전한 인메모리 저장소. 여러 요청 처리 스레드가 동시에 사용할 수 있습니다."""

    def __init__(self, max_attempts: int = 5):
        super().__init__(max_attempts)
        self._lock = threading.Lock()
        self._clock = 0
        self._collections: Dict[str, Dict[str, Tuple[int, Dict[str, Any]]]] = defaultdict(dict)

    # --- 내부 읽기 (잠금 하에서 복사본 반환) ---

    def _read(self, collection: str, doc_id: str) -> Tuple[Optional[int], Optional[Dict[str, Any]]]:
        with self._lock:
            entry = self._collections[collection].get(doc_id)
            if entry is None:
                return None, None
            version, data = entry
            return version, copy.deepcopy(data)

    def _query(self, collection, filters, order_by, descending, limit):
        with self._lock:
            results = [
                (doc_id, version, copy.deepcopy(data))
                for doc_id, (version, data) in self._collections[collection].items()
                if _matches(data, filters)
            ]
        if order_by:
            results.sort(key=lambda item: item[2].get(order_by), reverse=descending)
        if limit is not None:
            results = results[:limit]
        return results

    # --- 공개 API ---

    def get(self, collection, doc_id):
        return self._read(collection, doc_id)[1]

    def query(self, collection, filters=(), order_by=None, descending=False, limit=None):
        return [data for _, _, data in self._query(collection, filters, order_by, descending, limit)]

    def put(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        """트랜잭션 없이 문서를 저장합니다. (외부 협력자가 소유한 공고/프로필 적재용)"""
        with self._lock:
            self._clock += 1
            self._collections[collection][doc_id] = (self._clock, copy.deepcopy(data))

    def run_in_transaction(self, fn: Callable[[StoreTransaction], T]) -> T:
        for attempt in range(1, self.max_attempts + 1):
            transaction = MemoryTransaction(self)
            result = fn(transaction)
            try:
                self._commit(transaction)
                return result
            except WriteConflict as e:
                logger.info(f"쓰기 충돌 감지, 트랜잭션 재시도 ({attempt}/{self.max_attempts}): {e}")
        logger.warning(f"트랜잭션 재시도 한도 초과 ({self.max_attempts}회)")
        raise TransientError(
            "동시 수정으로 인해 작업을 완료하지 못했습니다. 잠시 후 다시 시도해주세요.",
            attempts=self.max_attempts
        )

    def _commit(self, transaction: MemoryTransaction) -> None:
        with self._lock:
            for (collection, doc_id), expected in transaction.read_versions.items():
                entry = self._collections[collection].get(doc_id)
                current = entry[0] if entry else None
                if current != expected:
                    raise WriteConflict(f"{collection}/{doc_id} (expected={expected}, current={current})")

            # 적용 전에 전체 쓰기를 검증하여 부분 적용을 막습니다.
            staged = {}
            for _, collection, doc_id, _ in transaction.writes:
                entry = self._collections[collection].get(doc_id)
                staged[(collection, doc_id)] = entry[1] if entry else None
            for kind, collection, doc_id, data in transaction.writes:
                key = (collection, doc_id)
                current = staged.get(key)
                if kind == 'create':
                    if current is not None:
                        raise ConflictError(f"이미 존재하는 문서입니다: {collection}/{doc_id}")
                    staged[key] = data
                elif kind == 'set':
                    staged[key] = data
                elif kind == 'update':
                    if current is None:
                        raise NotFoundError(f"갱신할 문서가 없습니다: {collection}/{doc_id}")
                    merged = dict(current)
                    merged.update(data)
                    staged[key] = merged
                elif kind == 'delete':
                    staged[key] = None

            self._clock += 1
            for (collection, doc_id), data in staged.items():
                if data is None:
                    self._collections[collection].pop(doc_id, None)
                else:
                    self._collections[collection][doc_id] = (self._clock, data)
