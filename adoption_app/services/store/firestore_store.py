# adoption_app/services/store/firestore_store.py
"""
Firestore 기반 엔티티 저장소.

firestore.transactional 이 커밋 충돌(Aborted) 시 함수를 max_attempts 번까지 다시 실행합니다.
재시도를 모두 소진하면 TransientError 로 변환하여 호출자에게 전달합니다.
"""

import logging
from typing import Callable

from firebase_admin import firestore
from google.api_core import exceptions as gcp_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter

from adoption_app.core.errors import ConflictError, NotFoundError, TransientError
from adoption_app.services.store.base import EntityStore, StoreTransaction, T

logger = logging.getLogger(__name__)


def _build_query(db, collection, filters, order_by, descending, limit):
    query = db.collection(collection)
    for field_name, op, value in filters:
        query = query.where(filter=FieldFilter(field_name, op, value))
    if order_by:
        direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
        query = query.order_by(order_by, direction=direction)
    if limit is not None:
        query = query.limit(limit)
    return query


class FirestoreTransaction(StoreTransaction):
    """firestore.Transaction 을 StoreTransaction 인터페이스로 감쌉니다."""

    def __init__(self, db, transaction):
        self.db = db
        self.transaction = transaction

    def get(self, collection, doc_id):
        snapshot = self.db.collection(collection).document(doc_id).get(transaction=self.transaction)
        return snapshot.to_dict() if snapshot.exists else None

    def query(self, collection, filters=(), order_by=None, descending=False, limit=None):
        query = _build_query(self.db, collection, filters, order_by, descending, limit)
        return [doc.to_dict() for doc in query.stream(transaction=self.transaction)]

    def create(self, collection, doc_id, data):
        self.transaction.create(self.db.collection(collection).document(doc_id), data)

    def set(self, collection, doc_id, data):
        self.transaction.set(self.db.collection(collection).document(doc_id), data)

    def update(self, collection, doc_id, fields):
        self.transaction.update(self.db.collection(collection).document(doc_id), fields)

    def delete(self, collection, doc_id):
        self.transaction.delete(self.db.collection(collection).document(doc_id))


class FirestoreEntityStore(EntityStore):
    """Firebase Admin SDK 의 Firestore 클라이언트를 사용하는 운영용 저장소."""

    def __init__(self, max_attempts: int = 5, db=None):
        super().__init__(max_attempts)
        self.db = db or firestore.client()

    def get(self, collection, doc_id):
        doc = self.db.collection(collection).document(doc_id).get()
        return doc.to_dict() if doc.exists else None

    def query(self, collection, filters=(), order_by=None, descending=False, limit=None):
        query = _build_query(self.db, collection, filters, order_by, descending, limit)
        return [doc.to_dict() for doc in query.stream()]

    def run_in_transaction(self, fn: Callable[[StoreTransaction], T]) -> T:
        transaction = self.db.transaction(max_attempts=self.max_attempts)

        @firestore.transactional
        def _run_in_transaction(transaction):
            return fn(FirestoreTransaction(self.db, transaction))

        try:
            return _run_in_transaction(transaction)
        except ValueError as e:
            # 재시도 소진 시 SDK 는 마지막 Aborted 를 ValueError 로 감싸서 발생시킵니다.
            if isinstance(e.__cause__, gcp_exceptions.Aborted) or str(e).startswith("Failed to commit transaction"):
                logger.warning(f"Firestore 트랜잭션 재시도 한도 초과 ({self.max_attempts}회): {e}")
                raise TransientError(
                    "동시 수정으로 인해 작업을 완료하지 못했습니다. 잠시 후 다시 시도해주세요.",
                    attempts=self.max_attempts
                ) from e
            raise
        except gcp_exceptions.Aborted as e:
            logger.warning(f"Firestore 트랜잭션 중단: {e}")
            raise TransientError("동시 수정으로 인해 작업을 완료하지 못했습니다. 잠시 후 다시 시도해주세요.") from e
        except gcp_exceptions.AlreadyExists as e:
            raise ConflictError(f"이미 존재하는 문서입니다: {e.message}") from e
        except gcp_exceptions.NotFound as e:
            raise NotFoundError(f"갱신할 문서가 없습니다: {e.message}") from e
