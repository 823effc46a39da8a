# adoption_app/api/agreements/services.py
import logging
import uuid
from typing import Optional, List

from adoption_app.core.errors import ConflictError, ForbiddenError, InvalidStateError, NotFoundError
from adoption_app.models.agreement import Agreement, AgreementStatus, SignatureRecord, SignerRole
from adoption_app.models.conversation import Conversation, derive_status
from adoption_app.models.listing import ListingStatus
from adoption_app.models.realtime_event import EventType
from adoption_app.services import collections
from adoption_app.services.consistency_guard import ConsistencyGuard, load_listing, write_voided_agreement
from adoption_app.services.document_service import DocumentService
from adoption_app.services.event_service import EventPublisher, build_event
from adoption_app.services.store.base import EntityStore, StoreTransaction
from adoption_app.utils.datetime_utils import DateTimeUtils
from adoption_app.api.conversations.services import status_changed_event

logger = logging.getLogger(__name__)


def load_agreement(tx: StoreTransaction, agreement_id: str) -> Agreement:
    data = tx.get(collections.AGREEMENTS, agreement_id)
    if data is None:
        raise NotFoundError("계약을 찾을 수 없습니다.", agreement_id=agreement_id)
    return Agreement.from_dict(data)


class AgreementService:
    """
    입양 계약 상태 머신을 담당하는 서비스.
    DRAFT -> PARTIALLY_SIGNED -> FINALIZED, DRAFT/PARTIALLY_SIGNED -> VOID
    - 서명은 당사자별로 한 번만 기록됩니다.
    - 두 번째 서명이 기록되는 트랜잭션에서 공고 ADOPTED 전이와 대화방 종료가 함께 적용됩니다.
    - 계약서 문서 생성과 이벤트 발행은 커밋 이후에 수행됩니다.
    """

    def __init__(self, store: EntityStore, guard: ConsistencyGuard,
                 event_publisher: EventPublisher, document_service: DocumentService):
        self.store = store
        self.guard = guard
        self.event_publisher = event_publisher
        self.document_service = document_service

    def create_agreement(self, listing_id: str, owner_id: str, adopter_id: str, terms: str,
                         conversation_id: Optional[str] = None) -> Agreement:
        """새 입양 계약을 DRAFT 상태로 만들고 공고를 PENDING 으로 전이합니다."""
        if not terms or not terms.strip():
            raise ValueError("계약 조건(terms)이 비어 있습니다.")

        def _create_in_transaction(tx: StoreTransaction) -> Agreement:
            listing = self.guard.check_agreement_allowed(tx, listing_id)
            if listing.owner_id != owner_id:
                raise ForbiddenError("공고 소유자만 입양 계약의 보호자가 될 수 있습니다.", listing_id=listing_id)
            if adopter_id == owner_id:
                raise ForbiddenError("공고 소유자는 입양자가 될 수 없습니다.", listing_id=listing_id)

            adopter_doc = tx.get(collections.PROFILES, adopter_id)
            if adopter_doc is None:
                raise NotFoundError("입양자 프로필을 찾을 수 없습니다.", profile_id=adopter_id)

            if conversation_id is not None:
                conversation_doc = tx.get(collections.CONVERSATIONS, conversation_id)
                if conversation_doc is None:
                    raise NotFoundError("대화방을 찾을 수 없습니다.", conversation_id=conversation_id)
                if conversation_doc.get('listing_id') != listing_id:
                    raise InvalidStateError("다른 공고의 대화방에서는 계약을 시작할 수 없습니다.",
                                            conversation_id=conversation_id)

            now = DateTimeUtils.now()
            agreement = Agreement(
                agreement_id=str(uuid.uuid4()),
                listing_id=listing_id,
                owner_id=owner_id,
                adopter_id=adopter_id,
                terms=terms,
                conversation_id=conversation_id,
                created_at=now,
                updated_at=now
            )
            tx.create(collections.AGREEMENTS, agreement.agreement_id, agreement.to_document())
            tx.set(collections.AGREEMENT_KEYS, collections.agreement_key(listing_id), {
                'agreement_id': agreement.agreement_id,
                'listing_id': listing_id,
            })
            if listing.status is ListingStatus.AVAILABLE:
                tx.update(collections.LISTINGS, listing_id, {'status': ListingStatus.PENDING.value})
            return agreement

        agreement = self.store.run_in_transaction(_create_in_transaction)
        logger.info(f"입양 계약 생성: {agreement.agreement_id} (listing={listing_id}, owner={owner_id}, adopter={adopter_id})")
        return agreement

    def submit_signature(self, agreement_id: str, signer_id: str, signature_payload: str) -> Agreement:
        """
        당사자의 서명을 기록합니다.
        첫 서명은 PARTIALLY_SIGNED, 두 번째 서명은 FINALIZED 로 전이합니다.
        """
        if not signature_payload:
            raise ValueError("서명 데이터(payload)가 비어 있습니다.")

        def _sign_in_transaction(tx: StoreTransaction):
            agreement = load_agreement(tx, agreement_id)
            role = agreement.role_of(signer_id)
            if role is None:
                raise ForbiddenError("계약 당사자만 서명할 수 있습니다.", agreement_id=agreement_id)
            # 서명은 한 번만 기록됩니다. 확정된 계약에 다시 서명해도 Conflict 입니다.
            if agreement.signature_for(role) is not None:
                raise ConflictError("이미 서명한 계약입니다.", agreement_id=agreement_id, role=role.value)
            if agreement.status.is_terminal:
                raise InvalidStateError(f"{agreement.status.value} 상태의 계약에는 서명할 수 없습니다.",
                                        agreement_id=agreement_id)

            now = DateTimeUtils.now()
            record = SignatureRecord(signer_id=signer_id, payload=signature_payload, signed_at=now)
            if role is SignerRole.OWNER:
                agreement.owner_signature = record
            else:
                agreement.adopter_signature = record
            agreement.updated_at = now

            outcome = None
            if agreement.is_fully_signed:
                agreement.status = AgreementStatus.FINALIZED
                agreement.finalized_at = now
                outcome = self.guard.on_agreement_finalized(tx, agreement)
            else:
                agreement.status = AgreementStatus.PARTIALLY_SIGNED

            tx.set(collections.AGREEMENTS, agreement_id, agreement.to_document())
            return agreement, role, outcome

        agreement, role, outcome = self.store.run_in_transaction(_sign_in_transaction)
        logger.info(f"계약 서명 기록: {agreement_id} ({role.value}, status={agreement.status.value})")

        parties = [agreement.owner_id, agreement.adopter_id]
        self.event_publisher.publish(build_event(
            EventType.AGREEMENT_SIGNED, target_id=agreement_id, recipient_ids=parties,
            payload={"signer_id": signer_id, "role": role.value, "status": agreement.status.value}
        ))

        if outcome is not None:
            self.event_publisher.publish(build_event(
                EventType.AGREEMENT_FINALIZED, target_id=agreement_id, recipient_ids=parties,
                payload={"listing_id": agreement.listing_id, "finalized_at": DateTimeUtils.to_iso_string(agreement.finalized_at)}
            ))
            self._publish_closed(outcome.closed_conversations)
            self.document_service.request_generation(agreement_id)
        return agreement

    def void_agreement(self, agreement_id: str, reason: str, actor_id: Optional[str] = None) -> None:
        """확정되지 않은 계약을 무효화합니다. 되돌릴 수 없습니다."""

        def _void_in_transaction(tx: StoreTransaction) -> Agreement:
            agreement = load_agreement(tx, agreement_id)
            if agreement.status.is_terminal:
                raise InvalidStateError(f"{agreement.status.value} 상태의 계약은 무효화할 수 없습니다.",
                                        agreement_id=agreement_id)
            if actor_id is not None and agreement.role_of(actor_id) is None:
                raise ForbiddenError("계약 당사자만 계약을 무효화할 수 있습니다.", agreement_id=agreement_id)
            listing = load_listing(tx, agreement.listing_id)

            write_voided_agreement(tx, agreement, reason)
            if listing.status is ListingStatus.PENDING:
                tx.update(collections.LISTINGS, listing.listing_id, {'status': ListingStatus.AVAILABLE.value})
            return agreement

        agreement = self.store.run_in_transaction(_void_in_transaction)
        logger.info(f"입양 계약 무효화: {agreement_id} (reason={reason})")
        self.event_publisher.publish(build_event(
            EventType.AGREEMENT_VOIDED, target_id=agreement_id,
            recipient_ids=[agreement.owner_id, agreement.adopter_id],
            payload={"listing_id": agreement.listing_id, "reason": reason}
        ))

    def get_agreement(self, agreement_id: str, viewer_id: Optional[str] = None) -> Agreement:
        data = self.store.get(collections.AGREEMENTS, agreement_id)
        if data is None:
            raise NotFoundError("계약을 찾을 수 없습니다.", agreement_id=agreement_id)
        agreement = Agreement.from_dict(data)
        if viewer_id is not None and agreement.role_of(viewer_id) is None:
            raise ForbiddenError("계약 당사자만 조회할 수 있습니다.", agreement_id=agreement_id)
        return agreement

    def retry_document(self, agreement_id: str, actor_id: Optional[str] = None) -> Optional[str]:
        """확정된 계약의 계약서 생성을 다시 시도합니다."""
        self.get_agreement(agreement_id, actor_id)
        return self.document_service.generate(agreement_id)

    def _publish_closed(self, conversations: List[Conversation]) -> None:
        self.event_publisher.publish_all(
            status_changed_event(conversation, derive_status(len(conversation.participants), is_closed=False))
            for conversation in conversations
        )
