# adoption_app/services/consistency_guard.py
"""
대화방, 메시지, 입양 계약에 걸친 교차 엔티티 불변식을 강제하는 규칙 모음.

외부 호출자가 직접 부르지 않고, 다른 서비스가 정해진 전이 시점에
자신의 트랜잭션 안에서 호출합니다. 이벤트마다 메서드 하나를 가집니다.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List

from adoption_app.core.errors import ConflictError, InvalidStateError, NotFoundError
from adoption_app.models.agreement import Agreement, AgreementStatus
from adoption_app.models.conversation import Conversation
from adoption_app.models.listing import Listing, ListingStatus
from adoption_app.services import collections
from adoption_app.services.store.base import StoreTransaction
from adoption_app.utils.datetime_utils import DateTimeUtils

logger = logging.getLogger(__name__)

CLOSE_REASON_ADOPTED = "LISTING_ADOPTED"
CLOSE_REASON_WITHDRAWN = "LISTING_WITHDRAWN"
VOID_REASON_WITHDRAWN = "LISTING_WITHDRAWN"


@dataclass
class GuardOutcome:
    """규칙 적용 결과. 호출한 서비스가 커밋 이후 이벤트 발행에 사용합니다."""
    listing: Listing
    closed_conversations: List[Conversation] = field(default_factory=list)
    voided_agreements: List[Agreement] = field(default_factory=list)


def load_listing(tx: StoreTransaction, listing_id: str) -> Listing:
    data = tx.get(collections.LISTINGS, listing_id)
    if data is None:
        raise NotFoundError("입양 공고를 찾을 수 없습니다.", listing_id=listing_id)
    return Listing.from_dict(data)


def load_open_conversations(tx: StoreTransaction, listing_id: str) -> List[Conversation]:
    docs = tx.query(collections.CONVERSATIONS, [('listing_id', '==', listing_id)])
    conversations = [Conversation.from_dict(doc) for doc in docs]
    return [c for c in conversations if not c.is_closed]


def _ensure_not_withdrawn(listing: Listing) -> None:
    if listing.is_withdrawn:
        raise InvalidStateError("철회된 공고에는 대화나 계약을 새로 시작할 수 없습니다.", listing_id=listing.listing_id)


def write_closed_conversation(tx: StoreTransaction, conversation: Conversation) -> None:
    """종료된 대화방을 저장하고 (공고, 참여자 쌍) 유일성 키를 해제합니다."""
    tx.set(collections.CONVERSATIONS, conversation.conversation_id, conversation.to_document())
    tx.delete(collections.CONVERSATION_KEYS,
              collections.conversation_key(conversation.listing_id, conversation.requester_id))


def write_voided_agreement(tx: StoreTransaction, agreement: Agreement, reason: str) -> None:
    """계약을 VOID 로 전이하여 저장하고 공고 당 계약 유일성 키를 해제합니다."""
    now = DateTimeUtils.now()
    agreement.status = AgreementStatus.VOID
    agreement.voided_at = now
    agreement.void_reason = reason
    agreement.updated_at = now
    tx.set(collections.AGREEMENTS, agreement.agreement_id, agreement.to_document())
    tx.delete(collections.AGREEMENT_KEYS, collections.agreement_key(agreement.listing_id))


class ConsistencyGuard(ABC):
    """교차 엔티티 규칙 엔진 인터페이스."""

    @abstractmethod
    def check_conversation_allowed(self, tx: StoreTransaction, listing_id: str) -> Listing:
        """대화 시작 시점: 존재하지 않거나 이미 입양된 공고에는 대화방을 만들 수 없습니다."""

    @abstractmethod
    def check_agreement_allowed(self, tx: StoreTransaction, listing_id: str) -> Listing:
        """계약 생성 시점: 공고 당 진행 중/확정된 계약은 하나뿐입니다."""

    @abstractmethod
    def on_agreement_finalized(self, tx: StoreTransaction, agreement: Agreement) -> GuardOutcome:
        """계약 확정 시점: 공고를 ADOPTED 로 전이하고 열린 대화방을 모두 종료합니다."""

    @abstractmethod
    def on_listing_withdrawn(self, tx: StoreTransaction, listing_id: str) -> GuardOutcome:
        """공고 철회/삭제 시점: 열린 대화방을 종료하고 확정되지 않은 계약을 모두 무효화합니다."""


class ListingConsistencyGuard(ConsistencyGuard):
    """공고(listing) 라이프사이클을 기준으로 규칙을 적용하는 유일한 구현."""

    def check_conversation_allowed(self, tx, listing_id):
        listing = load_listing(tx, listing_id)
        if listing.is_adopted:
            raise ConflictError("이미 입양이 완료된 공고입니다.", listing_id=listing_id)
        _ensure_not_withdrawn(listing)
        return listing

    def check_agreement_allowed(self, tx, listing_id):
        listing = load_listing(tx, listing_id)
        key_doc = tx.get(collections.AGREEMENT_KEYS, collections.agreement_key(listing_id))
        if listing.is_adopted:
            raise ConflictError("이미 입양 계약이 확정된 공고입니다.", listing_id=listing_id)
        _ensure_not_withdrawn(listing)
        if key_doc is not None:
            raise ConflictError(
                "이 공고에는 이미 진행 중인 입양 계약이 있습니다.",
                listing_id=listing_id, agreement_id=key_doc.get('agreement_id')
            )
        return listing

    def on_agreement_finalized(self, tx, agreement):
        # 읽기
        listing = load_listing(tx, agreement.listing_id)
        open_conversations = load_open_conversations(tx, agreement.listing_id)

        # 쓰기
        if listing.is_adopted:
            # 확정 계약이 이미 있는 공고는 키 문서가 막으므로 여기 도달하지 않습니다.
            raise ConflictError("이미 입양이 완료된 공고입니다.", listing_id=listing.listing_id)
        listing.status = ListingStatus.ADOPTED
        tx.update(collections.LISTINGS, listing.listing_id, {'status': listing.status.value})

        now = DateTimeUtils.now()
        for conversation in open_conversations:
            conversation.close(CLOSE_REASON_ADOPTED, closed_at=now)
            write_closed_conversation(tx, conversation)

        logger.info(f"공고 입양 확정 처리: listing={listing.listing_id}, 종료된 대화방 {len(open_conversations)}개")
        return GuardOutcome(listing=listing, closed_conversations=open_conversations)

    def on_listing_withdrawn(self, tx, listing_id):
        # 읽기
        listing = load_listing(tx, listing_id)
        open_conversations = load_open_conversations(tx, listing_id)
        agreement_docs = tx.query(collections.AGREEMENTS, [('listing_id', '==', listing_id)])
        pending_agreements = [
            agreement for agreement in (Agreement.from_dict(doc) for doc in agreement_docs)
            if not agreement.status.is_terminal
        ]

        # 쓰기
        now = DateTimeUtils.now()
        for conversation in open_conversations:
            conversation.close(CLOSE_REASON_WITHDRAWN, closed_at=now)
            write_closed_conversation(tx, conversation)

        for agreement in pending_agreements:
            write_voided_agreement(tx, agreement, VOID_REASON_WITHDRAWN)

        listing_fields = {}
        if not listing.is_withdrawn:
            listing.withdrawn_at = now
            listing_fields['withdrawn_at'] = now
        if listing.status is ListingStatus.PENDING:
            listing.status = ListingStatus.AVAILABLE
            listing_fields['status'] = listing.status.value
        if listing_fields:
            tx.update(collections.LISTINGS, listing_id, listing_fields)

        logger.info(
            f"공고 철회 처리: listing={listing_id}, 종료된 대화방 {len(open_conversations)}개, "
            f"무효화된 계약 {len(pending_agreements)}개"
        )
        return GuardOutcome(listing=listing, closed_conversations=open_conversations,
                            voided_agreements=pending_agreements)
