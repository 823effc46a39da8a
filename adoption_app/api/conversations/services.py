# adoption_app/api/conversations/services.py
import logging
import uuid
from typing import Optional, List, Tuple

from adoption_app.core.errors import ForbiddenError, InvalidStateError, NotFoundError
from adoption_app.models.conversation import Conversation, ConversationStatus
from adoption_app.models.realtime_event import EventType
from adoption_app.services import collections
from adoption_app.services.consistency_guard import ConsistencyGuard, load_listing, write_closed_conversation
from adoption_app.services.event_service import EventPublisher, build_event
from adoption_app.services.store.base import EntityStore, StoreTransaction
from adoption_app.utils.datetime_utils import DateTimeUtils

logger = logging.getLogger(__name__)


def load_conversation(tx: StoreTransaction, conversation_id: str) -> Conversation:
    data = tx.get(collections.CONVERSATIONS, conversation_id)
    if data is None:
        raise NotFoundError("대화방을 찾을 수 없습니다.", conversation_id=conversation_id)
    return Conversation.from_dict(data)


def status_changed_event(conversation: Conversation, previous: ConversationStatus, recipients=None):
    return build_event(
        EventType.CONVERSATION_STATUS_CHANGED,
        target_id=conversation.conversation_id,
        recipient_ids=recipients if recipients is not None else conversation.participant_ids,
        payload={
            "listing_id": conversation.listing_id,
            "previous_status": previous.value,
            "status": conversation.status.value,
        }
    )


class ConversationService:
    """
    대화방 생성, 참여자 관리, 대화방 상태(PENDING/ACTIVE/CLOSED) 도출을 담당하는 서비스.
    상태는 참여자 목록으로부터 매번 계산되며, 모든 참여자 변경은 하나의 트랜잭션으로 적용됩니다.
    """

    def __init__(self, store: EntityStore, guard: ConsistencyGuard, event_publisher: EventPublisher):
        self.store = store
        self.guard = guard
        self.event_publisher = event_publisher

    def start_conversation(self, listing_id: str, requester_id: str) -> Conversation:
        """
        입양 희망자가 공고에 대한 대화를 시작합니다.
        같은 (공고, 요청자) 쌍에 열린 대화방이 있으면 새로 만들지 않고 그대로 반환합니다.
        공고 소유자는 생성 시점에 자동으로 참여자로 등록됩니다.
        """
        key_id = collections.conversation_key(listing_id, requester_id)

        def _start_in_transaction(tx: StoreTransaction) -> Tuple[Conversation, ConversationStatus, bool]:
            listing = self.guard.check_conversation_allowed(tx, listing_id)
            if listing.owner_id == requester_id:
                raise ForbiddenError("자신의 공고에는 대화를 시작할 수 없습니다.", listing_id=listing_id)

            key_doc = tx.get(collections.CONVERSATION_KEYS, key_id)
            if key_doc is not None:
                existing = tx.get(collections.CONVERSATIONS, key_doc['conversation_id'])
                if existing is not None:
                    conversation = Conversation.from_dict(existing)
                    if not conversation.is_closed:
                        previous = conversation.status
                        # 대화방을 나갔던 요청자가 다시 시작하면 기존 대화방에 재참여시킵니다.
                        if conversation.add_member(requester_id):
                            conversation.updated_at = DateTimeUtils.now()
                            tx.set(collections.CONVERSATIONS, conversation.conversation_id, conversation.to_document())
                            return conversation, previous, True
                        return conversation, previous, False

            now = DateTimeUtils.now()
            conversation = Conversation(
                conversation_id=str(uuid.uuid4()),
                listing_id=listing_id,
                owner_id=listing.owner_id,
                requester_id=requester_id,
                created_at=now,
                updated_at=now
            )
            conversation.add_member(listing.owner_id, joined_at=now)
            conversation.add_member(requester_id, joined_at=now)

            tx.create(collections.CONVERSATIONS, conversation.conversation_id, conversation.to_document())
            tx.set(collections.CONVERSATION_KEYS, key_id, {
                'conversation_id': conversation.conversation_id,
                'listing_id': listing_id,
                'requester_id': requester_id,
            })
            return conversation, ConversationStatus.PENDING, True

        conversation, previous, changed = self.store.run_in_transaction(_start_in_transaction)
        if changed:
            logger.info(f"대화방 시작: {conversation.conversation_id} (listing={listing_id}, requester={requester_id}, status={conversation.status.value})")
            if conversation.status is not previous:
                self.event_publisher.publish(status_changed_event(conversation, previous))
        return conversation

    def add_participant(self, conversation_id: str, profile_id: str, actor_id: Optional[str] = None) -> Conversation:
        """참여자를 추가합니다. 이미 참여 중인 경우 아무것도 바꾸지 않습니다."""

        def _add_in_transaction(tx: StoreTransaction):
            conversation = load_conversation(tx, conversation_id)
            if conversation.is_closed:
                raise InvalidStateError("종료된 대화방에는 참여자를 추가할 수 없습니다.", conversation_id=conversation_id)
            if actor_id is not None and not conversation.has_participant(actor_id):
                raise ForbiddenError("대화방 참여자만 다른 사용자를 초대할 수 있습니다.", conversation_id=conversation_id)

            previous = conversation.status
            if not conversation.add_member(profile_id):
                return conversation, previous, False
            conversation.updated_at = DateTimeUtils.now()
            tx.set(collections.CONVERSATIONS, conversation_id, conversation.to_document())
            return conversation, previous, True

        conversation, previous, changed = self.store.run_in_transaction(_add_in_transaction)
        if changed:
            logger.info(f"대화방 참여자 추가: {conversation_id} <- {profile_id} (status={conversation.status.value})")
            if conversation.status is not previous:
                self.event_publisher.publish(status_changed_event(conversation, previous))
        return conversation

    def remove_participant(self, conversation_id: str, profile_id: str, actor_id: Optional[str] = None) -> Conversation:
        """
        참여자를 제거합니다.
        - 공고가 아직 입양 완료되지 않았다면 공고 소유자는 제거할 수 없습니다.
        - actor_id 가 주어지면 본인 또는 공고 소유자만 제거할 수 있습니다.
        """

        def _remove_in_transaction(tx: StoreTransaction):
            conversation = load_conversation(tx, conversation_id)
            if conversation.is_closed:
                raise InvalidStateError("종료된 대화방의 참여자는 변경할 수 없습니다.", conversation_id=conversation_id)
            if actor_id is not None and actor_id not in (profile_id, conversation.owner_id):
                raise ForbiddenError("본인 또는 공고 소유자만 참여자를 내보낼 수 있습니다.", conversation_id=conversation_id)

            if profile_id == conversation.owner_id:
                listing = load_listing(tx, conversation.listing_id)
                if not listing.is_adopted:
                    raise InvalidStateError("공고가 진행 중인 동안에는 공고 소유자를 대화방에서 제거할 수 없습니다.",
                                            conversation_id=conversation_id)

            previous = conversation.status
            if not conversation.remove_member(profile_id):
                return conversation, previous, False
            conversation.updated_at = DateTimeUtils.now()
            tx.set(collections.CONVERSATIONS, conversation_id, conversation.to_document())
            return conversation, previous, True

        conversation, previous, changed = self.store.run_in_transaction(_remove_in_transaction)
        if changed:
            logger.info(f"대화방 참여자 제거: {conversation_id} -> {profile_id} (status={conversation.status.value})")
            if conversation.status is not previous:
                recipients = conversation.participant_ids + [profile_id]
                self.event_publisher.publish(status_changed_event(conversation, previous, recipients))
        return conversation

    def close_conversation(self, conversation_id: str, reason: str, actor_id: Optional[str] = None) -> None:
        """대화방을 종료합니다. 이미 종료된 대화방에 대해서는 아무 일도 하지 않습니다."""

        def _close_in_transaction(tx: StoreTransaction):
            conversation = load_conversation(tx, conversation_id)
            if actor_id is not None and not conversation.has_participant(actor_id):
                raise ForbiddenError("대화방 참여자만 대화방을 종료할 수 있습니다.", conversation_id=conversation_id)
            previous = conversation.status
            if not conversation.close(reason):
                return conversation, previous, False
            write_closed_conversation(tx, conversation)
            return conversation, previous, True

        conversation, previous, changed = self.store.run_in_transaction(_close_in_transaction)
        if changed:
            logger.info(f"대화방 종료: {conversation_id} (reason={reason})")
            self.event_publisher.publish(status_changed_event(conversation, previous))

    def get_conversation(self, conversation_id: str, viewer_id: Optional[str] = None) -> Conversation:
        data = self.store.get(collections.CONVERSATIONS, conversation_id)
        if data is None:
            raise NotFoundError("대화방을 찾을 수 없습니다.", conversation_id=conversation_id)
        conversation = Conversation.from_dict(data)
        if viewer_id is not None and not conversation.has_participant(viewer_id):
            raise ForbiddenError("대화방 참여자만 조회할 수 있습니다.", conversation_id=conversation_id)
        return conversation

    def list_conversations(self, profile_id: str, listing_id: Optional[str] = None,
                           include_closed: bool = False) -> List[Conversation]:
        """사용자가 참여 중인 대화방 목록을 최근 변경순으로 조회합니다."""
        filters = [('participant_ids', 'array_contains', profile_id)]
        if listing_id:
            filters.append(('listing_id', '==', listing_id))
        docs = self.store.query(collections.CONVERSATIONS, filters, order_by='updated_at', descending=True)
        conversations = [Conversation.from_dict(doc) for doc in docs]
        if not include_closed:
            conversations = [c for c in conversations if not c.is_closed]
        return conversations
