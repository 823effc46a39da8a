# adoption_app/api/messages/services.py
import logging
from typing import Optional, List, Tuple

from adoption_app.core.errors import ForbiddenError, InvalidStateError
from adoption_app.models.message import Message, make_message_id
from adoption_app.models.realtime_event import EventType
from adoption_app.services import collections
from adoption_app.services.event_service import EventPublisher, build_event
from adoption_app.services.store.base import EntityStore, StoreTransaction
from adoption_app.utils.datetime_utils import DateTimeUtils
from adoption_app.api.conversations.services import ConversationService, load_conversation

logger = logging.getLogger(__name__)


class MessageService:
    """
    대화방별 메시지 로그를 담당하는 서비스.
    - 메시지 번호는 대화방 문서의 last_sequence 를 트랜잭션 안에서 증가시켜 부여합니다.
      동시에 두 요청이 같은 번호를 읽으면 한쪽 커밋이 충돌하여 재시도되므로 번호가 중복되거나 비지 않습니다.
    - 읽음 표시(read_by)는 합집합으로만 커지며 절대 줄어들지 않습니다.
    """

    def __init__(self, store: EntityStore, conversation_service: ConversationService,
                 event_publisher: EventPublisher, page_limit: int = 50, page_limit_max: int = 100,
                 mark_read_batch_size: int = 400):
        self.store = store
        self.conversation_service = conversation_service
        self.event_publisher = event_publisher
        self.page_limit = page_limit
        self.page_limit_max = page_limit_max
        self.mark_read_batch_size = max(1, mark_read_batch_size)

    def post_message(self, conversation_id: str, sender_id: str,
                     content: Optional[str] = None, attachment_ref: Optional[str] = None) -> Message:
        """메시지를 추가하고 다음 메시지 번호를 원자적으로 부여합니다."""
        if not content and not attachment_ref:
            raise ValueError("메시지 내용 또는 첨부 파일 참조가 필요합니다.")

        def _post_in_transaction(tx: StoreTransaction):
            conversation = load_conversation(tx, conversation_id)
            if conversation.is_closed:
                raise InvalidStateError("종료된 대화방에는 메시지를 보낼 수 없습니다.", conversation_id=conversation_id)
            if not conversation.has_participant(sender_id):
                raise ForbiddenError("대화방 참여자만 메시지를 보낼 수 있습니다.", conversation_id=conversation_id)

            now = DateTimeUtils.now()
            sequence = conversation.last_sequence + 1
            message = Message(
                message_id=make_message_id(conversation_id, sequence),
                conversation_id=conversation_id,
                sender_id=sender_id,
                sequence=sequence,
                content=content,
                attachment_ref=attachment_ref,
                read_by=[sender_id],
                created_at=now
            )
            tx.update(collections.CONVERSATIONS, conversation_id, {
                'last_sequence': sequence,
                'updated_at': now,
            })
            tx.create(collections.MESSAGES, message.message_id, message.to_document())
            return message, conversation.participant_ids

        message, participant_ids = self.store.run_in_transaction(_post_in_transaction)
        logger.info(f"메시지 등록: conversation={conversation_id}, sequence={message.sequence}, sender={sender_id}")

        self.event_publisher.publish(build_event(
            EventType.MESSAGE_POSTED,
            target_id=conversation_id,
            recipient_ids=participant_ids,
            payload={
                "message_id": message.message_id,
                "sender_id": sender_id,
                "sequence": message.sequence,
                "content": (content or "")[:100],
                "has_attachment": attachment_ref is not None,
            }
        ))
        return message

    def mark_read(self, conversation_id: str, reader_id: str, up_to_sequence: int) -> None:
        """
        up_to_sequence 이하의 모든 메시지에 읽음 표시를 추가합니다.
        이전에 기록한 위치보다 낮은 값은 허용되지만 아무런 효과가 없습니다.
        아직 부여되지 않은 번호는 마지막 메시지 번호로 잘라냅니다.
        한 트랜잭션에서는 최대 mark_read_batch_size 개의 메시지만 갱신하며,
        커밋된 배치만큼 읽은 위치가 앞으로 이동합니다.
        """
        if up_to_sequence < 0:
            raise ValueError("up_to_sequence는 0 이상이어야 합니다.")

        def _mark_batch_in_transaction(tx: StoreTransaction):
            conversation = load_conversation(tx, conversation_id)
            if conversation.is_closed:
                raise InvalidStateError("종료된 대화방의 메시지는 변경할 수 없습니다.", conversation_id=conversation_id)
            membership = conversation.get_membership(reader_id)
            if membership is None:
                raise ForbiddenError("대화방 참여자만 읽음 처리할 수 있습니다.", conversation_id=conversation_id)

            target = min(up_to_sequence, conversation.last_sequence)
            if target <= membership.last_read_sequence:
                return None, target, conversation.participant_ids

            docs = tx.query(collections.MESSAGES, [
                ('conversation_id', '==', conversation_id),
                ('sequence', '>', membership.last_read_sequence),
                ('sequence', '<=', target),
            ], order_by='sequence', limit=self.mark_read_batch_size)

            for doc in docs:
                message = Message.from_dict(doc)
                if message.add_reader(reader_id):
                    tx.update(collections.MESSAGES, message.message_id, {'read_by': message.read_by})

            # 배치가 가득 찼으면 마지막으로 갱신한 메시지까지만 읽은 것으로 기록
            if len(docs) >= self.mark_read_batch_size:
                reached = docs[-1]['sequence']
            else:
                reached = target
            membership.last_read_sequence = reached
            tx.set(collections.CONVERSATIONS, conversation_id, conversation.to_document())
            return reached, target, conversation.participant_ids

        read_up_to = None
        while True:
            reached, target, participant_ids = self.store.run_in_transaction(_mark_batch_in_transaction)
            if reached is None:
                break
            read_up_to = reached
            if reached >= target:
                break

        if read_up_to is None:
            return

        logger.info(f"읽음 처리: conversation={conversation_id}, reader={reader_id}, up_to={read_up_to}")
        self.event_publisher.publish(build_event(
            EventType.MESSAGES_READ,
            target_id=conversation_id,
            recipient_ids=participant_ids,
            payload={"reader_id": reader_id, "up_to_sequence": read_up_to}
        ))

    def list_messages(self, conversation_id: str, viewer_id: Optional[str] = None,
                      after_sequence: int = 0, limit: Optional[int] = None) -> Tuple[List[Message], Optional[int]]:
        """
        after_sequence 이후의 메시지를 번호 오름차순으로 조회합니다. (커서 기반 페이지네이션)
        반환되는 next_cursor 를 다음 요청의 after_sequence 로 사용합니다. 마지막 페이지이면 None 입니다.
        """
        # 참여자 확인 (종료된 대화방도 기록 조회는 가능)
        self.conversation_service.get_conversation(conversation_id, viewer_id)

        limit = limit or self.page_limit
        limit = max(1, min(limit, self.page_limit_max))
        docs = self.store.query(
            collections.MESSAGES,
            [('conversation_id', '==', conversation_id), ('sequence', '>', after_sequence)],
            order_by='sequence', limit=limit
        )
        messages = [Message.from_dict(doc) for doc in docs]
        next_cursor = messages[-1].sequence if len(messages) == limit else None
        return messages, next_cursor

    def unread_count(self, conversation_id: str, reader_id: str) -> int:
        """reader_id 가 아직 읽음 처리하지 않은, 다른 참여자가 보낸 메시지 수."""
        conversation = self.conversation_service.get_conversation(conversation_id, reader_id)
        membership = conversation.get_membership(reader_id)
        docs = self.store.query(
            collections.MESSAGES,
            [('conversation_id', '==', conversation_id), ('sequence', '>', membership.last_read_sequence)]
        )
        return sum(1 for doc in docs if reader_id not in doc.get('read_by', []))
