# adoption_app/api/messages/test_message_services.py
"""
메시지 로그(MessageService) 테스트

사용법: python -m pytest adoption_app/api/messages/test_message_services.py -v
"""

import threading

import pytest

from adoption_app.core.errors import ForbiddenError, InvalidStateError
from adoption_app.models.realtime_event import EventType
from adoption_app.services import collections


@pytest.fixture
def conversation(conversation_service):
    return conversation_service.start_conversation('listing-1', 'adopter-1')


def _read_by(store, message):
    return store.get(collections.MESSAGES, message.message_id)['read_by']


def test_post_message_assigns_increasing_sequences(message_service, conversation_service, conversation, events):
    cid = conversation.conversation_id
    first = message_service.post_message(cid, 'adopter-1', '안녕하세요, 입양 문의드립니다.')
    second = message_service.post_message(cid, 'owner-1', '네, 반갑습니다.')
    third = message_service.post_message(cid, 'adopter-1', attachment_ref='uploads/photo.jpg')

    assert [first.sequence, second.sequence, third.sequence] == [1, 2, 3]
    assert first.read_by == ['adopter-1']
    assert third.content is None
    assert conversation_service.get_conversation(cid).last_sequence == 3

    posted = events.of_type(EventType.MESSAGE_POSTED)
    assert len(posted) == 3
    assert posted[0].recipient_ids == ['adopter-1', 'owner-1']
    assert posted[2].payload['has_attachment'] is True


def test_post_message_validation(message_service, conversation):
    with pytest.raises(ValueError):
        message_service.post_message(conversation.conversation_id, 'adopter-1')
    with pytest.raises(ForbiddenError):
        message_service.post_message(conversation.conversation_id, 'other-1', '끼어들기')


def test_post_to_closed_conversation_fails(message_service, conversation_service, conversation):
    conversation_service.close_conversation(conversation.conversation_id, 'ARCHIVED')
    with pytest.raises(InvalidStateError):
        message_service.post_message(conversation.conversation_id, 'adopter-1', '아직 계신가요?')


def test_concurrent_posts_receive_gapless_sequences(message_service, conversation_service, conversation, store):
    cid = conversation.conversation_id
    conversation_service.add_participant(cid, 'adopter-2')
    senders = ['owner-1', 'adopter-1', 'adopter-2', 'owner-1', 'adopter-1', 'adopter-2', 'owner-1', 'adopter-1']
    sequences, errors = [], []

    def post(sender_id):
        try:
            sequences.append(message_service.post_message(cid, sender_id, f'{sender_id} 메시지').sequence)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=post, args=[sender]) for sender in senders]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert sorted(sequences) == list(range(1, len(senders) + 1))
    stored = store.query(collections.MESSAGES, [('conversation_id', '==', cid)], order_by='sequence')
    assert [m['sequence'] for m in stored] == list(range(1, len(senders) + 1))


def test_mark_read_is_monotonic(message_service, conversation, store, events):
    cid = conversation.conversation_id
    messages = [message_service.post_message(cid, 'adopter-1', f'메시지 {i}') for i in range(1, 4)]
    assert message_service.unread_count(cid, 'owner-1') == 3

    message_service.mark_read(cid, 'owner-1', 2)
    assert _read_by(store, messages[0]) == ['adopter-1', 'owner-1']
    assert _read_by(store, messages[1]) == ['adopter-1', 'owner-1']
    assert _read_by(store, messages[2]) == ['adopter-1']
    assert message_service.unread_count(cid, 'owner-1') == 1

    # 이전 위치보다 낮은 읽음 표시는 허용되지만 효과가 없습니다.
    before = len(events.of_type(EventType.MESSAGES_READ))
    message_service.mark_read(cid, 'owner-1', 1)
    assert len(events.of_type(EventType.MESSAGES_READ)) == before
    assert 'owner-1' in _read_by(store, messages[1])

    # 아직 부여되지 않은 번호는 마지막 메시지 번호로 잘립니다.
    message_service.mark_read(cid, 'owner-1', 99)
    assert message_service.unread_count(cid, 'owner-1') == 0
    last_read = events.of_type(EventType.MESSAGES_READ)[-1]
    assert last_read.payload == {'reader_id': 'owner-1', 'up_to_sequence': 3}

    message_service.post_message(cid, 'adopter-1', '새 메시지')
    assert message_service.unread_count(cid, 'owner-1') == 1
    assert message_service.unread_count(cid, 'adopter-1') == 0


def test_mark_read_errors(message_service, conversation_service, conversation):
    cid = conversation.conversation_id
    message_service.post_message(cid, 'adopter-1', '안녕하세요')

    with pytest.raises(ValueError):
        message_service.mark_read(cid, 'owner-1', -1)
    with pytest.raises(ForbiddenError):
        message_service.mark_read(cid, 'other-1', 1)

    conversation_service.close_conversation(cid, 'ARCHIVED')
    with pytest.raises(InvalidStateError):
        message_service.mark_read(cid, 'owner-1', 1)


def test_list_messages_cursor_pagination(message_service, conversation):
    cid = conversation.conversation_id
    for i in range(5):
        message_service.post_message(cid, 'adopter-1', f'메시지 {i}')

    page, cursor = message_service.list_messages(cid, 'owner-1', limit=2)
    assert [m.sequence for m in page] == [1, 2]
    assert cursor == 2

    page, cursor = message_service.list_messages(cid, 'owner-1', after_sequence=cursor, limit=2)
    assert [m.sequence for m in page] == [3, 4]

    page, cursor = message_service.list_messages(cid, 'owner-1', after_sequence=cursor, limit=2)
    assert [m.sequence for m in page] == [5]
    assert cursor is None


def test_list_messages_limit_is_capped(store, conversation_service, events, conversation):
    from adoption_app.api.messages.services import MessageService
    service = MessageService(store, conversation_service, events, page_limit=2, page_limit_max=3)
    cid = conversation.conversation_id
    for i in range(4):
        service.post_message(cid, 'owner-1', f'메시지 {i}')

    page, _ = service.list_messages(cid, 'adopter-1')
    assert len(page) == 2
    page, _ = service.list_messages(cid, 'adopter-1', limit=1000)
    assert len(page) == 3


def test_mark_read_commits_in_bounded_batches(store, conversation_service, events, conversation, monkeypatch):
    from adoption_app.api.messages.services import MessageService
    service = MessageService(store, conversation_service, events, mark_read_batch_size=2)
    cid = conversation.conversation_id
    messages = [service.post_message(cid, 'adopter-1', f'메시지 {i}') for i in range(5)]

    transactions = []
    run_in_transaction = store.run_in_transaction

    def counting_run_in_transaction(fn):
        transactions.append(fn)
        return run_in_transaction(fn)

    monkeypatch.setattr(store, 'run_in_transaction', counting_run_in_transaction)
    service.mark_read(cid, 'owner-1', 5)

    assert len(transactions) == 3
    assert all('owner-1' in _read_by(store, message) for message in messages)
    assert service.unread_count(cid, 'owner-1') == 0
    read_events = events.of_type(EventType.MESSAGES_READ)
    assert [e.payload['up_to_sequence'] for e in read_events] == [5]


def test_history_remains_readable_after_close(message_service, conversation_service, conversation):
    cid = conversation.conversation_id
    message_service.post_message(cid, 'adopter-1', '마지막 인사')
    conversation_service.close_conversation(cid, 'ARCHIVED')

    page, _ = message_service.list_messages(cid, 'owner-1')
    assert [m.content for m in page] == ['마지막 인사']

    with pytest.raises(ForbiddenError):
        message_service.list_messages(cid, 'other-1')
