# adoption_app/api/agreements/test_agreement_services.py
"""
입양 계약 워크플로(AgreementService) 테스트

사용법: python -m pytest adoption_app/api/agreements/test_agreement_services.py -v
"""

import threading

import pytest

from adoption_app.core.errors import ConflictError, ForbiddenError, InvalidStateError, NotFoundError
from adoption_app.models.agreement import AgreementStatus
from adoption_app.models.conversation import ConversationStatus
from adoption_app.models.realtime_event import EventType
from adoption_app.services import collections
from adoption_app.services.consistency_guard import CLOSE_REASON_ADOPTED
from adoption_app.services.document_service import DocumentService

TERMS = "중성화 수술 완료 후 입양, 입양 후 3개월간 월 1회 근황 공유"


def _listing_status(store, listing_id='listing-1'):
    return store.get(collections.LISTINGS, listing_id)['status']


@pytest.fixture
def agreement(agreement_service):
    return agreement_service.create_agreement('listing-1', 'owner-1', 'adopter-1', TERMS)


def test_create_agreement_starts_in_draft(agreement, store):
    assert agreement.status is AgreementStatus.DRAFT
    assert agreement.owner_signature is None and agreement.adopter_signature is None
    assert _listing_status(store) == 'PENDING'


def test_one_active_agreement_per_listing(agreement_service, agreement):
    with pytest.raises(ConflictError):
        agreement_service.create_agreement('listing-1', 'owner-1', 'adopter-2', TERMS)


def test_create_agreement_validation(agreement_service, conversation_service):
    with pytest.raises(ValueError):
        agreement_service.create_agreement('listing-1', 'owner-1', 'adopter-1', '   ')
    with pytest.raises(NotFoundError):
        agreement_service.create_agreement('missing-listing', 'owner-1', 'adopter-1', TERMS)
    with pytest.raises(ForbiddenError):
        agreement_service.create_agreement('listing-1', 'other-1', 'adopter-1', TERMS)
    with pytest.raises(ForbiddenError):
        agreement_service.create_agreement('listing-1', 'owner-1', 'owner-1', TERMS)
    with pytest.raises(NotFoundError):
        agreement_service.create_agreement('listing-1', 'owner-1', 'ghost', TERMS)

    other_conversation = conversation_service.start_conversation('listing-2', 'adopter-1')
    with pytest.raises(InvalidStateError):
        agreement_service.create_agreement('listing-1', 'owner-1', 'adopter-1', TERMS,
                                           conversation_id=other_conversation.conversation_id)


def test_agreement_links_source_conversation(agreement_service, conversation_service):
    conversation = conversation_service.start_conversation('listing-1', 'adopter-1')
    agreement = agreement_service.create_agreement('listing-1', 'owner-1', 'adopter-1', TERMS,
                                                   conversation_id=conversation.conversation_id)
    assert agreement.conversation_id == conversation.conversation_id


def test_signing_scenario_finalizes_and_adopts(agreement_service, agreement, store, events):
    aid = agreement.agreement_id

    signed = agreement_service.submit_signature(aid, 'owner-1', 'sig-owner')
    assert signed.status is AgreementStatus.PARTIALLY_SIGNED
    assert signed.adopter_signature is None
    assert signed.owner_signature.signer_id == 'owner-1'

    finalized = agreement_service.submit_signature(aid, 'adopter-1', 'sig-adopter')
    assert finalized.status is AgreementStatus.FINALIZED
    assert finalized.finalized_at is not None
    assert _listing_status(store) == 'ADOPTED'

    assert len(events.of_type(EventType.AGREEMENT_SIGNED)) == 2
    finalized_events = events.of_type(EventType.AGREEMENT_FINALIZED)
    assert len(finalized_events) == 1
    assert finalized_events[0].recipient_ids == ['adopter-1', 'owner-1']

    with pytest.raises(ConflictError):
        agreement_service.create_agreement('listing-1', 'owner-1', 'adopter-2', TERMS)


def test_signatures_are_write_once(agreement_service, agreement):
    aid = agreement.agreement_id
    agreement_service.submit_signature(aid, 'adopter-1', 'sig-adopter')

    with pytest.raises(ConflictError):
        agreement_service.submit_signature(aid, 'adopter-1', 'sig-adopter-again')
    with pytest.raises(ForbiddenError):
        agreement_service.submit_signature(aid, 'other-1', 'sig-other')
    with pytest.raises(ValueError):
        agreement_service.submit_signature(aid, 'owner-1', '')

    current = agreement_service.get_agreement(aid)
    assert current.status is AgreementStatus.PARTIALLY_SIGNED
    assert current.adopter_signature.payload == 'sig-adopter'


def test_third_submission_does_not_alter_finalized_agreement(agreement_service, agreement):
    aid = agreement.agreement_id
    agreement_service.submit_signature(aid, 'owner-1', 'sig-owner')
    finalized = agreement_service.submit_signature(aid, 'adopter-1', 'sig-adopter')

    with pytest.raises(ConflictError):
        agreement_service.submit_signature(aid, 'owner-1', 'sig-owner-again')
    with pytest.raises(ForbiddenError):
        agreement_service.submit_signature(aid, 'other-1', 'sig-other')

    current = agreement_service.get_agreement(aid)
    assert current.status is AgreementStatus.FINALIZED
    assert current.finalized_at == finalized.finalized_at
    assert current.owner_signature.payload == 'sig-owner'


def test_finalization_closes_conversations_and_blocks_posts(agreement_service, conversation_service,
                                                            message_service, store, events):
    first = conversation_service.start_conversation('listing-1', 'adopter-1')
    second = conversation_service.start_conversation('listing-1', 'adopter-2')
    unrelated = conversation_service.start_conversation('listing-2', 'adopter-2')

    agreement = agreement_service.create_agreement('listing-1', 'owner-1', 'adopter-1', TERMS,
                                                   conversation_id=first.conversation_id)
    agreement_service.submit_signature(agreement.agreement_id, 'owner-1', 'sig-owner')
    agreement_service.submit_signature(agreement.agreement_id, 'adopter-1', 'sig-adopter')

    for conversation in (first, second):
        closed = conversation_service.get_conversation(conversation.conversation_id)
        assert closed.status is ConversationStatus.CLOSED
        assert closed.closed_reason == CLOSE_REASON_ADOPTED
        with pytest.raises(InvalidStateError):
            message_service.post_message(conversation.conversation_id, 'adopter-1', '감사합니다!')

    closed_events = [e for e in events.of_type(EventType.CONVERSATION_STATUS_CHANGED) if e.payload['status'] == 'CLOSED']
    assert {e.target_id for e in closed_events} == {first.conversation_id, second.conversation_id}
    assert all(e.payload['previous_status'] == 'ACTIVE' for e in closed_events)

    assert conversation_service.get_conversation(unrelated.conversation_id).status is ConversationStatus.ACTIVE
    assert store.get(collections.CONVERSATION_KEYS, collections.conversation_key('listing-1', 'adopter-1')) is None

    with pytest.raises(ConflictError):
        conversation_service.start_conversation('listing-1', 'other-1')


def test_owner_can_leave_after_adoption(conversation_service, store):
    conversation = conversation_service.start_conversation('listing-2', 'adopter-1')
    store.put(collections.LISTINGS, 'listing-2', {
        'listing_id': 'listing-2', 'owner_id': 'owner-1', 'status': 'ADOPTED'
    })
    updated = conversation_service.remove_participant(conversation.conversation_id, 'owner-1', actor_id='owner-1')
    assert updated.participant_ids == ['adopter-1']


def test_concurrent_signatures_finalize_exactly_once(agreement_service, agreement, events, store):
    aid = agreement.agreement_id
    results, errors = [], []

    def sign(signer_id):
        try:
            results.append(agreement_service.submit_signature(aid, signer_id, f'sig-{signer_id}').status)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=sign, args=[signer]) for signer in ('owner-1', 'adopter-1')]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert sorted(s.value for s in results) == ['FINALIZED', 'PARTIALLY_SIGNED']
    assert len(events.of_type(EventType.AGREEMENT_FINALIZED)) == 1
    current = agreement_service.get_agreement(aid)
    assert current.owner_signature is not None and current.adopter_signature is not None
    assert _listing_status(store) == 'ADOPTED'


def test_void_agreement_releases_listing(agreement_service, agreement, store, events):
    agreement_service.void_agreement(agreement.agreement_id, '입양자 사정으로 취소', actor_id='adopter-1')

    voided = agreement_service.get_agreement(agreement.agreement_id)
    assert voided.status is AgreementStatus.VOID
    assert voided.void_reason == '입양자 사정으로 취소'
    assert _listing_status(store) == 'AVAILABLE'
    assert len(events.of_type(EventType.AGREEMENT_VOIDED)) == 1

    with pytest.raises(InvalidStateError):
        agreement_service.void_agreement(agreement.agreement_id, '다시 취소')
    with pytest.raises(InvalidStateError):
        agreement_service.submit_signature(agreement.agreement_id, 'owner-1', 'sig-owner')

    replacement = agreement_service.create_agreement('listing-1', 'owner-1', 'adopter-2', TERMS)
    assert replacement.status is AgreementStatus.DRAFT


def test_void_rules(agreement_service, agreement):
    with pytest.raises(ForbiddenError):
        agreement_service.void_agreement(agreement.agreement_id, '제3자 취소', actor_id='other-1')

    agreement_service.submit_signature(agreement.agreement_id, 'owner-1', 'sig-owner')
    agreement_service.submit_signature(agreement.agreement_id, 'adopter-1', 'sig-adopter')
    with pytest.raises(InvalidStateError):
        agreement_service.void_agreement(agreement.agreement_id, '확정 후 취소')


def test_get_agreement_checks_viewer(agreement_service, agreement):
    assert agreement_service.get_agreement(agreement.agreement_id, 'adopter-1').agreement_id == agreement.agreement_id
    with pytest.raises(ForbiddenError):
        agreement_service.get_agreement(agreement.agreement_id, 'other-1')
    with pytest.raises(NotFoundError):
        agreement_service.get_agreement('missing')


def test_document_generated_after_finalization(agreement_service, agreement, renderer):
    agreement_service.submit_signature(agreement.agreement_id, 'owner-1', 'sig-owner')
    agreement_service.submit_signature(agreement.agreement_id, 'adopter-1', 'sig-adopter')

    current = agreement_service.get_agreement(agreement.agreement_id)
    assert current.document_ref == f"agreements/{agreement.agreement_id}.txt"
    assert renderer.calls == 1


def test_document_failure_keeps_agreement_finalized_and_can_be_retried(agreement_service, agreement, renderer):
    renderer.failures = 3  # 재시도 3회 모두 실패

    agreement_service.submit_signature(agreement.agreement_id, 'owner-1', 'sig-owner')
    agreement_service.submit_signature(agreement.agreement_id, 'adopter-1', 'sig-adopter')

    current = agreement_service.get_agreement(agreement.agreement_id)
    assert current.status is AgreementStatus.FINALIZED
    assert current.document_ref is None
    assert renderer.calls == 3

    document_ref = agreement_service.retry_document(agreement.agreement_id, 'owner-1')
    assert document_ref == f"agreements/{agreement.agreement_id}.txt"
    assert renderer.calls == 4

    # 이미 기록된 문서는 다시 렌더링하지 않습니다.
    assert agreement_service.retry_document(agreement.agreement_id) == document_ref
    assert renderer.calls == 4


def test_document_generation_requires_finalized_agreement(document_service, agreement):
    with pytest.raises(InvalidStateError):
        document_service.generate(agreement.agreement_id)
    with pytest.raises(NotFoundError):
        document_service.generate('missing')


def test_attach_document_is_write_once(document_service, agreement):
    assert document_service.attach_document(agreement.agreement_id, 'agreements/first.txt') == 'agreements/first.txt'
    assert document_service.attach_document(agreement.agreement_id, 'agreements/second.txt') == 'agreements/first.txt'


def test_generation_without_renderer_is_skipped(store, agreement_service, agreement):
    agreement_service.submit_signature(agreement.agreement_id, 'owner-1', 'sig-owner')
    agreement_service.submit_signature(agreement.agreement_id, 'adopter-1', 'sig-adopter')
    store.run_in_transaction(lambda tx: tx.update(collections.AGREEMENTS, agreement.agreement_id, {'document_ref': None}))

    service = DocumentService(store, renderer=None, run_async=False)
    assert service.generate(agreement.agreement_id) is None
