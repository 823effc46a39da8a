# adoption_app/services/store/test_memory_store.py
"""
인메모리 저장소의 트랜잭션/낙관적 동시성 테스트

사용법: python -m pytest adoption_app/services/store/test_memory_store.py -v
"""

import threading

import pytest

from adoption_app.core.errors import ConflictError, NotFoundError, TransientError
from adoption_app.services.store import MemoryEntityStore


@pytest.fixture
def mem_store():
    return MemoryEntityStore(max_attempts=20)


def test_transaction_applies_all_writes(mem_store):
    def fn(tx):
        tx.create('docs', 'a', {'value': 1})
        tx.create('docs', 'b', {'value': 2})
        return 'done'

    assert mem_store.run_in_transaction(fn) == 'done'
    assert mem_store.get('docs', 'a') == {'value': 1}
    assert mem_store.get('docs', 'b') == {'value': 2}


def test_create_on_existing_document_fails_without_partial_writes(mem_store):
    mem_store.put('docs', 'a', {'value': 1})

    def fn(tx):
        tx.create('docs', 'b', {'value': 2})
        tx.create('docs', 'a', {'value': 3})

    with pytest.raises(ConflictError):
        mem_store.run_in_transaction(fn)
    assert mem_store.get('docs', 'b') is None
    assert mem_store.get('docs', 'a') == {'value': 1}


def test_update_missing_document_raises_not_found(mem_store):
    with pytest.raises(NotFoundError):
        mem_store.run_in_transaction(lambda tx: tx.update('docs', 'missing', {'value': 1}))


def test_update_merges_top_level_fields(mem_store):
    mem_store.put('docs', 'a', {'value': 1, 'name': 'a'})
    mem_store.run_in_transaction(lambda tx: tx.update('docs', 'a', {'value': 2}))
    assert mem_store.get('docs', 'a') == {'value': 2, 'name': 'a'}


def test_read_after_write_is_rejected(mem_store):
    def fn(tx):
        tx.set('docs', 'a', {'value': 1})
        tx.get('docs', 'a')

    with pytest.raises(RuntimeError):
        mem_store.run_in_transaction(fn)


def test_returned_documents_are_copies(mem_store):
    mem_store.put('docs', 'a', {'items': [1]})
    mem_store.get('docs', 'a')['items'].append(2)
    assert mem_store.get('docs', 'a') == {'items': [1]}


def test_conflicting_commit_reruns_the_whole_function(mem_store):
    mem_store.put('counters', 'c', {'value': 0})
    seen = []

    def fn(tx):
        data = tx.get('counters', 'c')
        if not seen:
            # 첫 시도에서 다른 작업자가 먼저 커밋한 상황
            mem_store.put('counters', 'c', {'value': 100})
        seen.append(data['value'])
        tx.set('counters', 'c', {'value': data['value'] + 1})

    mem_store.run_in_transaction(fn)
    assert seen == [0, 100]
    assert mem_store.get('counters', 'c') == {'value': 101}


def test_created_document_invalidates_earlier_missing_read(mem_store):
    attempts = []

    def fn(tx):
        existing = tx.get('keys', 'k')
        if not attempts:
            mem_store.put('keys', 'k', {'owner': 'someone-else'})
        attempts.append(existing)
        if existing is None:
            tx.set('keys', 'k', {'owner': 'me'})

    mem_store.run_in_transaction(fn)
    assert attempts == [None, {'owner': 'someone-else'}]
    assert mem_store.get('keys', 'k') == {'owner': 'someone-else'}


def test_retry_budget_exhaustion_raises_transient_error():
    mem_store = MemoryEntityStore(max_attempts=2)
    mem_store.put('counters', 'c', {'value': 0})

    def always_conflicting(tx):
        data = tx.get('counters', 'c')
        mem_store.put('counters', 'c', {'value': data['value'] + 10})
        tx.set('counters', 'c', {'value': data['value'] + 1})

    with pytest.raises(TransientError) as exc_info:
        mem_store.run_in_transaction(always_conflicting)
    assert exc_info.value.retryable is True
    assert exc_info.value.http_status == 503


def test_max_attempts_must_be_positive():
    with pytest.raises(ValueError):
        MemoryEntityStore(max_attempts=0)


def test_concurrent_increments_are_never_lost(mem_store):
    mem_store.put('counters', 'c', {'value': 0})
    errors = []

    def increment():
        def fn(tx):
            data = tx.get('counters', 'c')
            tx.update('counters', 'c', {'value': data['value'] + 1})
        try:
            mem_store.run_in_transaction(fn)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=increment) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert mem_store.get('counters', 'c') == {'value': 10}


def test_query_filters_ordering_and_limit(mem_store):
    for i in range(1, 6):
        mem_store.put('messages', f'm{i}', {'conversation_id': 'c1', 'sequence': i, 'read_by': ['a']})
    mem_store.put('messages', 'other', {'conversation_id': 'c2', 'sequence': 1, 'read_by': ['b']})

    docs = mem_store.query('messages', [('conversation_id', '==', 'c1'), ('sequence', '>', 1)],
                           order_by='sequence', descending=True, limit=2)
    assert [d['sequence'] for d in docs] == [5, 4]

    docs = mem_store.query('messages', [('read_by', 'array_contains', 'b')])
    assert [d['conversation_id'] for d in docs] == ['c2']

    docs = mem_store.query('messages', [('sequence', 'in', [2, 3]), ('conversation_id', '==', 'c1')],
                           order_by='sequence')
    assert [d['sequence'] for d in docs] == [2, 3]


def test_unknown_query_operator_raises(mem_store):
    mem_store.put('docs', 'a', {'value': 1})
    with pytest.raises(ValueError):
        mem_store.query('docs', [('value', 'like', 1)])
