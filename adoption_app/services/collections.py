# adoption_app/services/collections.py
"""Firestore 컬렉션 이름과 유일성 키 문서 ID 규칙."""

PROFILES = 'profiles'
LISTINGS = 'listings'
CONVERSATIONS = 'conversations'
MESSAGES = 'messages'
AGREEMENTS = 'agreements'
REALTIME_EVENTS = 'realtime_events'

# (공고, 참여자 쌍) 당 열린 대화방 1개를 보장하는 키 문서
CONVERSATION_KEYS = 'conversation_keys'
# 공고 당 VOID 가 아닌 계약 1개를 보장하는 키 문서
AGREEMENT_KEYS = 'agreement_keys'


def conversation_key(listing_id: str, requester_id: str) -> str:
    return f"{listing_id}:{requester_id}"


def agreement_key(listing_id: str) -> str:
    return listing_id
