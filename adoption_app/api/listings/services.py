# adoption_app/api/listings/services.py
import logging
from typing import Optional

from adoption_app.core.errors import ForbiddenError, NotFoundError
from adoption_app.models.listing import Listing
from adoption_app.models.realtime_event import EventType
from adoption_app.services import collections
from adoption_app.services.consistency_guard import ConsistencyGuard, GuardOutcome, VOID_REASON_WITHDRAWN
from adoption_app.services.event_service import EventPublisher, build_event
from adoption_app.services.store.base import EntityStore
from adoption_app.models.conversation import derive_status
from adoption_app.api.conversations.services import status_changed_event

logger = logging.getLogger(__name__)


class ListingService:
    """
    외부 공고 서비스와의 접점.
    공고 CRUD 는 외부에서 처리하며, 여기서는 공고 조회와 철회 트리거만 다룹니다.
    """

    def __init__(self, store: EntityStore, guard: ConsistencyGuard, event_publisher: EventPublisher):
        self.store = store
        self.guard = guard
        self.event_publisher = event_publisher

    def get_listing(self, listing_id: str) -> Listing:
        data = self.store.get(collections.LISTINGS, listing_id)
        if data is None:
            raise NotFoundError("입양 공고를 찾을 수 없습니다.", listing_id=listing_id)
        return Listing.from_dict(data)

    def withdraw_listing(self, listing_id: str, actor_id: Optional[str] = None) -> GuardOutcome:
        """
        공고 철회(삭제) 시 호출됩니다.
        열린 대화방을 모두 종료하고 확정되지 않은 계약을 모두 무효화합니다.
        """

        def _withdraw_in_transaction(tx):
            if actor_id is not None:
                data = tx.get(collections.LISTINGS, listing_id)
                if data is not None and data.get('owner_id') != actor_id:
                    raise ForbiddenError("공고 소유자만 공고를 철회할 수 있습니다.", listing_id=listing_id)
            return self.guard.on_listing_withdrawn(tx, listing_id)

        outcome = self.store.run_in_transaction(_withdraw_in_transaction)
        logger.info(f"공고 철회 완료: {listing_id}")

        events = [
            status_changed_event(conversation, derive_status(len(conversation.participants), is_closed=False))
            for conversation in outcome.closed_conversations
        ]
        events.extend(
            build_event(
                EventType.AGREEMENT_VOIDED, target_id=agreement.agreement_id,
                recipient_ids=[agreement.owner_id, agreement.adopter_id],
                payload={"listing_id": listing_id, "reason": VOID_REASON_WITHDRAWN}
            )
            for agreement in outcome.voided_agreements
        )
        self.event_publisher.publish_all(events)
        return outcome
