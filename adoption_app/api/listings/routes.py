# adoption_app/api/listings/routes.py
from flask import Blueprint, jsonify, current_app
from flask_jwt_extended import jwt_required, get_jwt_identity

from .schemas import ListingResponseSchema, WithdrawResponseSchema

listings_bp = Blueprint('listings_bp', __name__)


@listings_bp.route('/<string:listing_id>', methods=['GET'])
@jwt_required()
def get_listing(listing_id: str):
    """공고의 입양 진행 상태를 조회합니다."""
    listing_service = current_app.services['listings']
    listing = listing_service.get_listing(listing_id)
    return jsonify(ListingResponseSchema().dump(listing.to_dict())), 200


@listings_bp.route('/<string:listing_id>/withdraw', methods=['POST'])
@jwt_required()
def withdraw_listing(listing_id: str):
    """
    [소유자 전용] 공고 철회를 알립니다.
    - 열린 대화방은 모두 종료되고, 확정되지 않은 계약은 모두 무효화됩니다.
    """
    user_id = get_jwt_identity()
    listing_service = current_app.services['listings']
    outcome = listing_service.withdraw_listing(listing_id, actor_id=user_id)
    return jsonify(WithdrawResponseSchema().dump({
        "listing": outcome.listing.to_dict(),
        "closed_conversation_ids": [c.conversation_id for c in outcome.closed_conversations],
        "voided_agreement_ids": [a.agreement_id for a in outcome.voided_agreements],
    })), 200
