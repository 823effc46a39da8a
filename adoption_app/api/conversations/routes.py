# adoption_app/api/conversations/routes.py
import logging
from flask import Blueprint, request, jsonify, Response, current_app
from flask_jwt_extended import jwt_required, get_jwt_identity
from marshmallow import ValidationError

from .schemas import (
    ConversationStartSchema,
    ParticipantAddSchema,
    ConversationCloseSchema,
    ConversationResponseSchema
)

conversations_bp = Blueprint('conversations_bp', __name__)


@conversations_bp.route('/', methods=['POST'])
@jwt_required()
def start_conversation():
    """
    입양 공고에 대한 대화를 시작합니다.
    - 같은 공고에 이미 열린 대화방이 있으면 새로 만들지 않고 그 대화방을 반환합니다.
    """
    user_id = get_jwt_identity()
    conversation_service = current_app.services['conversations']
    try:
        data = ConversationStartSchema().load(request.get_json())
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400

    conversation = conversation_service.start_conversation(data['listing_id'], user_id)
    return jsonify(ConversationResponseSchema().dump(conversation.to_dict())), 200


@conversations_bp.route('/', methods=['GET'])
@jwt_required()
def list_conversations():
    """내가 참여 중인 대화방 목록을 조회합니다."""
    user_id = get_jwt_identity()
    conversation_service = current_app.services['conversations']
    listing_id = request.args.get('listing_id', None, type=str)
    include_closed = request.args.get('include_closed', 'false').lower() == 'true'

    conversations = conversation_service.list_conversations(user_id, listing_id, include_closed)
    return jsonify({
        "conversations": ConversationResponseSchema(many=True).dump([c.to_dict() for c in conversations])
    }), 200


@conversations_bp.route('/<string:conversation_id>', methods=['GET'])
@jwt_required()
def get_conversation(conversation_id: str):
    """[참여자 전용] 대화방 정보를 조회합니다."""
    user_id = get_jwt_identity()
    conversation_service = current_app.services['conversations']
    conversation = conversation_service.get_conversation(conversation_id, user_id)
    return jsonify(ConversationResponseSchema().dump(conversation.to_dict())), 200


@conversations_bp.route('/<string:conversation_id>/participants', methods=['POST'])
@jwt_required()
def add_participant(conversation_id: str):
    """[참여자 전용] 대화방에 참여자를 추가합니다."""
    user_id = get_jwt_identity()
    conversation_service = current_app.services['conversations']
    try:
        data = ParticipantAddSchema().load(request.get_json())
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400

    conversation = conversation_service.add_participant(conversation_id, data['profile_id'], actor_id=user_id)
    return jsonify(ConversationResponseSchema().dump(conversation.to_dict())), 200


@conversations_bp.route('/<string:conversation_id>/participants/<string:profile_id>', methods=['DELETE'])
@jwt_required()
def remove_participant(conversation_id: str, profile_id: str):
    """대화방에서 나가거나(본인), 공고 소유자가 참여자를 내보냅니다."""
    user_id = get_jwt_identity()
    conversation_service = current_app.services['conversations']
    conversation = conversation_service.remove_participant(conversation_id, profile_id, actor_id=user_id)
    return jsonify(ConversationResponseSchema().dump(conversation.to_dict())), 200


@conversations_bp.route('/<string:conversation_id>/close', methods=['POST'])
@jwt_required()
def close_conversation(conversation_id: str):
    """[참여자 전용] 대화방을 종료(보관)합니다. 여러 번 호출해도 결과는 같습니다."""
    user_id = get_jwt_identity()
    conversation_service = current_app.services['conversations']
    try:
        data = ConversationCloseSchema().load(request.get_json(silent=True) or {})
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400

    conversation_service.close_conversation(conversation_id, data['reason'], actor_id=user_id)
    logging.info(f"대화방 종료 요청 처리: {conversation_id} by {user_id}")
    return Response(status=204)
