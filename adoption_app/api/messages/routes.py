# adoption_app/api/messages/routes.py
from flask import Blueprint, request, jsonify, Response, current_app
from flask_jwt_extended import jwt_required, get_jwt_identity
from marshmallow import ValidationError

from .schemas import MessageCreateSchema, ReadMarkSchema, MessageResponseSchema

messages_bp = Blueprint('messages_bp', __name__)


@messages_bp.route('/<string:conversation_id>/messages', methods=['POST'])
@jwt_required()
def post_message(conversation_id: str):
    """
    [참여자 전용] 대화방에 메시지를 보냅니다.
    - 성공 시 부여된 메시지 번호(sequence)를 포함한 메시지를 201 로 반환합니다.
    """
    user_id = get_jwt_identity()
    message_service = current_app.services['messages']
    try:
        data = MessageCreateSchema().load(request.get_json())
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400

    message = message_service.post_message(conversation_id, user_id, data['content'], data['attachment_ref'])
    return jsonify(MessageResponseSchema().dump(message.to_dict())), 201


@messages_bp.route('/<string:conversation_id>/messages', methods=['GET'])
@jwt_required()
def list_messages(conversation_id: str):
    """
    [참여자 전용] 메시지 목록을 번호 오름차순으로 조회합니다.
    - after 커서 이후의 메시지를 limit 개까지 반환합니다.
    """
    user_id = get_jwt_identity()
    message_service = current_app.services['messages']
    after = request.args.get('after', 0, type=int)
    limit = request.args.get('limit', None, type=int)

    messages, next_cursor = message_service.list_messages(conversation_id, user_id, after, limit)
    return jsonify({
        "messages": MessageResponseSchema(many=True).dump([m.to_dict() for m in messages]),
        "next_cursor": next_cursor
    }), 200


@messages_bp.route('/<string:conversation_id>/read', methods=['POST'])
@jwt_required()
def mark_read(conversation_id: str):
    """[참여자 전용] up_to_sequence 까지의 메시지를 읽음 처리합니다."""
    user_id = get_jwt_identity()
    message_service = current_app.services['messages']
    try:
        data = ReadMarkSchema().load(request.get_json())
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400

    message_service.mark_read(conversation_id, user_id, data['up_to_sequence'])
    return Response(status=204)


@messages_bp.route('/<string:conversation_id>/unread-count', methods=['GET'])
@jwt_required()
def unread_count(conversation_id: str):
    """[참여자 전용] 아직 읽지 않은 메시지 수를 조회합니다."""
    user_id = get_jwt_identity()
    message_service = current_app.services['messages']
    count = message_service.unread_count(conversation_id, user_id)
    return jsonify({"conversation_id": conversation_id, "unread_count": count}), 200
