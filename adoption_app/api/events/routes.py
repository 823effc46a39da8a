# adoption_app/api/events/routes.py
from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required, get_jwt_identity

from .schemas import RealtimeEventResponseSchema

events_bp = Blueprint('events_bp', __name__)


@events_bp.route('/', methods=['GET'])
@jwt_required()
def list_events():
    """
    나에게 발행된 실시간 이벤트를 최신순으로 조회합니다.
    실시간 수신은 클라이언트가 'realtime_events' 컬렉션을 직접 구독하며, 이 API 는 놓친 이벤트 보충용입니다.
    """
    user_id = get_jwt_identity()
    event_publisher = current_app.services['events']
    limit = max(1, min(request.args.get('limit', 50, type=int), 100))
    events = event_publisher.list_events(user_id, limit)
    return jsonify({"events": RealtimeEventResponseSchema(many=True).dump(events)}), 200
