# adoption_app/api/events/schemas.py
from marshmallow import Schema, fields


class RealtimeEventResponseSchema(Schema):
    """실시간 이벤트 응답 형식."""
    event_id = fields.Str(required=True)
    type = fields.Str(required=True)
    target_id = fields.Str(required=True)
    payload = fields.Dict(keys=fields.Str())
    created_at = fields.DateTime(required=True)
    # recipient_ids 는 응답에 포함하지 않습니다.
