# adoption_app/api/conversations/schemas.py
from marshmallow import Schema, fields, validate


class ConversationStartSchema(Schema):
    """POST /api/conversations 요청 본문의 유효성을 검사합니다."""
    listing_id = fields.Str(required=True, validate=validate.Length(min=1))


class ParticipantAddSchema(Schema):
    """POST /api/conversations/{conversation_id}/participants 요청 본문."""
    profile_id = fields.Str(required=True, validate=validate.Length(min=1))


class ConversationCloseSchema(Schema):
    """POST /api/conversations/{conversation_id}/close 요청 본문."""
    reason = fields.Str(load_default="ARCHIVED", validate=validate.Length(min=1, max=200))


class MembershipSchema(Schema):
    """대화방 응답에 포함될 참여자 정보 스키마."""
    profile_id = fields.Str(required=True)
    joined_at = fields.DateTime(required=True)
    last_read_sequence = fields.Int(required=True)


class ConversationResponseSchema(Schema):
    """대화방 정보 응답을 위한 JSON 형식을 정의합니다."""
    conversation_id = fields.Str(required=True)
    listing_id = fields.Str(required=True)
    owner_id = fields.Str(required=True)
    requester_id = fields.Str(required=True)
    status = fields.Str(required=True)
    participants = fields.List(fields.Nested(MembershipSchema), required=True)
    participant_ids = fields.List(fields.Str(), required=True)
    last_sequence = fields.Int(required=True)
    created_at = fields.DateTime(required=True)
    updated_at = fields.DateTime(required=True)
    closed_at = fields.DateTime(allow_none=True)
    closed_reason = fields.Str(allow_none=True)
