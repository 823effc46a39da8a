# adoption_app/api/messages/schemas.py
from marshmallow import Schema, fields, validate, validates_schema, ValidationError


class MessageCreateSchema(Schema):
    """
    POST /api/conversations/{conversation_id}/messages
    텍스트 또는 첨부 파일 참조 중 하나는 반드시 있어야 합니다.
    """
    content = fields.Str(load_default=None, allow_none=True,
                         validate=validate.Length(min=1, max=2000, error="메시지는 1~2000자 사이여야 합니다."))
    attachment_ref = fields.Str(load_default=None, allow_none=True, validate=validate.Length(min=1, max=500))

    @validates_schema
    def validate_body(self, data, **kwargs):
        if not data.get('content') and not data.get('attachment_ref'):
            raise ValidationError("content 또는 attachment_ref 중 하나가 필요합니다.", field_name="content")


class ReadMarkSchema(Schema):
    """POST /api/conversations/{conversation_id}/read 요청 본문."""
    up_to_sequence = fields.Int(required=True, validate=validate.Range(min=0))


class MessageResponseSchema(Schema):
    """메시지 응답 형식."""
    message_id = fields.Str(required=True)
    conversation_id = fields.Str(required=True)
    sender_id = fields.Str(required=True)
    sequence = fields.Int(required=True)
    content = fields.Str(allow_none=True)
    attachment_ref = fields.Str(allow_none=True)
    read_by = fields.List(fields.Str(), required=True)
    created_at = fields.DateTime(required=True)
