# adoption_app/api/agreements/schemas.py
from marshmallow import Schema, fields, validate


class AgreementCreateSchema(Schema):
    """
    POST /api/agreements
    owner_id 를 생략하면 공고 소유자, adopter_id 를 생략하면 요청자로 채워집니다.
    """
    listing_id = fields.Str(required=True, validate=validate.Length(min=1))
    owner_id = fields.Str(load_default=None)
    adopter_id = fields.Str(load_default=None)
    terms = fields.Str(required=True, validate=validate.Length(min=1, max=10000, error="계약 조건은 1~10000자 사이여야 합니다."))
    conversation_id = fields.Str(load_default=None)


class SignatureSubmitSchema(Schema):
    """POST /api/agreements/{agreement_id}/signatures 요청 본문."""
    signature_payload = fields.Str(required=True, validate=validate.Length(min=1))


class AgreementVoidSchema(Schema):
    """POST /api/agreements/{agreement_id}/void 요청 본문."""
    reason = fields.Str(required=True, validate=validate.Length(min=1, max=500))


class SignatureRecordSchema(Schema):
    signer_id = fields.Str(required=True)
    signed_at = fields.DateTime(required=True)
    # 서명 원본(payload)은 응답에 포함하지 않습니다.


class AgreementResponseSchema(Schema):
    """입양 계약 응답 형식."""
    agreement_id = fields.Str(required=True)
    listing_id = fields.Str(required=True)
    owner_id = fields.Str(required=True)
    adopter_id = fields.Str(required=True)
    status = fields.Str(required=True)
    terms = fields.Str(required=True)
    owner_signature = fields.Nested(SignatureRecordSchema, allow_none=True)
    adopter_signature = fields.Nested(SignatureRecordSchema, allow_none=True)
    conversation_id = fields.Str(allow_none=True)
    finalized_at = fields.DateTime(allow_none=True)
    document_ref = fields.Str(allow_none=True)
    voided_at = fields.DateTime(allow_none=True)
    void_reason = fields.Str(allow_none=True)
    created_at = fields.DateTime(required=True)
    updated_at = fields.DateTime(required=True)
