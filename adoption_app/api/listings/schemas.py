# adoption_app/api/listings/schemas.py
from marshmallow import Schema, fields


class ListingResponseSchema(Schema):
    listing_id = fields.Str(required=True)
    owner_id = fields.Str(required=True)
    status = fields.Str(required=True)
    pet_id = fields.Str(allow_none=True)
    title = fields.Str(allow_none=True)
    withdrawn_at = fields.DateTime(allow_none=True)


class WithdrawResponseSchema(Schema):
    """공고 철회 결과 응답 형식."""
    listing = fields.Nested(ListingResponseSchema, required=True)
    closed_conversation_ids = fields.List(fields.Str(), required=True)
    voided_agreement_ids = fields.List(fields.Str(), required=True)
