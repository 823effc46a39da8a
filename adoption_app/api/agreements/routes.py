# adoption_app/api/agreements/routes.py
import logging
from flask import Blueprint, request, jsonify, Response, current_app
from flask_jwt_extended import jwt_required, get_jwt_identity
from marshmallow import ValidationError

from adoption_app.core.errors import ForbiddenError
from .schemas import (
    AgreementCreateSchema,
    SignatureSubmitSchema,
    AgreementVoidSchema,
    AgreementResponseSchema
)

agreements_bp = Blueprint('agreements_bp', __name__)


@agreements_bp.route('/', methods=['POST'])
@jwt_required()
def create_agreement():
    """
    입양 계약을 생성합니다. 보호자와 입양자 중 누구나 시작할 수 있습니다.
    - 공고에 진행 중이거나 확정된 계약이 있으면 409 를 반환합니다.
    """
    user_id = get_jwt_identity()
    agreement_service = current_app.services['agreements']
    listing_service = current_app.services['listings']
    try:
        data = AgreementCreateSchema().load(request.get_json())
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400

    listing = listing_service.get_listing(data['listing_id'])
    owner_id = data['owner_id'] or listing.owner_id
    adopter_id = data['adopter_id'] or user_id
    if user_id not in (owner_id, adopter_id):
        raise ForbiddenError("계약 당사자만 입양 계약을 생성할 수 있습니다.", listing_id=listing.listing_id)

    try:
        agreement = agreement_service.create_agreement(
            data['listing_id'], owner_id, adopter_id, data['terms'], data['conversation_id']
        )
    except ValueError as e:
        return jsonify({"error_code": "INVALID_REQUEST", "message": str(e)}), 400
    return jsonify(AgreementResponseSchema().dump(agreement.to_dict())), 201


@agreements_bp.route('/<string:agreement_id>', methods=['GET'])
@jwt_required()
def get_agreement(agreement_id: str):
    """[당사자 전용] 입양 계약을 조회합니다."""
    user_id = get_jwt_identity()
    agreement_service = current_app.services['agreements']
    agreement = agreement_service.get_agreement(agreement_id, user_id)
    return jsonify(AgreementResponseSchema().dump(agreement.to_dict())), 200


@agreements_bp.route('/<string:agreement_id>/signatures', methods=['POST'])
@jwt_required()
def submit_signature(agreement_id: str):
    """
    [당사자 전용] 계약에 서명합니다.
    - 두 당사자의 서명이 모두 기록되면 계약이 확정(FINALIZED)되고 공고는 입양 완료 처리됩니다.
    """
    user_id = get_jwt_identity()
    agreement_service = current_app.services['agreements']
    try:
        data = SignatureSubmitSchema().load(request.get_json())
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400

    agreement = agreement_service.submit_signature(agreement_id, user_id, data['signature_payload'])
    return jsonify(AgreementResponseSchema().dump(agreement.to_dict())), 200


@agreements_bp.route('/<string:agreement_id>/void', methods=['POST'])
@jwt_required()
def void_agreement(agreement_id: str):
    """[당사자 전용] 확정되지 않은 계약을 무효화합니다."""
    user_id = get_jwt_identity()
    agreement_service = current_app.services['agreements']
    try:
        data = AgreementVoidSchema().load(request.get_json())
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400

    agreement_service.void_agreement(agreement_id, data['reason'], actor_id=user_id)
    return Response(status=204)


@agreements_bp.route('/<string:agreement_id>/document', methods=['POST'])
@jwt_required()
def retry_document(agreement_id: str):
    """[당사자 전용] 확정된 계약의 계약서 생성을 다시 시도합니다."""
    user_id = get_jwt_identity()
    agreement_service = current_app.services['agreements']
    document_ref = agreement_service.retry_document(agreement_id, user_id)
    if document_ref is None:
        logging.warning(f"계약서 생성 재시도 실패: {agreement_id}")
        return jsonify({"error_code": "DOCUMENT_GENERATION_FAILED", "message": "계약서 생성에 실패했습니다. 잠시 후 다시 시도해주세요."}), 502
    return jsonify({"agreement_id": agreement_id, "document_ref": document_ref}), 200
