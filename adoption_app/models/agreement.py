# adoption_app/models/agreement.py
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any

from adoption_app.utils.datetime_utils import DateTimeUtils


class AgreementStatus(Enum):
    """
    입양 계약 상태.
    DRAFT -> PARTIALLY_SIGNED -> FINALIZED, DRAFT/PARTIALLY_SIGNED -> VOID
    FINALIZED 와 VOID 는 종료 상태입니다.
    """
    DRAFT = "DRAFT"
    PARTIALLY_SIGNED = "PARTIALLY_SIGNED"
    FINALIZED = "FINALIZED"
    VOID = "VOID"

    @property
    def is_terminal(self) -> bool:
        return self in (AgreementStatus.FINALIZED, AgreementStatus.VOID)


class SignerRole(Enum):
    OWNER = "OWNER"
    ADOPTER = "ADOPTER"


@dataclass
class SignatureRecord:
    """
    서명 기록. payload 는 불투명한 값(서명 이미지 참조, 암호 서명 등)이며
    코어는 존재 여부와 서명자 일치만 검증합니다.
    """
    signer_id: str
    payload: str
    signed_at: datetime = field(default_factory=DateTimeUtils.now)


@dataclass
class Agreement:
    """
    Firestore 'agreements' 컬렉션의 문서 구조 (입양 계약서).
    FINALIZED 이후에는 terms 와 두 서명 기록이 변경되지 않습니다.
    """
    agreement_id: str
    listing_id: str
    owner_id: str
    adopter_id: str
    terms: str
    status: AgreementStatus = AgreementStatus.DRAFT
    owner_signature: Optional[SignatureRecord] = None
    adopter_signature: Optional[SignatureRecord] = None
    conversation_id: Optional[str] = None  # 계약이 시작된 대화방 (권장 출처 링크)
    finalized_at: Optional[datetime] = None
    document_ref: Optional[str] = None
    voided_at: Optional[datetime] = None
    void_reason: Optional[str] = None
    created_at: datetime = field(default_factory=DateTimeUtils.now)
    updated_at: datetime = field(default_factory=DateTimeUtils.now)

    def role_of(self, profile_id: str) -> Optional[SignerRole]:
        if profile_id == self.owner_id:
            return SignerRole.OWNER
        if profile_id == self.adopter_id:
            return SignerRole.ADOPTER
        return None

    def signature_for(self, role: SignerRole) -> Optional[SignatureRecord]:
        if role is SignerRole.OWNER:
            return self.owner_signature
        return self.adopter_signature

    @property
    def is_fully_signed(self) -> bool:
        return self.owner_signature is not None and self.adopter_signature is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Agreement":
        processed_data = DateTimeUtils.from_firestore(data.copy())
        processed_data['status'] = AgreementStatus(processed_data['status'])
        for key in ('owner_signature', 'adopter_signature'):
            if processed_data.get(key):
                processed_data[key] = SignatureRecord(**processed_data[key])
        return cls(**processed_data)

    def to_dict(self) -> Dict[str, Any]:
        agreement_dict = asdict(self)
        agreement_dict['status'] = self.status.value
        return agreement_dict

    def to_document(self) -> Dict[str, Any]:
        return DateTimeUtils.for_firestore(self.to_dict())
