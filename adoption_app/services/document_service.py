# adoption_app/services/document_service.py
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Optional

from flask import Flask
from firebase_admin import storage

from adoption_app.core.errors import InvalidStateError, NotFoundError
from adoption_app.models.agreement import Agreement, AgreementStatus
from adoption_app.models.profile import Profile
from adoption_app.services import collections
from adoption_app.services.store.base import EntityStore
from adoption_app.utils.datetime_utils import DateTimeUtils

logger = logging.getLogger(__name__)


def render_agreement_text(agreement: Agreement, owner: Profile, adopter: Profile) -> str:
    """확정된 계약의 조건과 두 서명 기록으로 계약서 본문을 만듭니다."""
    lines = [
        "입양 계약서 (Adoption Agreement)",
        f"계약 ID: {agreement.agreement_id}",
        f"공고 ID: {agreement.listing_id}",
        f"보호자(소유자): {owner.display_name} ({agreement.owner_id})",
        f"입양자: {adopter.display_name} ({agreement.adopter_id})",
        "",
        "[계약 조건]",
        agreement.terms,
        "",
        "[서명]",
    ]
    for label, signature in (("보호자", agreement.owner_signature), ("입양자", agreement.adopter_signature)):
        lines.append(f"{label}: {signature.signer_id} / {DateTimeUtils.to_iso_string(signature.signed_at)} / {signature.payload}")
    lines.append("")
    lines.append(f"확정 일시: {DateTimeUtils.to_iso_string(agreement.finalized_at)}")
    return "\n".join(lines)


class DocumentRenderer(ABC):
    """외부 문서 렌더링 서비스 인터페이스. 생성된 문서의 참조(경로)를 반환합니다."""

    @abstractmethod
    def render(self, agreement: Agreement, owner: Profile, adopter: Profile) -> str:
        pass


class StorageDocumentRenderer(DocumentRenderer):
    """
    계약서를 텍스트 문서로 렌더링하여 Firebase Storage 에 업로드합니다.
    실제 버킷 객체는 init_app 메서드를 통해 주입됩니다.
    """

    def __init__(self):
        self.bucket = None

    def init_app(self, app: Flask):
        bucket_name = app.config.get('FIREBASE_STORAGE_BUCKET')
        if not bucket_name:
            raise ValueError("FIREBASE_STORAGE_BUCKET 설정이 .env 또는 설정 파일에 필요합니다.")
        self.bucket = storage.bucket(bucket_name)
        logger.info("StorageDocumentRenderer: Firebase Storage 버킷이 초기화되었습니다.")

    def render(self, agreement: Agreement, owner: Profile, adopter: Profile) -> str:
        if not self.bucket:
            raise RuntimeError("StorageDocumentRenderer가 초기화되지 않았습니다. init_app을 먼저 호출해주세요.")
        blob = self.bucket.blob(f"agreements/{agreement.agreement_id}.txt")
        blob.upload_from_string(render_agreement_text(agreement, owner, adopter), content_type="text/plain; charset=utf-8")
        return blob.name


class DocumentService:
    """
    계약 확정 이후 계약서 문서 생성을 요청하고 결과 참조를 계약에 기록합니다.
    생성 실패는 계약 확정을 되돌리지 않으며, retry 로 독립적으로 다시 시도할 수 있습니다.
    """

    def __init__(self, store: EntityStore, renderer: Optional[DocumentRenderer],
                 attempts: int = 3, backoff_seconds: float = 1.0, run_async: bool = True):
        self.store = store
        self.renderer = renderer
        self.attempts = max(1, attempts)
        self.backoff_seconds = backoff_seconds
        self.run_async = run_async

    def request_generation(self, agreement_id: str) -> None:
        """문서 생성을 요청합니다. 비동기 모드에서는 백그라운드 Thread 에서 처리됩니다."""
        if not self.run_async:
            self.generate(agreement_id)
            return

        thread = threading.Thread(target=self._generate_in_background, args=[agreement_id])
        thread.daemon = True  # 메인 프로세스 종료 시 함께 종료
        thread.start()

    def _generate_in_background(self, agreement_id: str) -> None:
        try:
            self.generate(agreement_id)
        except Exception as e:
            logger.error(f"백그라운드 계약서 생성 중 오류: {agreement_id} - {e}", exc_info=True)

    def generate(self, agreement_id: str) -> Optional[str]:
        """
        계약서를 렌더링하고 document_ref 를 기록합니다.
        이미 문서가 있으면 기존 참조를 반환하고, 재시도를 모두 실패하면 None 을 반환합니다.
        """
        data = self.store.get(collections.AGREEMENTS, agreement_id)
        if data is None:
            raise NotFoundError("계약을 찾을 수 없습니다.", agreement_id=agreement_id)
        agreement = Agreement.from_dict(data)
        if agreement.status is not AgreementStatus.FINALIZED:
            raise InvalidStateError("확정된 계약만 계약서를 생성할 수 있습니다.", agreement_id=agreement_id)
        if agreement.document_ref:
            return agreement.document_ref
        if self.renderer is None:
            logger.warning(f"문서 렌더러가 설정되지 않아 계약서 생성을 건너뜁니다: {agreement_id}")
            return None

        owner = self._load_profile(agreement.owner_id)
        adopter = self._load_profile(agreement.adopter_id)

        for attempt in range(1, self.attempts + 1):
            try:
                document_ref = self.renderer.render(agreement, owner, adopter)
                break
            except Exception as e:
                logger.warning(f"계약서 렌더링 실패 ({attempt}/{self.attempts}): {agreement_id} - {e}")
                if attempt < self.attempts:
                    time.sleep(self.backoff_seconds * (2 ** (attempt - 1)))
        else:
            logger.error(f"계약서 렌더링 재시도 한도 초과: {agreement_id}")
            return None

        return self.attach_document(agreement_id, document_ref)

    def _load_profile(self, profile_id: str) -> Profile:
        data = self.store.get(collections.PROFILES, profile_id)
        if data is None:
            logger.warning(f"프로필을 찾을 수 없어 ID로 대신 표기합니다: {profile_id}")
            return Profile(profile_id=profile_id, display_name=profile_id)
        return Profile.from_dict(data)

    def attach_document(self, agreement_id: str, document_ref: str) -> str:
        """document_ref 를 한 번만 기록합니다. 이미 기록되어 있으면 기존 값을 유지합니다."""

        def _attach_in_transaction(tx):
            current = tx.get(collections.AGREEMENTS, agreement_id)
            if current is None:
                raise NotFoundError("계약을 찾을 수 없습니다.", agreement_id=agreement_id)
            if current.get('document_ref'):
                return current['document_ref']
            tx.update(collections.AGREEMENTS, agreement_id, {
                'document_ref': document_ref,
                'updated_at': DateTimeUtils.now(),
            })
            return document_ref

        stored_ref = self.store.run_in_transaction(_attach_in_transaction)
        logger.info(f"계약서 문서 기록 완료: {agreement_id} -> {stored_ref}")
        return stored_ref
