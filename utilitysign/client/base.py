from abc import ABC, abstractmethod
from typing import Any, Optional

from utilitysign.client.schemas import BankIDSession, BankIDStatusResult, SigningRequest
from utilitysign.documents.schemas import Document


class SigningRequestClient(ABC):
    """Operations the signing flow needs from the remote signing/order API.

    ``check_bankid_status``, ``cancel_bankid_session`` and
    ``trigger_signing_completion`` must not raise.
    """

    @abstractmethod
    async def create_signing_request(
        self,
        document_id: str,
        signer_email: str,
        signer_name: str,
        idempotency_key: str,
        extra_fields: Optional[dict[str, Any]] = None,
    ) -> SigningRequest:
        ...

    @abstractmethod
    async def initiate_bankid(self, request_id: str) -> BankIDSession:
        ...

    @abstractmethod
    async def check_bankid_status(self, session_id: str) -> BankIDStatusResult:
        ...

    @abstractmethod
    async def cancel_bankid_session(self, session_id: str) -> bool:
        ...

    @abstractmethod
    async def trigger_signing_completion(self, request_id: str) -> bool:
        ...

    @abstractmethod
    async def get_signing_status(self, request_id: str) -> SigningRequest:
        ...

    @abstractmethod
    async def get_document(self, document_id: str) -> Document:
        ...

    @abstractmethod
    async def get_product(self, product_id: str) -> dict:
        ...
