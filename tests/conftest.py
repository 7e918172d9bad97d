"""
Shared test fixtures for the UtilitySign signing core test suite.

Provides fast timer settings, an in-memory fake of the signing API client, a
fake browser window opener, factory_boy payload factories, and a FastAPI stand-in
of the remote REST API that the real httpx client is wired to through
``httpx.ASGITransport``.
"""

import asyncio
import os
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any, Optional

import factory
import pytest
import pytest_asyncio
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from httpx import ASGITransport

# ---- Environment overrides MUST come before any utilitysign imports ----
os.environ["UTILITYSIGN_ENVIRONMENT"] = "test"
os.environ["UTILITYSIGN_REST_NONCE"] = "test-nonce"
os.environ["UTILITYSIGN_RETRY_DELAY_SECONDS"] = "0.01"
os.environ["UTILITYSIGN_RETRY_MAX_DELAY_SECONDS"] = "0.05"
os.environ["UTILITYSIGN_BANKID_POLL_INTERVAL_SECONDS"] = "0.01"
os.environ["UTILITYSIGN_BANKID_WINDOW_CHECK_INTERVAL_SECONDS"] = "0.01"
os.environ["UTILITYSIGN_BANKID_POLL_TIMEOUT_SECONDS"] = "2"
os.environ["UTILITYSIGN_STATUS_REFRESH_INTERVAL_SECONDS"] = "0.01"

from utilitysign.bankid.launcher import WindowOpener  # noqa: E402
from utilitysign.client.base import SigningRequestClient  # noqa: E402
from utilitysign.client.exceptions import APIError  # noqa: E402
from utilitysign.client.schemas import (  # noqa: E402
    BankIDSession,
    BankIDStatusResult,
    SigningRequest,
    SigningRequestStatus,
)
from utilitysign.client.service import UtilitySignClient  # noqa: E402
from utilitysign.documents.schemas import Document  # noqa: E402

API_PREFIX = "/wp-json/utilitysign/v1"
API_BASE_URL = f"http://test{API_PREFIX}"

SPORTS_TEAM_PRODUCT_ID = "36757e7a-3289-4922-92d7-ffccefb261a0"
BUSINESS_PRODUCT_ID = "bef7a77c-8770-4c1f-9906-714a4b762d26"


async def wait_until(predicate, timeout: float = 1.0, interval: float = 0.005) -> None:
    """Let the event loop run until ``predicate()`` holds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(interval)


# ---------------------------------------------------------------------------
# Factory Boy factories
# ---------------------------------------------------------------------------
class SigningFormFactory(factory.Factory):
    """A valid signing form submission, keyed by form field name."""

    class Meta:
        model = dict

    firstName = factory.Faker("first_name")
    lastName = factory.Faker("last_name")
    signerEmail = factory.LazyFunction(lambda: f"signer-{uuid.uuid4().hex[:8]}@example.com")
    phone = "12345678"
    address = factory.Faker("street_address")
    city = factory.Faker("city")
    zip = "3015"
    useSameAddressForBilling = True
    meterNumber = ""
    serialNumber = ""


class SigningRequestFactory(factory.Factory):
    """Signing request payload as the remote API returns it."""

    class Meta:
        model = dict

    id = factory.LazyFunction(lambda: f"req-{uuid.uuid4().hex[:8]}")
    documentId = "doc-1"
    signerEmail = "jo@example.com"
    signerName = "Jo Doe"
    status = "pending"
    createdAt = factory.LazyFunction(lambda: datetime.now(UTC).isoformat())
    expiresAt = factory.LazyFunction(lambda: (datetime.now(UTC) + timedelta(hours=1)).isoformat())


def make_signing_request(**overrides: Any) -> SigningRequest:
    return SigningRequest.model_validate(SigningRequestFactory(**overrides))


# ---------------------------------------------------------------------------
# Fake browser
# ---------------------------------------------------------------------------
class FakeWindow:
    def __init__(self, url: str, name: str, features: str) -> None:
        self.url = url
        self.name = name
        self.features = features
        self.closed = False


class FakeWindowOpener(WindowOpener):
    def __init__(self, *, block_popups: bool = False, confirm_answer: bool = True) -> None:
        self.block_popups = block_popups
        self.confirm_answer = confirm_answer
        self.windows: list[FakeWindow] = []
        self.prompts: list[str] = []
        self.redirects: list[str] = []
        self.close_calls = 0

    def open(self, url: str, name: str, features: str) -> Optional[FakeWindow]:
        if self.block_popups:
            return None
        window = FakeWindow(url, name, features)
        self.windows.append(window)
        return window

    def is_closed(self, handle: FakeWindow) -> bool:
        return handle.closed

    def close(self, handle: FakeWindow) -> None:
        self.close_calls += 1
        handle.closed = True

    def confirm(self, message: str) -> bool:
        self.prompts.append(message)
        return self.confirm_answer

    def redirect(self, url: str) -> None:
        self.redirects.append(url)


# ---------------------------------------------------------------------------
# Fake signing API client
# ---------------------------------------------------------------------------
class FakeSigningClient(SigningRequestClient):
    """In-memory client. BankID status reads are served from ``statuses`` in order.

    Items in ``statuses`` may be a status string, a ``BankIDStatusResult`` or an
    exception to raise. When the queue is empty every read reports ``pending``.
    """

    def __init__(self) -> None:
        self.statuses: list[Any] = []
        self.signing_url: Optional[str] = None
        self.auth_url: Optional[str] = "https://bankid.example/auth"
        self.create_error: Optional[APIError] = None
        self.initiate_error: Optional[APIError] = None
        self.cancel_error: Optional[Exception] = None
        self.completion_error: Optional[Exception] = None
        self.signing_status_sequence: list[Any] = []
        self.documents: dict[str, Document] = {}
        self.products: dict[str, dict] = {}

        self.created: list[dict[str, Any]] = []
        self.initiated: list[str] = []
        self.status_checks: list[str] = []
        self.cancelled: list[str] = []
        self.completions: list[str] = []
        self.last_request: Optional[SigningRequest] = None

    async def create_signing_request(self, document_id, signer_email, signer_name, idempotency_key, extra_fields=None):
        self.created.append(
            {
                "document_id": document_id,
                "signer_email": signer_email,
                "signer_name": signer_name,
                "idempotency_key": idempotency_key,
                "extra_fields": extra_fields or {},
            }
        )
        if self.create_error is not None:
            raise self.create_error
        payload = SigningRequestFactory(
            documentId=document_id or "doc-new", signerEmail=signer_email, signerName=signer_name
        )
        if self.signing_url:
            payload["signingUrl"] = self.signing_url
        self.last_request = SigningRequest.model_validate(payload)
        return self.last_request

    async def initiate_bankid(self, request_id):
        self.initiated.append(request_id)
        if self.initiate_error is not None:
            raise self.initiate_error
        return BankIDSession(auth_url=self.auth_url, session_id=f"sess-{len(self.initiated)}", correlation_id="corr-1")

    async def check_bankid_status(self, session_id):
        self.status_checks.append(session_id)
        if not self.statuses:
            return BankIDStatusResult(status="pending")
        item = self.statuses.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, BankIDStatusResult):
            return item
        return BankIDStatusResult(status=item)

    async def cancel_bankid_session(self, session_id):
        self.cancelled.append(session_id)
        if self.cancel_error is not None:
            raise self.cancel_error
        return True

    async def trigger_signing_completion(self, request_id):
        self.completions.append(request_id)
        if self.completion_error is not None:
            raise self.completion_error
        return True

    async def get_signing_status(self, request_id):
        if self.signing_status_sequence:
            item = self.signing_status_sequence.pop(0)
            if isinstance(item, BaseException):
                raise item
            return make_signing_request(id=request_id, status=item)
        return make_signing_request(id=request_id, status=SigningRequestStatus.pending.value)

    async def get_document(self, document_id):
        if document_id not in self.documents:
            raise APIError("Not found", status_code=404, user_message="Den forespurte ressursen ble ikke funnet.")
        return self.documents[document_id]

    async def get_product(self, product_id):
        if product_id not in self.products:
            raise APIError("Not found", status_code=404)
        return self.products[product_id]


@pytest.fixture
def fake_client() -> FakeSigningClient:
    return FakeSigningClient()


@pytest.fixture
def opener() -> FakeWindowOpener:
    return FakeWindowOpener()


@pytest.fixture
def blocked_opener() -> FakeWindowOpener:
    return FakeWindowOpener(block_popups=True, confirm_answer=False)


@pytest.fixture
def signing_request() -> SigningRequest:
    return make_signing_request()


# ---------------------------------------------------------------------------
# FastAPI stand-in for the remote REST API
# ---------------------------------------------------------------------------
class FakeAPIState:
    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.failures: list[tuple[int, Any]] = []
        self.bankid_statuses: list[str] = []
        self.signing_url: Optional[str] = None
        self.resources: dict[str, dict[str, Any]] = {}
        self.products: dict[str, Any] = {}

    def calls_to(self, method: str, path: str) -> list[dict[str, Any]]:
        return [c for c in self.calls if c["method"] == method and c["path"] == API_PREFIX + path]


def build_fake_api(state: FakeAPIState) -> FastAPI:
    router = APIRouter(prefix=API_PREFIX)

    async def record(request: Request) -> Optional[JSONResponse]:
        body = await request.body()
        state.calls.append(
            {
                "method": request.method,
                "path": request.url.path,
                "headers": dict(request.headers),
                "json": await request.json() if body else None,
            }
        )
        if state.failures:
            status_code, payload = state.failures.pop(0)
            return JSONResponse(payload, status_code=status_code)
        return None

    @router.post("/signing")
    async def create_signing(request: Request):
        if (failure := await record(request)) is not None:
            return failure
        body = await request.json()
        data = SigningRequestFactory(
            id="req-1",
            documentId=body.get("documentId"),
            signerEmail=body["signerEmail"],
            signerName=body["signerName"],
        )
        if state.signing_url:
            data["SigningUrl"] = state.signing_url
        return {"success": True, "data": data}

    @router.post("/signing/bankid/initiate")
    async def initiate_bankid(request: Request):
        if (failure := await record(request)) is not None:
            return failure
        return {
            "success": True,
            "data": {"auth_url": "https://bankid.example/auth", "session_id": "sess-1", "correlation_id": "corr-1"},
        }

    @router.get("/signing/bankid/status/{session_id}")
    async def bankid_status(session_id: str, request: Request):
        if (failure := await record(request)) is not None:
            return failure
        status = state.bankid_statuses.pop(0) if state.bankid_statuses else "pending"
        return {"success": True, "data": {"status": status, "user_info": {"name": "Jo Doe"}}}

    @router.post("/signing/bankid/cancel")
    async def cancel_bankid(request: Request):
        if (failure := await record(request)) is not None:
            return failure
        return {"success": True}

    @router.post("/signing/{request_id}/complete")
    async def complete_signing(request_id: str, request: Request):
        if (failure := await record(request)) is not None:
            return failure
        return {"success": True, "data": {"triggered": True}}

    @router.get("/signing/{request_id}")
    async def get_signing(request_id: str, request: Request):
        if (failure := await record(request)) is not None:
            return failure
        if request_id not in state.resources:
            return JSONResponse({"message": "Not found"}, status_code=404)
        return {"success": True, "data": state.resources[request_id]}

    @router.get("/products/{product_id}")
    async def get_product(product_id: str, request: Request):
        if (failure := await record(request)) is not None:
            return failure
        if product_id not in state.products:
            return JSONResponse({"message": "Product not found"}, status_code=404)
        return state.products[product_id]

    app = FastAPI()
    app.include_router(router)
    return app


@pytest.fixture
def api_state() -> FakeAPIState:
    return FakeAPIState()


@pytest_asyncio.fixture
async def api_client(api_state: FakeAPIState) -> UtilitySignClient:
    """Real httpx client wired to the FastAPI stand-in."""
    transport = ASGITransport(app=build_fake_api(api_state))
    async with UtilitySignClient(
        API_BASE_URL,
        nonce="test-nonce",
        retry_attempts=3,
        retry_delay_seconds=0.001,
        retry_max_delay_seconds=0.005,
        transport=transport,
    ) as client:
        yield client
