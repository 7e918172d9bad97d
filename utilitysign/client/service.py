import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from utilitysign.client.base import SigningRequestClient
from utilitysign.client.exceptions import APIError
from utilitysign.client.schemas import BankIDSession, BankIDStatusResult, SigningRequest
from utilitysign.common.identifiers import generate_correlation_id
from utilitysign.config import settings
from utilitysign.documents.schemas import Document
from utilitysign.validation.service import EMAIL_PATTERN

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONFIGURATION_ERROR_CODES = {"CRIIPTO_NOT_CONFIGURED", "CRIIPTO_SUPPLIER_NOT_CONFIGURED", "MISSING_PLUGIN_KEY"}
NONCE_ERROR_CODES = {"rest_cookie_invalid_nonce", "invalid_nonce"}
TRANSIENT_ERROR_KEYWORDS = (
    "timeout",
    "network error",
    "connection refused",
    "temporary failure",
    "service unavailable",
    "bad gateway",
    "gateway timeout",
)

MISSING_NONCE_MESSAGE = "WordPress REST API nonce is missing. Please refresh the page to get a new security token."
NONCE_FAILURE_MESSAGE = "Sikkerhetskontroll mislyktes. Vennligst oppdater siden og prøv igjen."
AUTH_FAILURE_MESSAGE = "Autentisering mislyktes. Vennligst oppdater siden og prøv igjen."
MAX_TITLE_LENGTH = 200


# ── Error helpers ───────────────────────────────────────────────────────────────


def is_retryable_status(status_code: int) -> bool:
    if status_code == 400:
        return False
    return status_code >= 500 or status_code in (408, 429)


def _mentions_nonce(message: Optional[str]) -> bool:
    lowered = (message or "").lower()
    return "nonce" in lowered or "security check" in lowered or "oppdater siden" in lowered


def user_friendly_message(status_code: int, original: Optional[str] = None) -> str:
    if status_code == 400:
        return original or "Ugyldig forespørsel. Kontroller opplysningene og prøv igjen."
    if status_code == 401:
        return original if _mentions_nonce(original) else AUTH_FAILURE_MESSAGE
    if status_code == 403:
        if _mentions_nonce(original):
            return original
        return "Tilgang nektet. Du har ikke tillatelse til å utføre denne handlingen."
    if status_code == 404:
        return "Den forespurte ressursen ble ikke funnet."
    if status_code == 429:
        return "For mange forespørsler. Vennligst vent et øyeblikk og prøv igjen."
    if status_code == 500:
        return "Serverfeil. Vennligst prøv igjen senere."
    if status_code == 503:
        return "Tjenesten er midlertidig utilgjengelig. Vennligst prøv igjen senere."
    return original or "En uventet feil oppstod. Vennligst prøv igjen."


def _flatten_errors(errors: Any) -> list[str]:
    if not errors:
        return []
    if isinstance(errors, dict):
        flattened = []
        for messages in errors.values():
            if isinstance(messages, (list, tuple)):
                flattened.extend(str(m) for m in messages)
            else:
                flattened.append(str(messages))
        return flattened
    if isinstance(errors, (list, tuple)):
        return [str(e) for e in errors]
    return [str(errors)]


def _is_transient(message: str) -> bool:
    lowered = message.lower()
    return any(keyword in lowered for keyword in TRANSIENT_ERROR_KEYWORDS)


# ── Client ──────────────────────────────────────────────────────────────────────


class UtilitySignClient(SigningRequestClient):
    """HTTP client for the UtilitySign signing endpoints exposed through WordPress."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        nonce: Optional[str] = None,
        client_id: Optional[str] = None,
        environment: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        retry_delay_seconds: Optional[float] = None,
        retry_max_delay_seconds: Optional[float] = None,
        cache_ttl_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = (base_url or settings.api_base_url or "").rstrip("/")
        if not self._base_url:
            raise ValueError("API base URL is required")
        self._client_id = client_id or settings.client_id
        if not self._client_id:
            raise ValueError("Client identifier is required")
        self._nonce = settings.rest_nonce if nonce is None else nonce
        self._environment = environment or settings.environment
        self._retry_attempts = settings.retry_attempts if retry_attempts is None else retry_attempts
        self._retry_delay = settings.retry_delay_seconds if retry_delay_seconds is None else retry_delay_seconds
        self._retry_max_delay = (
            settings.retry_max_delay_seconds if retry_max_delay_seconds is None else retry_max_delay_seconds
        )
        self._cache_ttl = settings.document_cache_ttl_seconds if cache_ttl_seconds is None else cache_ttl_seconds
        self._document_cache: dict[str, tuple[float, Document]] = {}
        self._http = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout_seconds or settings.request_timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "UtilitySignClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ── Transport ───────────────────────────────────────────────────────────────

    def _headers(self, correlation_id: str, idempotency_key: Optional[str] = None) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "X-Correlation-ID": correlation_id,
            "x-client-id": self._client_id,
            "x-environment": self._environment,
            "x-request-source": "wordpress-plugin",
        }
        if self._nonce:
            headers["X-WP-Nonce"] = self._nonce
        if idempotency_key:
            headers["x-idempotency-key"] = idempotency_key
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> Any:
        correlation_id = generate_correlation_id()
        if method != "GET" and not self._nonce:
            raise APIError(
                MISSING_NONCE_MESSAGE,
                correlation_id=correlation_id,
                user_message=NONCE_FAILURE_MESSAGE,
            )

        logger.debug("%s %s (correlation %s)", method, path, correlation_id)
        try:
            response = await self._http.request(
                method, path, json=json, headers=self._headers(correlation_id, idempotency_key)
            )
        except httpx.TimeoutException as exc:
            raise APIError(f"Request timeout: {exc}", correlation_id=correlation_id, retryable=True) from exc
        except httpx.RequestError as exc:
            raise APIError(f"Network error: {exc}", correlation_id=correlation_id, retryable=True) from exc

        if response.status_code >= 400:
            raise self._error_from_response(response, correlation_id)

        try:
            payload = response.json()
        except ValueError as exc:
            raise APIError(
                "Invalid JSON in response",
                status_code=response.status_code,
                correlation_id=correlation_id,
            ) from exc
        return self._unwrap(payload, correlation_id)

    def _error_from_response(self, response: httpx.Response, correlation_id: str) -> APIError:
        status_code = response.status_code
        try:
            data = response.json()
        except ValueError:
            data = {"message": response.text[:200]}
        if not isinstance(data, dict):
            data = {"message": str(data)}

        message = data.get("message") or data.get("error") or f"HTTP error! status: {status_code}"
        backend = data.get("backend_response") if isinstance(data.get("backend_response"), dict) else {}
        error_code = data.get("errorCode") or backend.get("errorCode")
        is_configuration_error = error_code in CONFIGURATION_ERROR_CODES

        if status_code in (401, 403) and (data.get("code") in NONCE_ERROR_CODES or _mentions_nonce(message)):
            message = NONCE_FAILURE_MESSAGE

        logger.warning("API request failed with %s (correlation %s): %s", status_code, correlation_id, message)
        return APIError(
            str(message),
            status_code=status_code,
            correlation_id=correlation_id,
            retryable=not is_configuration_error and is_retryable_status(status_code),
            user_message=user_friendly_message(status_code, str(message)),
            validation_errors=_flatten_errors(data.get("errors")),
            details=data,
        )

    @staticmethod
    def _unwrap(payload: Any, correlation_id: str) -> Any:
        if not isinstance(payload, dict) or "success" not in payload:
            return payload
        if payload["success"] is False:
            message = str(payload.get("message") or payload.get("error") or "Request failed")
            raise APIError(
                message,
                correlation_id=correlation_id,
                retryable=_is_transient(message),
                user_message=message,
                validation_errors=_flatten_errors(payload.get("errors")),
                details=payload,
            )
        return payload.get("data", payload)

    def _retry_delay_for(self, attempt: int) -> float:
        base = self._retry_delay * (2 ** (attempt - 1))
        jitter = random.uniform(0, 0.1 * base)
        return min(base + jitter, self._retry_max_delay)

    async def _with_retry(self, call: Callable[[], Awaitable[T]]) -> T:
        attempt = 1
        while True:
            try:
                return await call()
            except APIError as exc:
                if not exc.retryable or attempt >= self._retry_attempts:
                    raise
                delay = self._retry_delay_for(attempt)
                logger.info(
                    "Retrying request (attempt %d/%d) in %.2fs: %s",
                    attempt + 1,
                    self._retry_attempts,
                    delay,
                    exc.message,
                )
                await asyncio.sleep(delay)
                attempt += 1

    # ── Signing requests ────────────────────────────────────────────────────────

    async def create_signing_request(
        self,
        document_id: str,
        signer_email: str,
        signer_name: str,
        idempotency_key: str,
        extra_fields: Optional[dict[str, Any]] = None,
    ) -> SigningRequest:
        signer_name = (signer_name or "").strip()
        signer_email = (signer_email or "").strip()
        if len(signer_name) < 2:
            message = "Signer name is required and must be at least 2 characters"
            raise APIError(message, user_message=message, validation_errors=[message])
        if not signer_email:
            message = "Signer email is required"
            raise APIError(message, user_message=message, validation_errors=[message])
        if not EMAIL_PATTERN.match(signer_email):
            message = "Please enter a valid email address"
            raise APIError(message, user_message=message, validation_errors=[message])

        title = f"Signing Request for {signer_name}"
        if len(title) > MAX_TITLE_LENGTH:
            title = title[: MAX_TITLE_LENGTH - 3] + "..."

        body: dict[str, Any] = {
            "documentId": document_id or None,
            "title": title,
            "description": "Document signing request initiated from WordPress plugin",
            "signerEmail": signer_email,
            "signerName": signer_name,
            "correlationId": generate_correlation_id("signing"),
            "environment": self._environment,
            "idempotencyKey": idempotency_key,
        }
        for key, value in (extra_fields or {}).items():
            if isinstance(value, bool):
                body[key] = value
            elif isinstance(value, str):
                if value.strip():
                    body[key] = value.strip()
            elif value is not None:
                body[key] = value

        data = await self._with_retry(
            lambda: self._request("POST", "/signing", json=body, idempotency_key=idempotency_key)
        )
        try:
            return SigningRequest.model_validate(data)
        except ValidationError as exc:
            raise APIError(f"Unexpected signing request payload: {exc.error_count()} error(s)") from exc

    async def get_signing_status(self, request_id: str) -> SigningRequest:
        data = await self._with_retry(lambda: self._request("GET", f"/signing/{quote(request_id, safe='')}"))
        try:
            return SigningRequest.model_validate(data)
        except ValidationError as exc:
            raise APIError(f"Unexpected signing status payload: {exc.error_count()} error(s)") from exc

    async def trigger_signing_completion(self, request_id: str) -> bool:
        try:
            await self._with_retry(
                lambda: self._request("POST", f"/signing/{quote(request_id, safe='')}/complete", json={})
            )
        except APIError as exc:
            logger.warning("Could not trigger completion for signing request %s: %s", request_id, exc.message)
            return False
        return True

    # ── BankID ──────────────────────────────────────────────────────────────────

    async def initiate_bankid(self, request_id: str) -> BankIDSession:
        body = {"requestId": request_id, "correlationId": generate_correlation_id("bankid")}
        data = await self._with_retry(lambda: self._request("POST", "/signing/bankid/initiate", json=body))
        try:
            return BankIDSession.model_validate(data)
        except ValidationError as exc:
            raise APIError(f"Unexpected BankID session payload: {exc.error_count()} error(s)") from exc

    async def check_bankid_status(self, session_id: str) -> BankIDStatusResult:
        # Single attempt: the poller's next tick is the retry.
        try:
            data = await self._request("GET", f"/signing/bankid/status/{quote(session_id, safe='')}")
            if not isinstance(data, dict):
                return BankIDStatusResult.failed_read("Unexpected BankID status payload")
            return BankIDStatusResult.model_validate(
                {
                    "success": True,
                    "status": data.get("status"),
                    "user_info": data.get("user_info") or data.get("userInfo"),
                    "correlation_id": data.get("correlation_id") or data.get("correlationId"),
                    "error": data.get("error_message"),
                }
            )
        except APIError as exc:
            logger.warning("BankID status check failed for session %s: %s", session_id, exc.message)
            return BankIDStatusResult.failed_read(exc.user_message or exc.message)
        except Exception as exc:
            logger.exception("BankID status check crashed for session %s", session_id)
            return BankIDStatusResult.failed_read(str(exc))

    async def cancel_bankid_session(self, session_id: str) -> bool:
        try:
            await self._with_retry(lambda: self._request("POST", "/signing/bankid/cancel", json={"sessionId": session_id}))
        except APIError as exc:
            logger.warning("Could not cancel BankID session %s: %s", session_id, exc.message)
            return False
        return True

    # ── Documents and products ──────────────────────────────────────────────────

    async def get_document(self, document_id: str) -> Document:
        cached = self._document_cache.get(document_id)
        if cached and cached[0] > time.monotonic():
            logger.debug("Cache hit for document %s", document_id)
            return cached[1]

        data = await self._with_retry(lambda: self._request("GET", f"/signing/{quote(document_id, safe='')}"))
        try:
            document = Document.model_validate(data)
        except ValidationError as exc:
            raise APIError(f"Unexpected document payload: {exc.error_count()} error(s)") from exc
        self._document_cache[document_id] = (time.monotonic() + self._cache_ttl, document)
        return document

    async def get_product(self, product_id: str) -> dict:
        data = await self._with_retry(lambda: self._request("GET", f"/products/{quote(product_id, safe='')}"))
        if not isinstance(data, dict):
            raise APIError("Unexpected product payload")
        return data
