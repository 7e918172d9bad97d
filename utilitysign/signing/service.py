"""
The BankID signing form.

``SigningFormController`` holds the form's in-memory state and drives one
submission: reconcile the submitted values with that state, validate, create the
signing request, then open BankID (directly from the creation response, or after an
explicit initiation) and track the session until it finishes.
"""

import logging
from typing import Any, Callable, Iterable, Mapping, Optional

from utilitysign.bankid.launcher import BankIDLauncher, LaunchStatus, WindowOpener
from utilitysign.bankid.poller import BankIDStatusPoller, PollOutcome
from utilitysign.client.base import SigningRequestClient
from utilitysign.client.exceptions import APIError
from utilitysign.client.schemas import SigningRequest, SigningRequestStatus, can_transition
from utilitysign.common.identifiers import build_idempotency_key
from utilitysign.common.tasks import invoke_callback
from utilitysign.forms.service import BILLING_FIELDS, build_extra_fields, is_checked, reconcile_form_state
from utilitysign.signing.schemas import SigningResult, SubmissionResult, SubmissionStatus
from utilitysign.validation.fodselsnummer import validate_fodselsnummer
from utilitysign.validation.schemas import SigningFormData
from utilitysign.validation.service import validate_signing_form

logger = logging.getLogger(__name__)

MSG_SUBMISSION_BUSY = "Forespørselen behandles allerede. Vennligst vent."
MSG_REQUEST_CREATED = "Signeringsforespørsel opprettet!"
MSG_DOCUMENT_SIGNED = "Dokument signert med BankID!"
MSG_GENERIC_FAILURE = "En feil oppstod under behandling av forespørselen. Vennligst prøv igjen."
MSG_BANKID_FAILED = "BankID authentication was cancelled or failed"
MSG_BANKID_EXPIRED = "BankID-økten er utløpt. Vennligst prøv igjen."
MSG_NO_AUTH_URL = "Kunne ikke starte BankID-signering. Vennligst prøv igjen."

POLL_STATUS_UPDATES = {
    PollOutcome.completed: SigningRequestStatus.completed,
    PollOutcome.failed: SigningRequestStatus.failed,
    PollOutcome.cancelled: SigningRequestStatus.cancelled,
    PollOutcome.expired: SigningRequestStatus.expired,
}


class SubmissionRefused(Exception):
    """Raised by an ``on_submit`` hook to stop a submission before anything is created."""


def map_api_error(exc: APIError) -> tuple[str, dict[str, str]]:
    """Turn a failed create/initiate call into a message and per-field errors.

    Server validation messages are placed on the field they mention. When none of
    them can be placed, all of them go on ``signerEmail``.
    """
    if exc.validation_errors:
        message = ", ".join(exc.validation_errors)
        field_errors: dict[str, str] = {}
        for error in exc.validation_errors:
            lowered = error.lower()
            if "email" in lowered:
                field_errors["signerEmail"] = error
            elif "firstname" in lowered or "fornavn" in lowered:
                field_errors["firstName"] = error
            elif "lastname" in lowered or "etternavn" in lowered:
                field_errors["lastName"] = error
        return message, field_errors or {"signerEmail": message}

    message = exc.user_message or exc.message or MSG_GENERIC_FAILURE
    return message, {"signerEmail": message}


class SigningFormController:
    def __init__(
        self,
        client: SigningRequestClient,
        opener: WindowOpener,
        *,
        document_id: str = "",
        product_id: Optional[str] = None,
        supplier_id: Optional[str] = None,
        enable_bankid: bool = True,
        business_product_ids: Optional[Iterable[str]] = None,
        sports_team_product_id: Optional[str] = None,
        on_submit: Optional[Callable[[], Any]] = None,
        on_success: Optional[Callable[[SigningResult], Any]] = None,
        on_completed: Optional[Callable[[SigningResult], Any]] = None,
        on_error: Optional[Callable[[str], Any]] = None,
        launcher: Optional[BankIDLauncher] = None,
        poller: Optional[BankIDStatusPoller] = None,
    ) -> None:
        self._client = client
        self.document_id = document_id or ""
        self.product_id = product_id
        self.supplier_id = supplier_id
        self.enable_bankid = enable_bankid
        self._business_product_ids = business_product_ids
        self._sports_team_product_id = sports_team_product_id
        self._on_submit = on_submit
        self._on_success = on_success
        self._on_completed = on_completed
        self._on_error = on_error
        self.launcher = launcher or BankIDLauncher(opener)
        self.poller = poller or BankIDStatusPoller(client, opener=opener)

        self.form = SigningFormData()
        self.errors: dict[str, str] = {}
        self.success_message: Optional[str] = None
        self.signing_request: Optional[SigningRequest] = None
        self.product_name: Optional[str] = None
        self.is_submitting = False

    # ── Field edits ─────────────────────────────────────────────────────────────

    def update_field(self, field: str, value: Any) -> None:
        """Apply one field change from the form and clear that field's error."""
        attr = SigningFormData.attribute_for(field)
        info = SigningFormData.model_fields[attr]
        if info.annotation is bool:
            value = is_checked(value)
        elif value is None:
            value = ""

        update = {attr: value}
        if attr == "use_same_address_for_billing" and value:
            update.update({billing: "" for billing in BILLING_FIELDS})
        self.form = self.form.model_copy(update=update)
        self.errors.pop(info.alias or attr, None)

    async def load_product_name(self) -> Optional[str]:
        if not self.product_id:
            return None
        try:
            product = await self._client.get_product(self.product_id)
        except APIError as exc:
            logger.warning("Could not load product %s: %s", self.product_id, exc.message)
            return None
        self.product_name = product.get("name") or product.get("title") or None
        return self.product_name

    # ── Submission ──────────────────────────────────────────────────────────────

    async def submit(self, dom_values: Mapping[str, Any]) -> SubmissionResult:
        if self.is_submitting:
            logger.warning("Ignoring signing submission while another one is in progress")
            return SubmissionResult(
                status=SubmissionStatus.busy,
                signing_request=self.signing_request,
                message=MSG_SUBMISSION_BUSY,
            )

        self.errors = {}
        self.success_message = None
        snapshot = reconcile_form_state(dom_values, self.form)
        self.form = snapshot

        validation = validate_signing_form(
            snapshot,
            product_id=self.product_id,
            business_product_ids=self._business_product_ids,
            sports_team_product_id=self._sports_team_product_id,
        )
        if not validation.is_valid:
            self.errors = dict(validation.errors)
            logger.debug("Signing form rejected: %s", self.errors)
            return SubmissionResult(status=SubmissionStatus.invalid, errors=self.errors)

        self.is_submitting = True
        try:
            await invoke_callback(self._on_submit)
            return await self._create_and_launch(snapshot)
        except SubmissionRefused as exc:
            logger.warning("Signing submission refused: %s", exc)
            return SubmissionResult(
                status=SubmissionStatus.refused,
                signing_request=self.signing_request,
                message=str(exc),
            )
        except APIError as exc:
            message, field_errors = map_api_error(exc)
            logger.warning("Signing submission failed: %s", exc.message)
            return await self._fail(message, field_errors)
        except Exception:
            logger.exception("Signing submission crashed")
            return await self._fail(MSG_GENERIC_FAILURE, {"signerEmail": MSG_GENERIC_FAILURE})
        finally:
            self.is_submitting = False

    async def _create_and_launch(self, snapshot: SigningFormData) -> SubmissionResult:
        idempotency_key = build_idempotency_key(self.document_id, snapshot.signer_email)
        request = await self._client.create_signing_request(
            self.document_id,
            snapshot.signer_email,
            snapshot.signer_name,
            idempotency_key,
            build_extra_fields(snapshot, product_id=self.product_id, supplier_id=self.supplier_id),
        )
        self.signing_request = request
        self.success_message = MSG_REQUEST_CREATED
        logger.info("Created signing request %s", request.id)

        if not self.enable_bankid:
            await invoke_callback(self._on_success, self._result(request))
            return SubmissionResult(status=SubmissionStatus.created, signing_request=request)

        if request.signing_target:
            return await self._launch(request.signing_target, request, request.active_session_id)

        session = await self._client.initiate_bankid(request.id)
        if not session.auth_url:
            raise APIError(
                f"BankID initiation for {request.id} returned no authentication URL",
                correlation_id=session.correlation_id,
                user_message=MSG_NO_AUTH_URL,
            )
        request = request.with_session(session.session_id, session.auth_url)
        self.signing_request = request
        return await self._launch(session.auth_url, request, session.session_id)

    async def _launch(self, url: str, request: SigningRequest, session_id: Optional[str]) -> SubmissionResult:
        launch = self.launcher.launch(url)
        if launch.status == LaunchStatus.redirected:
            return SubmissionResult(status=SubmissionStatus.redirected, signing_request=request)

        if launch.status == LaunchStatus.declined:
            self.errors = {"signerEmail": launch.message}
            await invoke_callback(self._on_error, launch.message)
            return SubmissionResult(
                status=SubmissionStatus.popup_declined,
                signing_request=request,
                errors=self.errors,
                message=launch.message,
            )

        try:
            await invoke_callback(self._on_success, self._result(request, auth_url=url))
        except Exception:
            self.launcher.close()
            raise

        if session_id:
            self.poller.start_polling(
                session_id,
                self._handle_poll_outcome,
                request_id=request.id,
                window=launch.window,
                expires_at=request.expires_at,
            )
        return SubmissionResult(status=SubmissionStatus.launched, signing_request=request)

    async def _fail(self, message: str, field_errors: dict[str, str]) -> SubmissionResult:
        self.errors = field_errors
        await invoke_callback(self._on_error, message)
        return SubmissionResult(
            status=SubmissionStatus.failed,
            signing_request=self.signing_request,
            errors=field_errors,
            message=message,
        )

    # ── Polling outcome ─────────────────────────────────────────────────────────

    async def _handle_poll_outcome(self, outcome: PollOutcome) -> None:
        request = self.signing_request
        status = POLL_STATUS_UPDATES[outcome]
        if request is not None:
            if can_transition(request.status, status):
                self.signing_request = request = request.with_status(status)
            else:
                logger.debug("Keeping request %s at %s after BankID %s", request.id, request.status.value, outcome.value)

        if outcome == PollOutcome.completed:
            self.success_message = MSG_DOCUMENT_SIGNED
            if request is not None:
                result = self._result(request, signer_personal_number=self._verified_personal_number(request))
                await invoke_callback(self._on_completed, result)
            return

        message = MSG_BANKID_EXPIRED if outcome == PollOutcome.expired else MSG_BANKID_FAILED
        await invoke_callback(self._on_error, message)

    def _verified_personal_number(self, request: SigningRequest) -> Optional[str]:
        """The signer's fødselsnummer from the final BankID read, if it checks out."""
        last = self.poller.last_result
        if last is None or last.user_info is None or not last.user_info.personal_number:
            return None
        check = validate_fodselsnummer(last.user_info.personal_number)
        if not check.is_valid:
            logger.warning("BankID returned an invalid personal number for request %s: %s", request.id, check.error)
            return None
        return check.formatted

    def _result(
        self,
        request: SigningRequest,
        auth_url: Optional[str] = None,
        signer_personal_number: Optional[str] = None,
    ) -> SigningResult:
        return SigningResult(
            success=True,
            request_id=request.id,
            document_id=request.document_id or self.document_id,
            auth_url=auth_url,
            signer_personal_number=signer_personal_number,
        )

    async def close(self) -> None:
        """Stop tracking the BankID session, for when the form goes away."""
        await self.poller.stop()
