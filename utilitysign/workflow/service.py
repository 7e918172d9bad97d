"""
Document signing workflow: Upload -> Preview -> Signing -> Status -> Completed.

The only backward moves are Preview -> Upload and Status -> Signing, each dropping
what was created after that point. While an error is set, only ``retry``,
``retry_stage``, ``reset`` and ``fail`` are accepted.
"""

import logging
from typing import Any, Callable, Optional

from utilitysign.bankid.launcher import WindowOpener
from utilitysign.client.base import SigningRequestClient
from utilitysign.client.exceptions import APIError
from utilitysign.client.schemas import SigningRequest, SigningRequestStatus
from utilitysign.common.tasks import invoke_callback
from utilitysign.documents.schemas import Document, UploadedFile
from utilitysign.documents.service import validate_upload
from utilitysign.signing.schemas import SigningResult
from utilitysign.signing.service import SigningFormController, SubmissionRefused
from utilitysign.workflow.schemas import WorkflowStep
from utilitysign.workflow.status import SigningStatusTracker

logger = logging.getLogger(__name__)

MSG_REQUEST_NOT_SIGNED = {
    SigningRequestStatus.failed: "Signing failed. Please try again.",
    SigningRequestStatus.expired: "The signing request has expired.",
    SigningRequestStatus.cancelled: "The signing request was cancelled.",
}


class WorkflowTransitionError(ValueError):
    """Raised when a step change is not allowed from the current state."""


class SigningWorkflowController:
    def __init__(
        self,
        client: SigningRequestClient,
        opener: Optional[WindowOpener] = None,
        *,
        document_id: Optional[str] = None,
        on_success: Optional[Callable[[SigningResult], Any]] = None,
        on_error: Optional[Callable[[str], Any]] = None,
        status_refresh_interval: Optional[float] = None,
    ) -> None:
        self._client = client
        self._opener = opener
        self._initial_document_id = document_id
        self._on_success = on_success
        self._on_error = on_error
        self._status_refresh_interval = status_refresh_interval

        self.step = WorkflowStep.upload
        self.document: Optional[Document] = None
        self.signing_request: Optional[SigningRequest] = None
        self.uploaded_file: Optional[UploadedFile] = None
        self.error: Optional[str] = None
        self.loading = False
        self.result: Optional[SigningResult] = None
        self.signing_form: Optional[SigningFormController] = None
        self.status_tracker: Optional[SigningStatusTracker] = None

    def _require(self, action: str, *steps: WorkflowStep) -> None:
        if self.error is not None:
            raise WorkflowTransitionError(f"Cannot {action} while an error is unresolved: {self.error}")
        if self.step not in steps:
            raise WorkflowTransitionError(f"Cannot {action} from step {self.step.value}")

    # ── Upload / preview ────────────────────────────────────────────────────────

    async def start(self) -> WorkflowStep:
        """Open an existing document when one was given, otherwise stay on Upload."""
        if self._initial_document_id:
            await self.load_document(self._initial_document_id)
        return self.step

    async def load_document(self, document_id: str) -> Optional[Document]:
        self._require("load a document", WorkflowStep.upload)
        self.loading = True
        try:
            document = await self._client.get_document(document_id)
        except APIError as exc:
            await self.fail(exc.user_message or exc.message)
            return None
        finally:
            self.loading = False
        self.document = document
        self.step = WorkflowStep.preview
        return document

    async def document_uploaded(self, file: UploadedFile, document: Document) -> WorkflowStep:
        self._require("accept an upload", WorkflowStep.upload)
        problem = validate_upload(file)
        if problem:
            await self.fail(problem)
            return self.step
        self.uploaded_file = file
        self.document = document
        self.step = WorkflowStep.preview
        return self.step

    def confirm_preview(self) -> WorkflowStep:
        self._require("confirm the preview", WorkflowStep.preview)
        if self.document is None:
            raise WorkflowTransitionError("Signing needs a document")
        self.step = WorkflowStep.signing
        return self.step

    def back_to_upload(self) -> WorkflowStep:
        self._require("go back to upload", WorkflowStep.preview)
        self.document = None
        self.uploaded_file = None
        self.step = WorkflowStep.upload
        return self.step

    # ── Signing / status ────────────────────────────────────────────────────────

    def signing_initiated(self, request: SigningRequest) -> WorkflowStep:
        self._require("track signing", WorkflowStep.signing)
        if request is None:
            raise WorkflowTransitionError("Status tracking needs a signing request")
        self.signing_request = request
        self.step = WorkflowStep.status
        return self.step

    async def back_to_signing(self) -> WorkflowStep:
        self._require("go back to signing", WorkflowStep.status)
        await self._stop_tracking()
        if self.signing_form is not None:
            await self.signing_form.close()
        self.signing_request = None
        self.step = WorkflowStep.signing
        return self.step

    async def signing_completed(self, result: SigningResult) -> WorkflowStep:
        self._require("complete signing", WorkflowStep.status)
        self.result = result
        self.step = WorkflowStep.completed
        logger.info("Signing completed for request %s", result.request_id)
        await invoke_callback(self._on_success, result)
        return self.step

    async def start_status_tracking(self) -> Optional[SigningRequest]:
        self._require("track status", WorkflowStep.status)
        if self.status_tracker is None or self.status_tracker.request_id != self.signing_request.id:
            await self._stop_tracking()
            self.status_tracker = SigningStatusTracker(
                self._client,
                self.signing_request.id,
                on_status_change=self._status_changed,
                on_error=self.fail,
                refresh_interval=self._status_refresh_interval,
            )
        return await self.status_tracker.start()

    async def refresh_status(self) -> Optional[SigningRequest]:
        self._require("refresh status", WorkflowStep.status)
        if self.status_tracker is None:
            self.status_tracker = SigningStatusTracker(
                self._client,
                self.signing_request.id,
                on_status_change=self._status_changed,
                on_error=self.fail,
                auto_refresh=False,
            )
        return await self.status_tracker.fetch()

    async def _status_changed(self, request: SigningRequest) -> None:
        if self.step != WorkflowStep.status or self.error is not None:
            return
        self.signing_request = request
        if request.status == SigningRequestStatus.completed:
            await self.signing_completed(
                SigningResult(success=True, request_id=request.id, document_id=request.document_id)
            )
        elif request.status in MSG_REQUEST_NOT_SIGNED:
            await self.fail(MSG_REQUEST_NOT_SIGNED[request.status])

    async def _stop_tracking(self) -> None:
        if self.status_tracker is not None:
            await self.status_tracker.stop()
            self.status_tracker = None

    # ── Signing form ────────────────────────────────────────────────────────────

    def create_signing_form(self, opener: Optional[WindowOpener] = None, **options: Any) -> SigningFormController:
        """Build the signing-stage form, wired into this workflow's steps."""
        self._require("open the signing form", WorkflowStep.signing)
        if self.document is None:
            raise WorkflowTransitionError("Signing needs a document")
        opener = opener or self._opener
        if opener is None:
            raise ValueError("A window opener is required to sign with BankID")

        form: SigningFormController

        def launched(result: SigningResult) -> None:
            self.signing_initiated(form.signing_request)

        async def completed(result: SigningResult) -> None:
            if self.step == WorkflowStep.status and self.error is None:
                self.signing_request = form.signing_request
                await self.signing_completed(result)

        form = SigningFormController(
            self._client,
            opener,
            document_id=self.document.id,
            on_submit=self._signing_submitted,
            on_success=launched,
            on_completed=completed,
            on_error=self.fail,
            **options,
        )
        self.signing_form = form
        return form

    def _signing_submitted(self) -> None:
        if self.step != WorkflowStep.signing:
            raise SubmissionRefused(f"Cannot submit the signing form from step {self.step.value}")
        self.retry_stage()

    # ── Errors and restarts ─────────────────────────────────────────────────────

    async def fail(self, message: str) -> None:
        self.error = message
        logger.warning("Signing workflow error at step %s: %s", self.step.value, message)
        await invoke_callback(self._on_error, message)

    def retry_stage(self) -> WorkflowStep:
        """Clear the error and stay on the current step to re-attempt it."""
        self.error = None
        return self.step

    async def retry(self) -> WorkflowStep:
        """Clear the error and start over from Upload."""
        if self.step == WorkflowStep.completed:
            raise WorkflowTransitionError("A completed workflow can only be reset")
        await self._restart()
        return self.step

    async def reset(self) -> WorkflowStep:
        await self._restart()
        self.result = None
        return self.step

    async def _restart(self) -> None:
        await self._teardown()
        self.error = None
        self.document = None
        self.signing_request = None
        self.uploaded_file = None
        self.step = WorkflowStep.upload

    async def _teardown(self) -> None:
        await self._stop_tracking()
        if self.signing_form is not None:
            await self.signing_form.close()
            self.signing_form = None

    async def close(self) -> None:
        await self._teardown()
