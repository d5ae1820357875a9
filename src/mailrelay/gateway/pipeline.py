"""
Send pipeline: screening and dispatch of one relay request.

Order of stages:

    attachment gate -> malware scan -> field validation
        -> final attachment check -> dispatch

The temporary upload is released when ``process`` returns or raises,
whichever stage stopped the request.
"""

import logging
from typing import Any, Mapping, Optional

from ..common.exceptions import (
    AttachmentRejectedError,
    ScanError,
    ScanQuotaExceededError,
    ScanTimeoutError,
)
from .screening.attachments import Attachment, AttachmentGate, RejectionReason, UploadStore
from .screening.scanner import MalwareScanner, ScanOutcome, ScanVerdict
from .screening.validator import validate
from .smtp.dispatcher import DispatchResult, MailDispatcher

logger = logging.getLogger(__name__)

QUOTA_ALERT_SUBJECT = "[mailrelay] Malware scanning quota exhausted"


class SendPipeline:
    """
    Runs one send request through screening and dispatch.

    Attributes:
        dispatcher: Mail dispatcher used for the message and for alerts.
        scanner: Malware scanner, or None when scanning is off.
        block_on_scan_timeout: Refuse the request when no scan report
            arrives in time.
        alert_recipient: Operator address for quota alerts.
    """

    def __init__(
        self,
        dispatcher: MailDispatcher,
        store: UploadStore,
        gate: Optional[AttachmentGate] = None,
        scanner: Optional[MalwareScanner] = None,
        block_on_scan_timeout: bool = True,
        alert_recipient: Optional[str] = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.store = store
        self.gate = gate or AttachmentGate()
        self.scanner = scanner
        self.block_on_scan_timeout = block_on_scan_timeout
        self.alert_recipient = alert_recipient

    async def _alert_quota_exhausted(self, attachment: Attachment) -> None:
        body = (
            "The malware scanning service refused a request because the "
            "account quota is exhausted.\n\n"
            f"Attachment: {attachment.original_name}\n"
            "Uploads with attachments are refused until the quota resets."
        )
        await self.dispatcher.send_alert(
            QUOTA_ALERT_SUBJECT, body, self.alert_recipient)

    async def _scan(self, attachment: Attachment) -> None:
        if self.scanner is None:
            return

        verdict: ScanVerdict = await self.scanner.scan(
            attachment.original_name, attachment.stored_path.read_bytes())

        if verdict.outcome == ScanOutcome.CLEAN:
            return

        if verdict.outcome == ScanOutcome.MALICIOUS:
            raise AttachmentRejectedError(
                attachment.original_name,
                RejectionReason.MALICIOUS.value,
                {"malicious_count": verdict.malicious_count},
            )

        if verdict.outcome == ScanOutcome.QUOTA_EXCEEDED:
            await self._alert_quota_exhausted(attachment)
            raise ScanQuotaExceededError()

        if verdict.outcome == ScanOutcome.TIMED_OUT:
            if self.block_on_scan_timeout:
                raise ScanTimeoutError(verdict.attempts)
            logger.warning(
                "Sending %s without a completed scan report",
                attachment.original_name,
            )
            return

        raise ScanError(verdict.reason or "unknown error")

    async def process(
        self,
        fields: Mapping[str, Any],
        attachment: Optional[Attachment] = None,
    ) -> DispatchResult:
        """
        Screen and send one request.

        Args:
            fields: Raw request fields (``from``, ``to``, ``subject``, ``text``).
            attachment: Stored upload, if the request carried a file.

        Returns:
            DispatchResult from the dispatcher.

        Raises:
            MailRelayError: From whichever stage refused the request.
        """
        with self.store.hold(attachment):
            if attachment is not None:
                attachment = self.gate.admit(attachment)
                await self._scan(attachment)

            request = validate(fields, attachment)

            content = None
            if attachment is not None:
                content = self.gate.final_check(attachment)

            result = await self.dispatcher.send(request, content)

        logger.info(
            "Relayed message %s to %s",
            result.message_id,
            request.recipient,
        )
        return result
