"""
email_action step: sends a templated email through an SMTP profile.
"""

import logging
from typing import List

from .base import StepExecutor, StepResult, StepServices, register_step
from .files import decode_pdf, payload_extension, serialize_extracted_data
from ..exceptions import StepConfigurationError
from ..integrations.mailer import EmailAttachment, OutgoingEmail
from ..nodes import StepNode, StepType
from ..templates import resolve_template

logger = logging.getLogger(__name__)

_DATA_MIME_TYPES = {"json": "application/json", "csv": "text/csv", "xml": "application/xml"}


def split_recipients(value: str) -> List[str]:
    return [address.strip() for address in (value or "").replace(";", ",").split(",") if address.strip()]


@register_step(StepType.EMAIL_ACTION)
class EmailActionStep(StepExecutor):
    """
    Config:
        to: Recipient template (comma separated)
        subject, body: Templates
        includeAttachment: Attach a file
        attachmentSource: original_pdf | extracted_data
        ccUser: CC the submitter / sender
        isNotificationEmail: Recorded in the output
        emailConfigId: SMTP profile (default profile otherwise)
    """

    async def execute(self, node: StepNode, run, services: StepServices) -> StepResult:
        config = node.config
        context = run.context
        view = context.view()

        recipients = split_recipients(resolve_template(config.get("to") or "", view))
        if not recipients:
            raise StepConfigurationError("Email action has no recipients")

        cc: List[str] = []
        if config.get("ccUser"):
            user_email = context.get("submitterEmail") or context.get("senderEmail")
            if user_email and user_email not in recipients:
                cc.append(user_email)

        subject = resolve_template(config.get("subject") or "", view)
        body = resolve_template(config.get("body") or "", view)

        attachment = None
        if config.get("includeAttachment"):
            attachment = self._attachment(config.get("attachmentSource") or "original_pdf", run)

        profile = services.require("profiles").get_email_profile(config.get("emailConfigId"))
        await services.require("mailer").send(
            profile,
            OutgoingEmail(to=recipients, cc=cc, subject=subject, body=body, attachment=attachment),
        )

        return StepResult(output={
            "to": recipients,
            "cc": cc,
            "subject": subject,
            "attachmentFilename": attachment.filename if attachment else None,
            "isNotificationEmail": bool(config.get("isNotificationEmail")),
            "sent": True,
        })

    def _attachment(self, source: str, run) -> EmailAttachment:
        context = run.context
        if source == "extracted_data":
            extension = payload_extension(run.format_type)
            filename = context.get("renamedFilename") or f"extracted_data.{extension}"
            return EmailAttachment(
                filename=filename,
                content=serialize_extracted_data(context.get("extractedData"), run.format_type),
                mime_type=_DATA_MIME_TYPES[extension],
            )

        filename = context.get("renamedPdfFilename") or context.get("pdfFilename") or "document.pdf"
        return EmailAttachment(
            filename=filename,
            content=decode_pdf(context.get("pdfBase64")),
            mime_type="application/pdf",
        )
