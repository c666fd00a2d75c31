from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from pathlib import Path
from typing import Optional

from email_validator import EmailNotValidError, validate_email

from sitereport.config.settings import ExportSettings, MailSettings, settings
from sitereport.errors import ExportChannelError
from sitereport.export.pdf import safe_filename


def default_filename(report_id: object) -> str:
    return f"report-{report_id}.pdf"


class FileChannel:
    name = "file"

    def __init__(self, export_settings: ExportSettings | None = None, logger: logging.Logger | None = None) -> None:
        self.settings = export_settings or settings.export
        self.logger = logger or logging.getLogger(__name__)

    def _write(self, path: Path, pdf: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(pdf)

    async def deliver(self, pdf: bytes, report_id: object, filename: Optional[str] = None) -> str:
        name = safe_filename(filename) if filename and filename.strip() else default_filename(report_id)
        path = Path(self.settings.output_dir) / name
        try:
            await asyncio.to_thread(self._write, path, pdf)
        except OSError as exc:
            raise ExportChannelError(self.name, f"could not write {path}: {exc}") from exc
        self.logger.info("Report saved to %s", path, extra={"report_id": str(report_id), "channel": self.name})
        return str(path)


class EmailChannel:
    """Sends the PDF as an attachment. Without an SMTP host the message is only logged."""

    name = "email"

    def __init__(
        self,
        mail_settings: MailSettings | None = None,
        export_settings: ExportSettings | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.mail = mail_settings or settings.mail
        self.export = export_settings or settings.export
        self.logger = logger or logging.getLogger(__name__)

    def is_configured(self) -> bool:
        return bool(self.mail.host)

    def normalize_address(self, address: str) -> str:
        try:
            return validate_email(address or "", check_deliverability=False).normalized
        except EmailNotValidError as exc:
            raise ExportChannelError(self.name, f"invalid address {address!r}: {exc}") from exc

    def build_message(
        self,
        pdf: bytes,
        report_id: object,
        to_address: str,
        subject: Optional[str] = None,
        body: Optional[str] = None,
    ) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject or self.export.default_email_subject
        msg["From"] = self.mail.sender
        msg["To"] = to_address
        msg.set_content(body or self.export.default_email_body)
        msg.add_attachment(pdf, maintype="application", subtype="pdf", filename=default_filename(report_id))
        return msg

    def _send_smtp(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.mail.host, self.mail.port, timeout=self.export.timeout_seconds) as smtp:
            if self.mail.use_tls:
                smtp.starttls()
            if self.mail.username and self.mail.password:
                smtp.login(self.mail.username, self.mail.password)
            smtp.send_message(msg)

    async def deliver(
        self,
        pdf: bytes,
        report_id: object,
        address: str,
        subject: Optional[str] = None,
        body: Optional[str] = None,
    ) -> str:
        to_address = self.normalize_address(address)
        msg = self.build_message(pdf, report_id, to_address, subject, body)
        log_extra = {"report_id": str(report_id), "channel": self.name}

        if not self.is_configured():
            # Dev/test mode: log only
            self.logger.info("Email (dev mode): to=%s subject='%s'", to_address, msg["Subject"], extra=log_extra)
            return f"logged for {to_address}"

        try:
            await asyncio.to_thread(self._send_smtp, msg)
        except (smtplib.SMTPException, OSError) as exc:
            self.logger.error("Email failed: to=%s error=%s", to_address, exc, extra=log_extra)
            raise ExportChannelError(self.name, str(exc)) from exc
        self.logger.info("Email sent: to=%s subject='%s'", to_address, msg["Subject"], extra=log_extra)
        return f"sent to {to_address}"


class PrintChannel:
    """Pipes the PDF into the configured print command (``lp`` by default)."""

    name = "print"

    def __init__(self, export_settings: ExportSettings | None = None, logger: logging.Logger | None = None) -> None:
        self.settings = export_settings or settings.export
        self.logger = logger or logging.getLogger(__name__)

    async def deliver(self, pdf: bytes, report_id: object) -> str:
        command = list(self.settings.print_command)
        if not command:
            raise ExportChannelError(self.name, "no print command configured")
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ExportChannelError(self.name, f"could not start {command[0]}: {exc}") from exc

        try:
            stdout, stderr = await proc.communicate(pdf)
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
            # Reap the child so a timed-out print job does not linger as a zombie
            await asyncio.shield(proc.wait())
            raise

        if proc.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip() or f"exit status {proc.returncode}"
            raise ExportChannelError(self.name, message)
        self.logger.info("Report sent to printer", extra={"report_id": str(report_id), "channel": self.name})
        return stdout.decode("utf-8", errors="replace").strip() or "queued"
