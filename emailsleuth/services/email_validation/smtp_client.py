"""Minimal RFC 5321 client that asks a mail exchanger about one recipient.

The session never reaches DATA, so nothing is sent:

    connect -> 220 -> HELO -> 250 -> MAIL FROM -> 250 -> RCPT TO -> classify -> QUIT

The whole exchange, connect included, shares a single deadline.
"""

import asyncio

from emailsleuth.core.exceptions import SmtpProtocolError
from emailsleuth.core.logging import get_logger

from .models import ProbeOutcome, VerificationStatus

logger = get_logger(__name__)

QUIT_TIMEOUT_SECONDS = 2.0


def classify_reply(code: int, message: str = "") -> ProbeOutcome:
    """Map a RCPT TO reply code to a verification status."""
    if code in (250, 251):
        status = VerificationStatus.VALID
    elif 550 <= code <= 554:
        status = VerificationStatus.INVALID
    else:
        # 450-452 temporary failure, 421 busy, anything else inconclusive
        status = VerificationStatus.UNKNOWN
    return ProbeOutcome(status=status, code=code, message=message)


async def read_reply(reader: asyncio.StreamReader) -> tuple[int, str]:
    """Read one possibly multi-line reply (``250-...`` lines up to ``250 ...``)."""
    lines: list[str] = []
    while True:
        raw = await reader.readline()
        if not raw:
            raise SmtpProtocolError("Connection closed by server")
        line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        logger.debug("smtp_line", line=line)
        if len(line) < 3 or not line[:3].isdigit():
            raise SmtpProtocolError(f"Malformed reply line: {line!r}")
        lines.append(line[4:])
        if len(line) == 3 or line[3] != "-":
            return int(line[:3]), "\n".join(lines)


class SmtpProbe:
    """One-shot RCPT TO probe against a single MX host."""

    def __init__(
        self,
        sender: str,
        helo_domain: str,
        port: int = 25,
        timeout_seconds: float = 8.0,
    ) -> None:
        self.sender = sender
        self.helo_domain = helo_domain
        self.port = port
        self.timeout_seconds = timeout_seconds

    async def _command(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        command: str,
    ) -> tuple[int, str]:
        logger.debug("smtp_line", line=f">>> {command}")
        writer.write(f"{command}\r\n".encode())
        await writer.drain()
        return await read_reply(reader)

    async def _quit(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            async with asyncio.timeout(QUIT_TIMEOUT_SECONDS):
                await self._command(reader, writer, "QUIT")
        except (OSError, TimeoutError, SmtpProtocolError) as e:
            logger.debug("smtp_quit_failed", error=str(e) or type(e).__name__)

    async def _converse(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        recipient: str,
    ) -> ProbeOutcome:
        code, message = await read_reply(reader)
        if code != 220:
            return self._early_refusal("greeting", code, message)

        for stage, command in (
            ("helo", f"HELO {self.helo_domain}"),
            ("mail_from", f"MAIL FROM:<{self.sender}>"),
        ):
            code, message = await self._command(reader, writer, command)
            if code != 250:
                return self._early_refusal(stage, code, message)

        code, message = await self._command(reader, writer, f"RCPT TO:<{recipient}>")
        return classify_reply(code, message)

    async def probe(self, host: str, recipient: str) -> ProbeOutcome:
        """
        Ask ``host`` whether it would accept mail for ``recipient``.

        Returns:
            ProbeOutcome; TIMEOUT if the deadline passed, UNKNOWN for
            transport errors or a refusal before RCPT TO
        """
        log = logger.bind(host=host, recipient=recipient)
        writer: asyncio.StreamWriter | None = None
        try:
            async with asyncio.timeout(self.timeout_seconds):
                reader, writer = await asyncio.open_connection(host, self.port)
                outcome = await self._converse(reader, writer, recipient)

            # The verdict is in, refusals included; QUIT runs on its own short deadline
            await self._quit(reader, writer)
            log.bind(code=outcome.code, status=outcome.status.value).debug("smtp_probe_complete")
            return outcome

        except TimeoutError:
            log.debug("smtp_probe_timeout")
            return ProbeOutcome(status=VerificationStatus.TIMEOUT, message="Deadline exceeded")
        except (OSError, SmtpProtocolError, asyncio.IncompleteReadError) as e:
            log.bind(error=str(e) or type(e).__name__).debug("smtp_probe_error")
            return ProbeOutcome(status=VerificationStatus.UNKNOWN, message=str(e))
        finally:
            if writer is not None:
                writer.close()
                try:
                    await writer.wait_closed()
                except OSError as e:
                    log.bind(error=str(e)).debug("smtp_close_failed")

    def _early_refusal(self, stage: str, code: int, message: str) -> ProbeOutcome:
        logger.bind(stage=stage, code=code).debug("smtp_refused_before_rcpt")
        return ProbeOutcome(
            status=VerificationStatus.UNKNOWN,
            code=code,
            message=f"{stage} rejected: {code} {message}".strip(),
        )
