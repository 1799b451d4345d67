"""Exceptions raised at I/O seams and converted to result fields at stage boundaries."""


class EmailSleuthError(Exception):
    """Base class for all emailsleuth errors."""


class FetchError(EmailSleuthError):
    """A page could not be retrieved by any navigation strategy."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


class BrowserUnavailableError(EmailSleuthError):
    """The headless browser could not be launched or has been shut down."""


class SmtpProtocolError(EmailSleuthError):
    """The mail server sent something that is not an RFC 5321 reply."""
