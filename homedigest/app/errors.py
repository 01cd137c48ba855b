"""
Exceptions raised by the digest pipeline.

Collector failures never surface here: they are caught inside
``collectors.gather_health_reports`` and replaced by empty reports.
Everything below propagates to the caller of ``generate_digest`` and
means that no digest record was written.
"""


class DigestError(Exception):
    """Base class for digest generation failures."""


class GenerationError(DigestError):
    """The model call failed (non-2xx, network error, empty content)."""

    def __init__(self, message: str, status: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status = status
        self.body = body


class GenerationTimeoutError(GenerationError):
    """The model call did not finish within the configured timeout."""


class MalformedResponseError(DigestError):
    """The model answered, but no JSON object could be recovered from the text."""

    def __init__(self, message: str, original_error: Exception | None = None, raw_text: str = ""):
        super().__init__(message)
        self.original_error = original_error
        self.raw_text = raw_text
        self.preview = raw_text[:300]


class PersistenceError(DigestError):
    """Writing the digest record failed."""


class DigestInProgressError(DigestError):
    """A digest of the same type is already being generated."""

    def __init__(self, digest_type: str):
        super().__init__(f"A {digest_type} digest is already being generated")
        self.digest_type = digest_type
