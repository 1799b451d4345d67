from enum import Enum, IntEnum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from emailsleuth.services.email_validation.models import VerificationStatus


class ExtractionMethod(str, Enum):
    """Decoding strategy that produced a candidate."""

    TEXT = "text"
    MAILTO = "mailto"
    ENTITY = "entity"
    OBFUSCATED = "obfuscated"
    BASE64 = "base64"
    REVERSED = "reversed"
    CLOUDFLARE = "cloudflare"
    JSON_LD = "json_ld"
    SCRIPT = "script"
    COMMENT = "comment"
    ATTRIBUTE = "attribute"
    STRUCTURAL = "structural"
    SHADOW_DOM = "shadow_dom"
    IFRAME = "iframe"
    AI = "ai"
    PATTERN = "pattern"


class PagePriority(IntEnum):
    """Lower value = visited earlier."""

    CONTACT = 0
    ABOUT = 1
    LEGAL = 2
    FOOTER = 3
    OTHER = 4


class PageSource(str, Enum):
    LINK = "link"
    SITEMAP = "sitemap"
    KNOWN_PATH = "known_path"


class ScanQuality(str, Enum):
    THOROUGH = "thorough"
    PARTIAL = "partial"
    BLOCKED = "blocked"


class CandidateEmail(BaseModel):
    """An address decoded from one page, with its provenance."""

    address: str
    source_url: str
    extraction_method: ExtractionMethod
    found_in_mailto: bool = False
    found_in_script: bool = False


class PriorityPage(BaseModel):
    """A same-origin URL queued for scanning."""

    model_config = ConfigDict(frozen=True)

    url: str
    priority: PagePriority
    source: PageSource = PageSource.LINK


class BlockedStatus(BaseModel):
    """Anti-automation condition detected on a fetched page."""

    is_blocked: bool = False
    reason: str | None = None
    suggestion: str | None = None


class _WireModel(BaseModel):
    """Base for records returned to callers; dumps camelCase with by_alias=True."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EmailWithConfidence(_WireModel):
    address: str
    confidence: int = Field(ge=0, le=100)
    source: str
    verified: bool | None = None
    verification_status: VerificationStatus | None = None


class ExtractionDetails(_WireModel):
    blocked: bool = False
    blocked_reason: str | None = None
    suggested_action: str | None = None


class ExtractionResult(_WireModel):
    """Outcome of crawling one URL."""

    emails: list[str] = Field(default_factory=list)
    validated_emails: list[str] = Field(default_factory=list)
    emails_with_confidence: list[EmailWithConfidence] = Field(default_factory=list)
    pages_scanned: int = 0
    urls_checked: list[str] = Field(default_factory=list)
    scan_quality: ScanQuality = ScanQuality.THOROUGH
    methods: list[str] = Field(default_factory=list)
    extraction_details: ExtractionDetails = Field(default_factory=ExtractionDetails)
    error: str | None = None
