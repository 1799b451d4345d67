from emailsleuth.schemas.extraction import (
    BlockedStatus,
    CandidateEmail,
    EmailWithConfidence,
    ExtractionDetails,
    ExtractionMethod,
    ExtractionResult,
    PagePriority,
    PageSource,
    PriorityPage,
    ScanQuality,
)

__all__ = [
    "BlockedStatus",
    "CandidateEmail",
    "EmailWithConfidence",
    "ExtractionDetails",
    "ExtractionMethod",
    "ExtractionResult",
    "PagePriority",
    "PageSource",
    "PriorityPage",
    "ScanQuality",
]
