"""
SiteAudit Core — site graph and scoring engine.

Pure, synchronous transforms over already-crawled page and issue records:
URL canonicalization, page and issue deduplication, duplicate-URL auditing,
internal link graph construction with authority propagation, and bounded
category scoring.
"""

__version__ = "1.0.0"
