"""Document-to-transaction matching."""

from .engine import DocumentMatcher, MatchResult, MatchScore, normalize_text

__all__ = ["DocumentMatcher", "MatchResult", "MatchScore", "normalize_text"]
