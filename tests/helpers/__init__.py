"""Test helper utilities."""

from tests.helpers.fake_link_service import (
    COMPLETE_PROFILE,
    PARTIAL_PROFILE,
    FakeLinkService,
    LinkCall,
)

__all__ = [
    "COMPLETE_PROFILE",
    "PARTIAL_PROFILE",
    "FakeLinkService",
    "LinkCall",
]
