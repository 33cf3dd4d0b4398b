"""
Family registry: issues and validates the six-character family codes.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Any, Callable, Optional

from babysync.db import DbClient, FamilyRecord, server_clock
from babysync.errors import InvalidArgument, NotFound

logger = logging.getLogger(__name__)

# No I, O, 0 or 1: they are easy to misread when a code is shared by hand.
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 6


def normalize_code(code: Any) -> Optional[str]:
    """Strip and uppercase a client-supplied code; None for missing values."""
    if code is None:
        return None
    if not isinstance(code, str):
        raise InvalidArgument("Invalid family code")
    code = code.strip().upper()
    return code or None


@dataclass
class FamilyInfo:
    code: str
    device_count: int
    non_deleted_entry_count: int
    last_sync: int


class FamilyRegistry:
    def __init__(self, db: DbClient, clock: Callable[[], int] = server_clock):
        self.db = db
        self.clock = clock

    @staticmethod
    def generate_code() -> str:
        return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))

    def create_family(self) -> str:
        """
        Create a family under a fresh code.

        Codes are drawn until one is free; with 32^6 possible codes this
        almost always succeeds on the first attempt.
        """
        while True:
            code = self.generate_code()
            if self.db.get_family(code):
                continue
            if self.db.create_family(code, self.clock()):
                logger.info("Created family %s", code)
                return code

    def join_family(self, code: Any) -> FamilyRecord:
        # Length is checked on the code exactly as sent, before normalizing.
        if not isinstance(code, str) or len(code) != CODE_LENGTH:
            raise InvalidArgument("Invalid family code")
        family = self.db.get_family(code.upper())
        if not family:
            raise NotFound("Family not found")
        return family

    def require_family(self, code: Any) -> FamilyRecord:
        normalized = normalize_code(code)
        if not normalized:
            raise InvalidArgument("Missing family code")
        family = self.db.get_family(normalized)
        if not family:
            raise NotFound("Family not found")
        return family

    def get_family_info(self, code: Any) -> FamilyInfo:
        family = self.require_family(code)
        return FamilyInfo(
            code=family.code,
            device_count=self.db.count_devices(family.code),
            non_deleted_entry_count=self.db.count_live_entries(family.code),
            last_sync=family.last_sync,
        )
