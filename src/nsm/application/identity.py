from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class StaticIdentity:
    user_id: Optional[str] = None
    email: Optional[str] = None

    def current_user_id(self) -> Optional[str]:
        return self.user_id
