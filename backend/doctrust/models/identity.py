from dataclasses import dataclass
from typing import Optional

@dataclass(frozen=True)
class Identity:
    """Authenticated caller as reported by the identity provider"""
    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None

    @property
    def normalized_email(self) -> Optional[str]:
        return self.email.strip().lower() if self.email else None
