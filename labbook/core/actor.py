from dataclasses import dataclass

from ..config import settings
from .identity import display_name, normalize_name

ADMIN = "admin"
WORKER = "worker"


@dataclass(frozen=True)
class Actor:
    """Who is calling, passed explicitly into every mutating operation."""

    name: str | None = None
    role: str = ADMIN

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN

    @property
    def key(self) -> str:
        return normalize_name(self.name)

    @property
    def label(self) -> str | None:
        return display_name(self.name)


def build_actor(name: str | None, role: str | None) -> Actor:
    resolved_name = display_name(name) or settings.DEFAULT_ACTOR_NAME or None
    resolved_role = (role or settings.DEFAULT_ACTOR_ROLE or WORKER).strip().lower()
    return Actor(name=resolved_name, role=resolved_role)


SYSTEM_ACTOR = Actor(name="system", role=ADMIN)
