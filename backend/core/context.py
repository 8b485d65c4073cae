from __future__ import annotations

from dataclasses import dataclass

ROLE_STUDENT = "student"
ROLE_PROFESSIONAL = "professional"
ROLE_COORDINATOR = "coordinator"

ROLES = {ROLE_STUDENT, ROLE_PROFESSIONAL, ROLE_COORDINATOR}


@dataclass(frozen=True)
class ActorContext:
    """Who is performing an operation. Passed explicitly into every service call."""

    actor_id: str
    role: str

    @property
    def is_coordinator(self) -> bool:
        return self.role == ROLE_COORDINATOR

    @property
    def is_professional(self) -> bool:
        return self.role in (ROLE_PROFESSIONAL, ROLE_COORDINATOR)

    @property
    def is_student(self) -> bool:
        return self.role == ROLE_STUDENT


# Identity used by the scheduled weekly run.
SYSTEM_ACTOR = ActorContext(actor_id="system", role=ROLE_COORDINATOR)
