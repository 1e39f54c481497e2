"""
Skill Registry — Registered skills and the user's permission for each

Default permission follows the skill's class: Safe -> Enabled,
Sensitive -> Ask. `check` applies the dispatch rules in order:
existence, mode, permission.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..core.audit import AuditLog
from ..errors import ModeNotSupported, NotFound, PermissionDenied
from .base import Mode, Permission, PermissionLevel, Skill, SkillContext

logger = logging.getLogger(__name__)


@dataclass
class SkillInfo:
    """Display metadata for one skill."""
    id: str
    name: str
    description: str
    permission_level: PermissionLevel
    modes: List[Mode]
    user_permission: Permission

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "permission_level": self.permission_level.value,
            "modes": [m.value for m in self.modes],
            "user_permission": self.user_permission.value,
        }


def default_permission(skill: Skill) -> Permission:
    if skill.permission_level == PermissionLevel.SAFE:
        return Permission.ENABLED
    return Permission.ASK


class SkillRegistry:
    """Maps skill id to skill, and skill id to the user's permission."""

    def __init__(self, audit: Optional[AuditLog] = None):
        self.audit = audit
        self._skills: Dict[str, Skill] = {}
        self._permissions: Dict[str, Permission] = {}
        self._lock = threading.Lock()

    def register(self, skill: Skill) -> None:
        """Add or replace a skill. An existing permission choice is kept."""
        with self._lock:
            self._skills[skill.id] = skill
            self._permissions.setdefault(skill.id, default_permission(skill))

    def get(self, skill_id: str) -> Optional[Skill]:
        return self._skills.get(skill_id)

    def all(self) -> List[Skill]:
        return sorted(self._skills.values(), key=lambda s: s.id)

    def for_mode(self, mode: Mode) -> List[Skill]:
        return [s for s in self.all() if mode in s.modes]

    def __contains__(self, skill_id: str) -> bool:
        return skill_id in self._skills

    def __len__(self) -> int:
        return len(self._skills)

    # -- permissions ----------------------------------------------------------

    def get_permission(self, skill_id: str) -> Permission:
        return self._permissions.get(skill_id, Permission.ASK)

    def set_permission(self, skill_id: str, permission: Permission) -> None:
        """Change the user's permission for a skill. Recorded in the audit log."""
        if skill_id not in self._skills:
            raise NotFound(f"Skill not found: {skill_id}")
        with self._lock:
            old = self._permissions.get(skill_id, Permission.ASK)
            self._permissions[skill_id] = permission
        if old != permission:
            logger.info("Permission for %s changed from %s to %s",
                        skill_id, old.value, permission.value)
            if self.audit is not None:
                self.audit.log_permission_change(skill_id, old.value, permission.value)

    def load_permissions(self, permissions: Dict[str, str]) -> None:
        """Apply stored choices ({skill_id: "enabled"|"disabled"|"ask"}) without auditing."""
        with self._lock:
            for skill_id, value in permissions.items():
                try:
                    self._permissions[skill_id] = Permission(value)
                except ValueError:
                    logger.warning("Ignoring unknown permission %r for %s", value, skill_id)

    def check(self, skill_id: str, ctx: SkillContext) -> Skill:
        """
        Return the skill if it may run in this context.

        Raises NotFound, ModeNotSupported or PermissionDenied, in that order.
        """
        skill = self._skills.get(skill_id)
        if skill is None:
            raise NotFound(f"Skill not found: {skill_id}")

        if ctx.mode not in skill.modes:
            raise ModeNotSupported(
                f"Skill {skill_id} not available in {ctx.mode.display_name} mode")

        permission = self.get_permission(skill_id)
        if permission == Permission.DISABLED:
            raise PermissionDenied(f"Permission denied for skill: {skill_id}")
        if (permission == Permission.ASK
                and skill.permission_level == PermissionLevel.SENSITIVE
                and not ctx.is_session_approved(skill_id)):
            raise PermissionDenied(f"Permission denied for skill: {skill_id}",
                                   detail="needs session approval")
        return skill

    def can_execute(self, skill_id: str, ctx: SkillContext) -> bool:
        try:
            self.check(skill_id, ctx)
        except (NotFound, ModeNotSupported, PermissionDenied):
            return False
        return True

    def requires_approval(self, skill_id: str, ctx: SkillContext) -> bool:
        """True when the host should ask the user before invoking."""
        skill = self._skills.get(skill_id)
        if skill is None or skill.permission_level != PermissionLevel.SENSITIVE:
            return False
        if self.get_permission(skill_id) != Permission.ASK:
            return False
        return not ctx.is_session_approved(skill_id)

    # -- display --------------------------------------------------------------

    def skill_info(self, skill_id: str) -> Optional[SkillInfo]:
        skill = self._skills.get(skill_id)
        if skill is None:
            return None
        return SkillInfo(
            id=skill.id,
            name=skill.name,
            description=skill.description,
            permission_level=skill.permission_level,
            modes=list(skill.modes),
            user_permission=self.get_permission(skill.id),
        )

    def skills_info_for_mode(self, mode: Mode) -> List[SkillInfo]:
        return [self.skill_info(s.id) for s in self.for_mode(mode)]
