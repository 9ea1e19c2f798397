"""
Capability resolution from guild role membership.

Why:
    Capabilities are plain booleans derived from the role ids a member holds in
    the guild. Keeping the mapping here (framework-free) lets the login flow,
    the explicit refresh action and the live workflows share one definition.

Permissions:
    Pure functions; no external calls.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from .domain import DUTY_ROLE_FOR_TEST_TYPE, normalize_test_type


def parse_role_ids(raw: str | None) -> frozenset[str]:
    """Parse a comma-separated role id list; empty entries are ignored."""
    if not raw:
        return frozenset()
    return frozenset(part.strip() for part in str(raw).split(",") if part.strip())


@dataclass(frozen=True)
class RoleConfig:
    tester_role_ids: frozenset[str] = field(default_factory=frozenset)
    editor_role_ids: frozenset[str] = field(default_factory=frozenset)
    tester_any_role_id: str | None = None
    radio_role_id: str | None = None
    mdt_role_id: str | None = None


@dataclass(frozen=True)
class Capabilities:
    is_tester: bool = False
    is_editor: bool = False
    can_radio: bool = False
    can_mdt: bool = False

    def duty_roles(self) -> list[str]:
        """Duty roles implied by these flags, in a stable order."""
        roles = []
        if self.can_radio:
            roles.append("radio")
        if self.can_mdt:
            roles.append("mdt")
        if self.is_tester or self.is_editor:
            roles.append("general")
        return roles

    def can_accept(self, test_type: str) -> bool:
        """Return True when these flags may accept a ping of `test_type`.

        Unknown test types are never acceptable.
        """
        role = DUTY_ROLE_FOR_TEST_TYPE.get(normalize_test_type(test_type))
        if role == "radio":
            return self.can_radio
        if role == "mdt":
            return self.can_mdt
        if role == "general":
            return self.is_tester or self.is_editor
        return False

    def as_dict(self) -> dict[str, bool]:
        return {
            "isTester": self.is_tester,
            "isEditor": self.is_editor,
            "canRadio": self.can_radio,
            "canMDT": self.can_mdt,
        }


def resolve_capabilities(roles: Iterable[str], cfg: RoleConfig) -> Capabilities:
    """Compute capability flags from a member's role ids.

    Behavior:
        - tester: any role in `tester_role_ids` or equal to `tester_any_role_id`
        - editor: any role in `editor_role_ids`
        - radio/mdt: membership of the single configured role id
        - unset single role ids never match
    """
    held = {str(r) for r in roles or () if r}

    def _has(role_id: str | None) -> bool:
        return bool(role_id) and role_id in held

    return Capabilities(
        is_tester=bool(held & cfg.tester_role_ids) or _has(cfg.tester_any_role_id),
        is_editor=bool(held & cfg.editor_role_ids),
        can_radio=_has(cfg.radio_role_id),
        can_mdt=_has(cfg.mdt_role_id),
    )


__all__ = ["RoleConfig", "Capabilities", "parse_role_ids", "resolve_capabilities"]
