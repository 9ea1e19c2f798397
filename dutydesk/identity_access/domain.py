"""
Identity domain constants and simple helpers.

Why:
- Centralize test types, duty roles and result values to avoid drift between
  the capability resolver, the live workflows and the web layer.
"""

from __future__ import annotations

# Immutable to prevent accidental mutation.
TEST_TYPES = frozenset({"academie", "radio", "mdt"})
DUTY_ROLES = frozenset({"radio", "mdt", "general"})
RESULTS = frozenset({"ADMIS", "RESPINS"})

# testType -> duty role that covers it
DUTY_ROLE_FOR_TEST_TYPE = {
    "academie": "general",
    "radio": "radio",
    "mdt": "mdt",
}


def normalize_test_type(value: object) -> str:
    return str(value or "").strip().lower()


__all__ = ["TEST_TYPES", "DUTY_ROLES", "RESULTS", "DUTY_ROLE_FOR_TEST_TYPE", "normalize_test_type"]
