"""
statrank.engine.rules — Platform/Scope/User Rule Matching
==========================================================

Rules are short strings used to ignore events at capture time:

- ``"help"``                — the activity named ``help`` (or platform ``help``)
- ``"discord:"``            — everything on platform ``discord``
- ``":123456:"``            — everything in scope ``123456``
- ``"::42"``                — everything from user ``42``
- ``"discord:123456:42"``   — any of the three fields matching

A rule matches when it names the activity exactly, or when any of its
non-empty ``platform:scope:user`` segments equals the corresponding field.
"""

from __future__ import annotations

from collections.abc import Iterable


def match_rule(
    rule: str,
    platform: str,
    scope: str,
    user_id: str,
    activity: str | None = None,
) -> bool:
    if not rule:
        return False
    if activity and rule == activity:
        return True
    rule_platform, rule_scope, rule_user = (rule.split(":") + ["", ""])[:3]
    return bool(
        (rule_platform and platform == rule_platform)
        or (rule_scope and scope == rule_scope)
        or (rule_user and user_id == rule_user)
    )


def match_rule_list(
    rules: Iterable[str],
    platform: str,
    scope: str,
    user_id: str,
    activity: str | None = None,
) -> bool:
    """True if any rule in *rules* matches the event coordinates."""
    return any(match_rule(r, platform, scope, user_id, activity) for r in rules)
