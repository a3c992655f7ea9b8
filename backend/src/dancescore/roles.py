from __future__ import annotations

from typing import Iterable

from .domain import Role, normalize_email

DEFAULT_SPECTATOR_EMAIL = "guest@score.com"


def resolve_role(
    email: str,
    *,
    root_admin_emails: Iterable[str] = (),
    admin_emails: Iterable[str] = (),
    judge_emails: Iterable[str] = (),
    spectator_email: str = DEFAULT_SPECTATOR_EMAIL,
) -> Role:
    """メールアドレスから役割を決める。観戦用アカウントは常に SPECTATOR。"""

    e = normalize_email(email)
    if not e:
        return Role.USER
    if e == normalize_email(spectator_email):
        return Role.SPECTATOR
    if e in {normalize_email(x) for x in root_admin_emails}:
        return Role.ROOT_ADMIN
    if e in {normalize_email(x) for x in admin_emails}:
        return Role.ADMIN
    if e in {normalize_email(x) for x in judge_emails}:
        return Role.JUDGE
    return Role.USER
