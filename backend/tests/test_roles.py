from __future__ import annotations

from dancescore.domain import Role
from dancescore.roles import DEFAULT_SPECTATOR_EMAIL, resolve_role


def test_spectator_account_wins_over_other_lists():
    """観戦用アカウントは他の一覧に載っていても SPECTATOR。"""

    role = resolve_role(
        "Guest@Score.com",
        root_admin_emails=[DEFAULT_SPECTATOR_EMAIL],
        judge_emails=[DEFAULT_SPECTATOR_EMAIL],
    )

    assert role is Role.SPECTATOR


def test_role_precedence():
    """ROOT_ADMIN > ADMIN > JUDGE > USER の順で決まる。"""

    kwargs = dict(
        root_admin_emails=["root@example.com"],
        admin_emails=["root@example.com", "admin@example.com"],
        judge_emails=["admin@example.com", "j@example.com"],
    )

    assert resolve_role("root@example.com", **kwargs) is Role.ROOT_ADMIN
    assert resolve_role("ADMIN@example.com", **kwargs) is Role.ADMIN
    assert resolve_role(" j@example.com ", **kwargs) is Role.JUDGE
    assert resolve_role("someone@example.com", **kwargs) is Role.USER
    assert resolve_role("", **kwargs) is Role.USER


def test_admin_roles_are_flagged():
    """is_admin は ADMIN と ROOT_ADMIN だけ。"""

    assert Role.ADMIN.is_admin and Role.ROOT_ADMIN.is_admin
    assert not Role.JUDGE.is_admin
