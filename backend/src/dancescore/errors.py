from __future__ import annotations

from typing import Sequence


class ScoreValidationError(ValueError):
    """永続化時の範囲チェック [5.5, 9.9] に違反した値。"""

    def __init__(self, value: object, item_id: str | None = None):
        self.value = value
        self.item_id = item_id
        where = f" for item {item_id!r}" if item_id else ""
        super().__init__(f"score {value!r}{where} is outside [5.5, 9.9]")


class IncompleteSubmission(Exception):
    """未採点の参加者が残ったまま提出しようとした。

    エラーではなく確認待ちの警告。呼び出し側が確認したら
    ``allow_incomplete=True`` で再度提出する。
    """

    def __init__(self, missing: Sequence[object]):
        self.missing = list(missing)
        super().__init__(f"{len(self.missing)} participant(s) have missing scores")


class PersistenceFailure(RuntimeError):
    """一括書き込みが失敗またはタイムアウトした。"""


class EditNotAllowed(PermissionError):
    pass


class SubmissionInProgress(RuntimeError):
    pass


class InvalidTransition(ValueError):
    pass


class StaleReferenceError(LookupError):
    """参照先の Category / Competition が既に存在しない。"""
