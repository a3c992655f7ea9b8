from __future__ import annotations

import math

from .domain import DraftValue
from .errors import ScoreValidationError

MIN_SCORE = 5.5
MAX_SCORE = 9.9
MAX_INPUT_LENGTH = 3

_LEADING_DIGITS = "56789"


def format_score_input(text: str) -> str | None:
    """入力途中のテキストを整形する。受け付けない入力は ``None``（直前の表示を維持）。

    - 先頭は 5〜9 の数字のみ
    - 2 桁目が数字なら小数点を自動挿入（"55" -> "5.5"）
    - 5.5 未満になる組み合わせ（"5" + 0〜4）は拒否
    - 3 文字を超えた分は切り捨て
    """

    if text == "":
        return ""
    if text[0] not in _LEADING_DIGITS:
        return None

    text = text[:MAX_INPUT_LENGTH]
    if len(text) == 1:
        return text

    if len(text) == 2:
        second = text[1]
        if second == ".":
            return text
        if not second.isdigit():
            return None
        if _below_floor(text[0], second):
            return None
        return f"{text[0]}.{second}"

    if text[1] != "." or not text[2].isdigit():
        return None
    if _below_floor(text[0], text[2]):
        return None
    return text


def complete_on_blur(text: str) -> str:
    """フォーカスが外れたときに値を確定させる。

    1 桁だけなら ".0" を補う（"5" は "5.5"）。範囲外は [5.5, 9.9] に丸める。
    数値として読めない入力は空にする。
    """

    text = text.strip()
    if text == "":
        return ""
    if text == "5":
        return f"{MIN_SCORE:.1f}"
    if text.endswith("."):
        text += "0"
    try:
        value = float(text)
    except ValueError:
        return ""
    if math.isnan(value):
        return ""
    return f"{clamp_score(value):.1f}"


def clamp_score(value: float) -> float:
    return min(max(value, MIN_SCORE), MAX_SCORE)


def parse_draft_value(value: DraftValue | None) -> float | None:
    """下書きの値を数値にする。未入力・数値でないものは ``None``。"""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        s = value.strip()
        if not s:
            return None
        try:
            number = float(s)
        except ValueError:
            return None
    if math.isnan(number):
        return None
    return number


def is_valid_score(value: DraftValue | None) -> bool:
    number = parse_draft_value(value)
    return number is not None and MIN_SCORE <= number <= MAX_SCORE


def ensure_score_in_range(value: object, item_id: str | None = None) -> float:
    """永続化前の権威ある範囲チェック。"""

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ScoreValidationError(value, item_id)
    number = float(value)
    if math.isnan(number) or not MIN_SCORE <= number <= MAX_SCORE:
        raise ScoreValidationError(value, item_id)
    return number


def _below_floor(integer: str, fraction: str) -> bool:
    return integer == "5" and fraction < "5"
