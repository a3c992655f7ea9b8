from __future__ import annotations

from typing import Iterable, Mapping

from .domain import DraftValue, Participant, ScoringItem, normalize_email
from .snapshot import ScoreSnapshot
from .validation import complete_on_blur, parse_draft_value

# participantId -> itemId -> value（"" は未採点）
Draft = dict[str, dict[str, DraftValue]]


def reconcile(
    category_id: str,
    judge_email: str,
    participants: Iterable[Participant],
    store_scores: ScoreSnapshot,
    previous_draft: Mapping[str, Mapping[str, DraftValue]] | None,
    category_changed: bool,
) -> Draft:
    """審査員の下書きをサーバーのスナップショットと突き合わせる。

    種目が変わったときは空の下書きから始め、自分の確定済みスコアだけを写す。
    同じ種目のままなら下書きを保持し、ローカルで空になっている項目だけを
    サーバー値で埋める。ローカルにある値（未保存でも）は上書きしない。
    """

    email = normalize_email(judge_email)
    if category_changed or not previous_draft:
        draft: Draft = {}
    else:
        draft = copy_draft(previous_draft)

    for participant in participants:
        local = draft.setdefault(participant.id, {})
        server = store_scores.cell(category_id, participant.id, email)
        if not server:
            continue
        for item_id, value in server.items():
            if is_empty(local.get(item_id)):
                local[item_id] = value
    return draft


def is_empty(value: DraftValue | None) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def copy_draft(draft: Mapping[str, Mapping[str, DraftValue]]) -> Draft:
    return {pid: dict(values) for pid, values in draft.items()}


def with_value(draft: Mapping[str, Mapping[str, DraftValue]], participant_id: str, item_id: str, value: DraftValue) -> Draft:
    updated = copy_draft(draft)
    updated.setdefault(participant_id, {})[item_id] = value
    return updated


def participant_total(values: Mapping[str, DraftValue] | None, items: Iterable[ScoringItem] | None = None) -> float:
    if not values:
        return 0.0
    keys = values.keys() if items is None else [item.id for item in items]
    total = 0.0
    for key in keys:
        number = parse_draft_value(values.get(key))
        if number is not None:
            total += number
    return total


def finalized_values(values: Mapping[str, DraftValue] | None, items: Iterable[ScoringItem]) -> dict[str, float]:
    """提出用に 1 参加者分の下書きを確定値へ変換する。未入力の項目は含めない。"""

    result: dict[str, float] = {}
    if not values:
        return result
    for item in items:
        raw = values.get(item.id)
        if is_empty(raw):
            continue
        text = raw if isinstance(raw, str) else f"{float(raw):.1f}"
        number = parse_draft_value(complete_on_blur(text))
        if number is not None:
            result[item.id] = number
    return result
