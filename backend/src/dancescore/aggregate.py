from __future__ import annotations

import logging
from enum import Enum
from typing import Iterable, Mapping, Sequence

from .domain import AggregatedRow, DraftValue, Judge, Participant, ScoringItem, natural_key
from .overlay import participant_total

logger = logging.getLogger(__name__)

CellsForCategory = Mapping[str, Mapping[str, Mapping[str, float]]]


class Scope(str, Enum):
    SELF = "self"
    ALL = "all"


def judge_labels(judges: Iterable[Judge]) -> dict[str, str]:
    """登録審査員に J1, J2 ... の表示ラベルを振る（名前の自然順）。"""

    ordered = sorted(judges, key=lambda j: (natural_key(j.name), j.email))
    return {judge.email: f"J{idx}" for idx, judge in enumerate(ordered, start=1)}


def aggregate(
    participants: Sequence[Participant],
    cells_for_category: CellsForCategory,
    scope: Scope,
    *,
    judges: Sequence[Judge] = (),
    draft: Mapping[str, Mapping[str, DraftValue]] | None = None,
    items: Sequence[ScoringItem] | None = None,
) -> list[AggregatedRow]:
    """参加者ごとの合計・平均・採点済み審査員数を求める。

    ``Scope.SELF`` は審査員本人の下書きの合計（平均 = 合計）。
    ``Scope.ALL`` は登録審査員全員で割った平均。未採点の審査員は 0 点として数える。
    参加者に保存済みの ``total_score`` があれば、それを優先する。
    """

    if scope is Scope.SELF:
        return [_aggregate_self(p, draft or {}, items) for p in participants]

    labels = judge_labels(judges)
    known = {p.id for p in participants}
    orphaned = [pid for pid in cells_for_category if pid not in known]
    if orphaned:
        logger.debug("Skipping %d orphaned participant(s) with score cells", len(orphaned))

    return [_aggregate_all(p, cells_for_category, judges, labels, items) for p in participants]


def _aggregate_self(
    participant: Participant,
    draft: Mapping[str, Mapping[str, DraftValue]],
    items: Sequence[ScoringItem] | None,
) -> AggregatedRow:
    total = participant_total(draft.get(participant.id), items)
    return AggregatedRow(participant=participant, total_sum=total, average=total, judge_count=1)


def _aggregate_all(
    participant: Participant,
    cells_for_category: CellsForCategory,
    judges: Sequence[Judge],
    labels: Mapping[str, str],
    items: Sequence[ScoringItem] | None,
) -> AggregatedRow:
    by_judge = cells_for_category.get(participant.id, {})
    total_sum = 0.0
    judge_count = 0
    breakdown: dict[str, float] = {}

    for judge in judges:
        judge_total = participant_total(by_judge.get(judge.email), items)
        if judge_total > 0:
            judge_count += 1
        total_sum += judge_total
        breakdown[labels[judge.email]] = judge_total

    if participant.total_score is not None:
        return AggregatedRow(
            participant=participant,
            total_sum=participant.total_score,
            average=participant.total_score,
            judge_count=judge_count,
            judge_breakdown=breakdown,
            overridden=True,
        )

    average = total_sum / len(judges) if judges else 0.0
    return AggregatedRow(
        participant=participant,
        total_sum=total_sum,
        average=average,
        judge_count=judge_count,
        judge_breakdown=breakdown,
    )
