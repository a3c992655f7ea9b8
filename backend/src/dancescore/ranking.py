from __future__ import annotations

import math
from collections import Counter
from typing import Sequence

from .domain import NO_RANK, AggregatedRow, RankedRow, RankValue, natural_key


def competition_rank_desc(pairs: list[tuple[str, float]]) -> dict[str, int]:
    """平均点降順の標準競技順位（Standard Competition Ranking）を返す。

    同点は同順位、次の順位は並び順の位置から再開する（例: 1,1,3）。
    同点判定は小数点以下 2 桁で行う。
    """

    sorted_pairs = sorted(pairs, key=lambda x: -x[1])
    ranks: dict[str, int] = {}
    last_score: float | None = None
    current_rank = 0

    for position, (key, score) in enumerate(sorted_pairs, start=1):
        rounded = round(score, 2)
        if last_score is None or rounded != last_score:
            current_rank = position
            last_score = rounded
        ranks[key] = current_rank

    return ranks


def rank(rows: Sequence[AggregatedRow], *, show_ties: bool = False) -> list[RankedRow]:
    """集計結果に順位を付け、表示順に並べて返す。

    平均 0 の参加者は順位 "-"。参加者に手動確定順位があればそれを使う。
    同点フラグは ``show_ties`` のとき（管理者・ロック後の表示）だけ立てる。
    """

    ranks = competition_rank_desc([(r.participant.id, r.average) for r in rows])
    tie_counts = Counter(round(r.average, 2) for r in rows if r.average != 0)

    ranked: list[RankedRow] = []
    for row in rows:
        p = row.participant
        value: RankValue
        if p.rank_override is not None:
            value = p.rank_override
        elif row.average == 0:
            value = NO_RANK
        else:
            value = ranks[p.id]
        tied = show_ties and row.average != 0 and tie_counts[round(row.average, 2)] > 1
        ranked.append(
            RankedRow(
                participant_id=p.id,
                number=p.number,
                name=p.name,
                total_sum=row.total_sum,
                average=row.average,
                judge_count=row.judge_count,
                judge_breakdown=row.judge_breakdown,
                rank=value,
                is_tied=tied,
            )
        )

    return sorted(ranked, key=display_order_key)


def display_order_key(row: RankedRow) -> tuple:
    rank_key = math.inf if row.rank == NO_RANK else row.rank
    return (rank_key, natural_key(row.number), natural_key(row.name))
