from __future__ import annotations

import pytest

from dancescore.aggregate import Scope, aggregate, judge_labels
from dancescore.domain import Judge, Participant
from dancescore.snapshot import ScoreSnapshot

from conftest import COUPLE, ITEMS, JUDGE_J, JUDGE_K, SOLO_ITEMS, cell

P = Participant(id="p1", category_id=COUPLE, number="1", name="Alpha")
JUDGES = [
    Judge(email=JUDGE_J, competition_id="2025", name="Judge 1"),
    Judge(email=JUDGE_K, competition_id="2025", name="Judge 2"),
]


def test_self_scope_sums_own_draft():
    """審査員本人の表示は下書きの合計（tech=7.0, art=6.5 -> 13.5）。"""

    rows = aggregate([P], {}, Scope.SELF, draft={"p1": {"tech": "7.0", "art": 6.5}}, items=ITEMS)

    assert rows[0].total_sum == 13.5
    assert rows[0].average == 13.5
    assert rows[0].judge_count == 1


def test_all_scope_divides_by_registered_judges():
    """未採点の登録審査員も 0 点として平均に含める（(13.5 + 0) / 2 = 6.75）。"""

    cells = ScoreSnapshot.from_cells([cell("p1", JUDGE_J, tech=7.0, art=6.5)]).category(COUPLE)

    rows = aggregate([P], cells, Scope.ALL, judges=JUDGES, items=ITEMS)

    assert rows[0].total_sum == 13.5
    assert rows[0].average == pytest.approx(6.75)
    assert rows[0].judge_count == 1
    assert rows[0].judge_breakdown == {"J1": 13.5, "J2": 0.0}


def test_all_scope_ignores_cells_of_unregistered_judges():
    """登録されていない審査員のセルは集計しない。"""

    cells = ScoreSnapshot.from_cells(
        [cell("p1", JUDGE_J, tech=8.0), cell("p1", "ghost@example.com", tech=9.9)]
    ).category(COUPLE)

    rows = aggregate([P], cells, Scope.ALL, judges=JUDGES)

    assert rows[0].total_sum == 8.0
    assert rows[0].average == 4.0


def test_zero_scores_give_zero_average():
    """採点が 1 件も無い参加者の平均は 0。"""

    rows = aggregate([P], {}, Scope.ALL, judges=JUDGES)

    assert rows[0].average == 0
    assert rows[0].judge_count == 0


def test_no_registered_judges_gives_zero_average():
    """登録審査員がいなければ平均は 0（0 除算しない）。"""

    cells = ScoreSnapshot.from_cells([cell("p1", JUDGE_J, tech=8.0)]).category(COUPLE)

    rows = aggregate([P], cells, Scope.ALL, judges=[])

    assert rows[0].average == 0.0


def test_persisted_total_score_overrides_live_value():
    """保存済みの totalScore があればライブ集計より優先する。"""

    legacy = P.model_copy(update={"total_score": 17.2})
    cells = ScoreSnapshot.from_cells([cell("p1", JUDGE_J, tech=7.0)]).category(COUPLE)

    rows = aggregate([legacy], cells, Scope.ALL, judges=JUDGES)

    assert rows[0].average == 17.2
    assert rows[0].overridden


def test_teamwork_is_excluded_for_solo_items():
    """ソロ種目の採点対象から teamwork を外すと合計にも入らない。"""

    from dancescore.domain import Category

    solo = Category(id="solo", name="Salsa Shine SOLO Woman", scoring_items=SOLO_ITEMS)
    draft = {"p1": {"tech": 7.0, "art": 7.0, "teamwork": 9.0}}

    rows = aggregate([P], {}, Scope.SELF, draft=draft, items=solo.active_items())

    assert [i.id for i in solo.active_items()] == ["tech", "art"]
    assert rows[0].total_sum == 14.0


def test_orphaned_cells_do_not_break_aggregation():
    """参加者一覧に無い参加者のセルがあっても落ちずに無視する。"""

    cells = ScoreSnapshot.from_cells(
        [cell("p1", JUDGE_J, tech=7.0), cell("gone", JUDGE_J, tech=9.9)]
    ).category(COUPLE)

    rows = aggregate([P], cells, Scope.ALL, judges=JUDGES)

    assert [r.participant.id for r in rows] == ["p1"]


def test_judge_labels_follow_natural_name_order():
    """J1, J2 ... は名前の自然順（"Judge 2" < "Judge 10"）。"""

    judges = [
        Judge(email="a@example.com", competition_id="c", name="Judge 10"),
        Judge(email="b@example.com", competition_id="c", name="Judge 2"),
    ]

    assert judge_labels(judges) == {"b@example.com": "J1", "a@example.com": "J2"}
