from __future__ import annotations

from dancescore.domain import Participant
from dancescore.overlay import finalized_values, participant_total, reconcile, with_value
from dancescore.snapshot import ScoreSnapshot

from conftest import COUPLE, ITEMS, JUDGE_J, JUDGE_K, SOLO, cell

PARTICIPANTS = [
    Participant(id="p1", category_id=COUPLE, number="1", name="Alpha"),
    Participant(id="p2", category_id=COUPLE, number="2", name="Bravo"),
]


def _snapshot(*cells) -> ScoreSnapshot:
    return ScoreSnapshot.from_cells(cells)


def test_category_change_starts_from_own_server_values():
    """種目を切り替えたら、自分の確定済みスコアだけで下書きを作る。"""

    snapshot = _snapshot(cell("p1", JUDGE_J, tech=7.0, art=6.5), cell("p1", JUDGE_K, tech=9.0))
    previous = {"p1": {"tech": "8.8"}, "p2": {"art": "6.1"}}

    draft = reconcile(COUPLE, JUDGE_J, PARTICIPANTS, snapshot, previous, category_changed=True)

    assert draft == {"p1": {"tech": 7.0, "art": 6.5}, "p2": {}}


def test_same_category_keeps_unsaved_local_edits():
    """他の審査員の提出でストアが更新されても、未保存の入力は消えない。"""

    previous = {"p1": {"tech": "8.8"}}
    snapshot = _snapshot(cell("p1", JUDGE_K, tech=9.0, art=9.0))

    draft = reconcile(COUPLE, JUDGE_J, PARTICIPANTS, snapshot, previous, category_changed=False)

    assert draft["p1"] == {"tech": "8.8"}


def test_server_value_never_overwrites_local_key():
    """ローカルにある値はサーバー値で上書きしない。空の項目だけ埋める。"""

    previous = {"p1": {"tech": "8.8", "art": ""}}
    snapshot = _snapshot(cell("p1", JUDGE_J, tech=6.0, art=6.5))

    draft = reconcile(COUPLE, JUDGE_J, PARTICIPANTS, snapshot, previous, category_changed=False)

    assert draft["p1"] == {"tech": "8.8", "art": 6.5}


def test_reconcile_does_not_mutate_previous_draft():
    """突き合わせは新しい下書きを返し、元の下書きは変更しない。"""

    previous = {"p1": {"tech": ""}}
    snapshot = _snapshot(cell("p1", JUDGE_J, tech=6.0))

    reconcile(COUPLE, JUDGE_J, PARTICIPANTS, snapshot, previous, category_changed=False)

    assert previous == {"p1": {"tech": ""}}


def test_switching_away_and_back_restores_only_server_values():
    """A -> B -> A と切り替えると、A は最後に同期したサーバー値に戻り B の入力は残らない。"""

    snapshot = _snapshot(cell("p1", JUDGE_J, tech=7.0))
    solo = [Participant(id="s1", category_id=SOLO, number="1", name="Solo")]

    in_a = reconcile(COUPLE, JUDGE_J, PARTICIPANTS, snapshot, None, category_changed=True)
    in_a = with_value(in_a, "p1", "art", "9.1")
    in_b = reconcile(SOLO, JUDGE_J, solo, snapshot, in_a, category_changed=True)
    in_b = with_value(in_b, "s1", "tech", "8.0")
    back = reconcile(COUPLE, JUDGE_J, PARTICIPANTS, snapshot, in_b, category_changed=True)

    assert back == {"p1": {"tech": 7.0}, "p2": {}}


def test_submit_then_reconcile_is_idempotent():
    """提出した値でストアを更新して突き合わせると、提出値と同じ下書きになる。"""

    draft = {"p1": {"tech": "7", "art": "6.5"}, "p2": {"tech": 8.0, "art": "9."}}
    submitted = [
        cell(p.id, JUDGE_J, **finalized_values(draft.get(p.id), ITEMS)) for p in PARTICIPANTS
    ]

    reconciled = reconcile(COUPLE, JUDGE_J, PARTICIPANTS, _snapshot(*submitted), draft, category_changed=True)

    assert reconciled == {c.participant_id: c.values for c in submitted}
    assert reconciled == {"p1": {"tech": 7.0, "art": 6.5}, "p2": {"tech": 8.0, "art": 9.0}}


def test_participant_total_ignores_blank_and_unknown_items():
    """合計は数値として読める値だけ。項目を指定したらそれ以外は数えない。"""

    values = {"tech": "7.0", "art": "", "teamwork": 9.0}

    assert participant_total(values) == 16.0
    assert participant_total(values, ITEMS) == 7.0
    assert participant_total(None) == 0.0
