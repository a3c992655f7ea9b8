from __future__ import annotations

import pytest

from dancescore.controller import ScoringController
from dancescore.domain import Category, Competition, Judge, Participant, Role, ScoreCell, ScoringItem
from dancescore.lockstate import Actor
from dancescore.snapshot import ScoreStore, connect_feed
from dancescore.store import InMemoryStore

COUPLE = "2025-salsa-couple"
SOLO = "2025-salsa-shine-solo-man"
JUDGE_J = "j@example.com"
JUDGE_K = "k@example.com"
ADMIN = "admin@example.com"

ITEMS = [
    ScoringItem(id="tech", label="Technique", order=0),
    ScoringItem(id="art", label="Artistry", order=1),
]
SOLO_ITEMS = ITEMS + [ScoringItem(id="teamwork", label="팀워크 (Teamwork)", order=2)]


def make_competition(locked: bool = False) -> Competition:
    return Competition(
        id="2025",
        name="Korea Latin Dance Cup 2025",
        locked=locked,
        categories=[
            Category(id=COUPLE, name="Salsa Couple", order=0, scoring_items=ITEMS),
            Category(id=SOLO, name="Salsa Shine Solo Man", order=1, scoring_items=SOLO_ITEMS),
        ],
    )


def cell(participant_id: str, judge_email: str, category_id: str = COUPLE, **values: float) -> ScoreCell:
    return ScoreCell(
        category_id=category_id, participant_id=participant_id, judge_email=judge_email, values=values
    )


@pytest.fixture
def store() -> InMemoryStore:
    s = InMemoryStore.create()
    s.put_competition(make_competition())
    s.put_participant(Participant(id="p1", category_id=COUPLE, number="1", name="Alpha"))
    s.put_participant(Participant(id="p2", category_id=COUPLE, number="2", name="Bravo"))
    s.put_participant(Participant(id="p10", category_id=COUPLE, number="10", name="Charlie"))
    s.put_participant(Participant(id="s1", category_id=SOLO, number="1", name="Solo"))
    s.put_judge(Judge(email=JUDGE_J, competition_id="2025", name="Judge 1"))
    s.put_judge(Judge(email=JUDGE_K, competition_id="2025", name="Judge 2"))
    s.put_admin(ADMIN)
    return s


@pytest.fixture
def scores(store: InMemoryStore):
    s = ScoreStore()
    unsubscribe = connect_feed(store.subscribe, s)
    yield s
    unsubscribe()


@pytest.fixture
def make_controller(store: InMemoryStore, scores: ScoreStore):
    created: list[ScoringController] = []

    def _make(email: str = JUDGE_J, role: Role = Role.JUDGE, **kwargs) -> ScoringController:
        controller = ScoringController(store, scores, Actor(email=email, role=role), **kwargs)
        controller.refresh()
        created.append(controller)
        return controller

    yield _make
    for controller in created:
        controller.close()
