from __future__ import annotations

from typing import Mapping, Sequence

from .domain import (
    Category,
    CategoryProgress,
    Competition,
    CompetitionOverview,
    Judge,
    JudgeProgress,
    JudgeStatus,
    Participant,
)
from .snapshot import ScoreSnapshot


def judge_status(judge: Judge, category_id: str, snapshot: ScoreSnapshot) -> JudgeStatus:
    if judge.is_submitted(category_id):
        return JudgeStatus.DONE
    if snapshot.has_judge_cell(category_id, judge.email):
        return JudgeStatus.SCORING
    return JudgeStatus.PENDING


def category_progress(
    category: Category,
    participants: Sequence[Participant],
    judges: Sequence[Judge],
    snapshot: ScoreSnapshot,
) -> CategoryProgress:
    cells = snapshot.category(category.id)
    emails = {j.email for j in judges}
    completed = sum(
        1
        for p in participants
        for email in cells.get(p.id, {})
        if email in emails
    )
    required = len(participants) * len(judges)
    return CategoryProgress(
        category_id=category.id,
        category_name=category.name,
        participant_count=len(participants),
        completed=completed,
        required=required,
        progress=_percent(completed, required),
        judges=[
            JudgeProgress(email=j.email, name=j.name, status=judge_status(j, category.id, snapshot))
            for j in judges
        ],
    )


def competition_overview(
    competition: Competition,
    participants_by_category: Mapping[str, Sequence[Participant]],
    judges: Sequence[Judge],
    snapshot: ScoreSnapshot,
) -> CompetitionOverview:
    """大会全体の提出状況。必要数 = 種目数 × 審査員数、完了数 = 提出済みフラグの数。"""

    categories = competition.ordered_categories()
    category_ids = [c.id for c in categories]

    def is_active(judge: Judge) -> bool:
        if any(judge.submitted_categories.values()):
            return True
        return any(snapshot.has_judge_cell(cid, judge.email) for cid in category_ids)

    completed = sum(1 for c in categories for j in judges if j.is_submitted(c.id))
    required = len(categories) * len(judges)
    return CompetitionOverview(
        competition_id=competition.id,
        total_judges=len(judges),
        active_judges=sum(1 for j in judges if is_active(j)),
        completed_count=completed,
        required_count=required,
        progress=min(_percent(completed, required), 100.0),
        total_participants=sum(len(participants_by_category.get(cid, ())) for cid in category_ids),
        categories=[
            category_progress(c, participants_by_category.get(c.id, ()), judges, snapshot)
            for c in categories
        ],
    )


def _percent(done: int, required: int) -> float:
    return done / required * 100 if required > 0 else 0.0
