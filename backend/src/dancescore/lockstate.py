from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Sequence

from .domain import Category, Competition, DraftValue, Judge, Participant, Role, ScoringItem, normalize_email
from .errors import InvalidTransition
from .validation import is_valid_score


class SubmissionState(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"


class SubmissionEvent(str, Enum):
    SUBMIT = "submit"
    REOPEN = "reopen"


_TRANSITIONS: dict[tuple[SubmissionState, SubmissionEvent], SubmissionState] = {
    (SubmissionState.DRAFT, SubmissionEvent.SUBMIT): SubmissionState.SUBMITTED,
    (SubmissionState.SUBMITTED, SubmissionEvent.REOPEN): SubmissionState.DRAFT,
}


def transition(state: SubmissionState, event: SubmissionEvent) -> SubmissionState:
    try:
        return _TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransition(f"cannot {event.value} from {state.value}") from None


def state_of(judge: Judge | None, category_id: str) -> SubmissionState:
    if judge is not None and judge.is_submitted(category_id):
        return SubmissionState.SUBMITTED
    return SubmissionState.DRAFT


@dataclass(frozen=True)
class Actor:
    email: str
    role: Role

    def __post_init__(self) -> None:
        object.__setattr__(self, "email", normalize_email(self.email))


@dataclass(frozen=True)
class CellRef:
    category_id: str
    judge_email: str
    participant_id: str | None = None


@dataclass(frozen=True)
class LockState:
    competition_locked: bool = False
    category_locked: bool = False
    submitted: bool = False

    @classmethod
    def of(cls, competition: Competition | None, category: Category | None, judge: Judge | None) -> "LockState":
        return cls(
            competition_locked=competition is not None and competition.locked,
            category_locked=category is not None and category.locked,
            submitted=category is not None and judge is not None and judge.is_submitted(category.id),
        )

    @property
    def admin_locked(self) -> bool:
        return self.competition_locked or self.category_locked

    @property
    def frozen(self) -> bool:
        return self.admin_locked or self.submitted


def can_edit(actor: Actor, cell: CellRef, lock_state: LockState) -> bool:
    """セルを書き換えてよいか。

    管理者は常に可。審査員は自分のセルで、かつ大会・種目ロックも提出済みも無いときだけ可。
    """

    if actor.role.is_admin:
        return True
    if actor.role is not Role.JUDGE:
        return False
    if normalize_email(cell.judge_email) != actor.email:
        return False
    return not lock_state.frozen


def shows_locked(actor: Actor, lock_state: LockState) -> bool:
    """画面上ロック表示にするか。管理者にも大会・種目ロックは表示する。"""

    if actor.role.is_admin:
        return lock_state.admin_locked
    return lock_state.frozen


def lock_competition(competition: Competition, locked: bool) -> Competition:
    """大会ロック。ロック時は全種目もロックする。解除しても種目のロックは外さない。"""

    if not locked:
        return competition.model_copy(update={"locked": False})
    categories = [c.model_copy(update={"locked": True}) for c in competition.categories]
    return competition.model_copy(update={"locked": True, "categories": categories})


def lock_category(competition: Competition, category_id: str, locked: bool) -> Competition:
    if not locked and competition.locked:
        raise InvalidTransition("category cannot be unlocked while its competition is locked")
    if competition.find_category(category_id) is None:
        raise KeyError(category_id)
    categories = [
        c.model_copy(update={"locked": locked}) if c.id == category_id else c
        for c in competition.categories
    ]
    return competition.model_copy(update={"categories": categories})


def find_missing(
    items: Sequence[ScoringItem],
    participants: Sequence[Participant],
    draft: Mapping[str, Mapping[str, DraftValue]],
) -> list[Participant]:
    """採点対象の項目に未入力・不正値が残っている参加者。"""

    missing: list[Participant] = []
    for participant in participants:
        values = draft.get(participant.id, {})
        if any(not is_valid_score(values.get(item.id)) for item in items):
            missing.append(participant)
    return missing
