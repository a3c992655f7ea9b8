from __future__ import annotations

import asyncio
import functools
import logging
from typing import Callable

from .aggregate import Scope, aggregate
from .domain import (
    Category,
    Competition,
    CompetitionOverview,
    Judge,
    Participant,
    RankedRow,
    Role,
    ScoreCell,
    SubmissionBatch,
    natural_key,
)
from .errors import (
    EditNotAllowed,
    IncompleteSubmission,
    PersistenceFailure,
    StaleReferenceError,
    SubmissionInProgress,
)
from .lockstate import (
    Actor,
    CellRef,
    LockState,
    SubmissionEvent,
    SubmissionState,
    can_edit,
    find_missing,
    lock_category as lock_category_in,
    lock_competition as cascade_competition_lock,
    shows_locked,
    state_of,
    transition,
)
from .overlay import Draft, copy_draft, finalized_values, participant_total, reconcile, with_value
from .progress import competition_overview
from .ranking import rank
from .snapshot import ScoreSnapshot, ScoreStore
from .store import DocumentStore
from .validation import complete_on_blur, format_score_input, parse_draft_value

logger = logging.getLogger(__name__)


class ScoringController:
    """採点画面とリーダーボードが共有するアプリケーション状態。

    画面側は読み取り用のスナップショット（``draft``, ``leaderboard()`` など）を参照し、
    変更は ``load`` / ``select_category`` / ``edit_cell`` / ``submit`` / ``reopen`` などの
    コマンド経由でのみ行う。ScoreStore の更新を購読し、そのたびに下書きを突き合わせる。
    """

    def __init__(
        self,
        store: DocumentStore,
        scores: ScoreStore,
        actor: Actor,
        *,
        submit_timeout: float = 15.0,
    ):
        self._store = store
        self._scores = scores
        self.actor = actor
        self._submit_timeout = submit_timeout
        self._competitions: dict[str, Competition] = {}
        self._participants: dict[str, list[Participant]] = {}
        self._judges: dict[str, list[Judge]] = {}
        self._category_id: str | None = None
        self._draft: Draft = {}
        self._saving = False
        self._unsubscribe: Callable[[], None] = scores.subscribe(self._on_snapshot)

    # --- loading -----------------------------------------------------------

    def load(self) -> None:
        """大会・参加者・審査員の一覧を永続化層から読み直す。"""

        self._competitions = {c.id: c for c in self._store.list_competitions()}

        participants: dict[str, list[Participant]] = {}
        for p in self._store.list_participants():
            participants.setdefault(p.category_id, []).append(p)
        for plist in participants.values():
            plist.sort(key=lambda p: (natural_key(p.number), natural_key(p.name)))
        self._participants = participants

        judges: dict[str, list[Judge]] = {}
        for j in self._store.list_judges():
            judges.setdefault(j.competition_id, []).append(j)
        self._judges = judges

    def refresh(self) -> None:
        """プッシュ通知の無い永続化層向け。スコアも全件読み直して配信する。"""

        self.load()
        self._scores.replace_all(self._store.list_score_cells())

    def close(self) -> None:
        self._unsubscribe()

    # --- read-only views ---------------------------------------------------

    @property
    def selected_category_id(self) -> str | None:
        return self._category_id

    @property
    def draft(self) -> Draft:
        return copy_draft(self._draft)

    @property
    def saving(self) -> bool:
        return self._saving

    @property
    def snapshot(self) -> ScoreSnapshot:
        return self._scores.snapshot

    def competitions(self) -> list[Competition]:
        return list(self._competitions.values())

    def find_category(self, category_id: str) -> tuple[Competition, Category]:
        for competition in self._competitions.values():
            category = competition.find_category(category_id)
            if category is not None:
                return competition, category
        raise StaleReferenceError(f"category {category_id} does not exist")

    def find_competition(self, competition_id: str) -> Competition:
        competition = self._competitions.get(competition_id)
        if competition is None:
            raise StaleReferenceError(f"competition {competition_id} does not exist")
        return competition

    def participants_for(self, category_id: str) -> list[Participant]:
        return list(self._participants.get(category_id, []))

    def judges_for(self, competition_id: str) -> list[Judge]:
        return list(self._judges.get(competition_id, []))

    def judge_for(self, competition_id: str) -> Judge | None:
        for judge in self._judges.get(competition_id, []):
            if judge.email == self.actor.email:
                return judge
        return None

    def lock_state(self, category_id: str) -> LockState:
        competition, category = self.find_category(category_id)
        return LockState.of(competition, category, self.judge_for(competition.id))

    def submission_state(self, category_id: str) -> SubmissionState:
        competition, _category = self.find_category(category_id)
        return state_of(self.judge_for(competition.id), category_id)

    def is_editable(self, category_id: str) -> bool:
        competition, category = self.find_category(category_id)
        judge = self.judge_for(competition.id)
        if judge is None:
            return False
        lock = LockState.of(competition, category, judge)
        return can_edit(self.actor, CellRef(category_id, self.actor.email), lock)

    def displays_locked(self, category_id: str) -> bool:
        return shows_locked(self.actor, self.lock_state(category_id))

    def scope_for(self, competition: Competition) -> Scope:
        if self.actor.role is Role.JUDGE and self.judge_for(competition.id) is not None:
            return Scope.SELF
        return Scope.ALL

    def totals(self) -> dict[str, float]:
        if self._category_id is None:
            return {}
        _competition, category = self.find_category(self._category_id)
        items = category.active_items()
        return {
            p.id: participant_total(self._draft.get(p.id), items)
            for p in self.participants_for(self._category_id)
        }

    def leaderboard(self, category_id: str) -> list[RankedRow]:
        competition, category = self.find_category(category_id)
        participants = self.participants_for(category_id)
        items = category.active_items()
        snapshot = self._scores.snapshot

        if self.scope_for(competition) is Scope.SELF:
            if category_id == self._category_id:
                draft = self._draft
            else:
                draft = reconcile(category_id, self.actor.email, participants, snapshot, None, True)
            rows = aggregate(participants, {}, Scope.SELF, draft=draft, items=items)
            return rank(rows, show_ties=False)

        rows = aggregate(
            participants,
            snapshot.category(category_id),
            Scope.ALL,
            judges=self.judges_for(competition.id),
            items=items,
        )
        show_ties = self.actor.role.is_admin or category.locked or competition.locked
        return rank(rows, show_ties=show_ties)

    def progress(self, competition_id: str) -> CompetitionOverview:
        competition = self.find_competition(competition_id)
        return competition_overview(
            competition,
            {c.id: self.participants_for(c.id) for c in competition.categories},
            self.judges_for(competition_id),
            self._scores.snapshot,
        )

    # --- draft commands ----------------------------------------------------

    def select_category(self, category_id: str) -> Draft:
        self.find_category(category_id)
        changed = category_id != self._category_id
        self._category_id = category_id
        self._draft = reconcile(
            category_id,
            self.actor.email,
            self.participants_for(category_id),
            self._scores.snapshot,
            self._draft,
            changed,
        )
        if changed:
            logger.info("Category selected: %s (judge=%s)", category_id, self.actor.email)
        return self.draft

    def edit_cell(self, participant_id: str, item_id: str, text: str) -> str | None:
        """1 セルの入力。整形後の表示テキストを返す。受け付けない入力なら ``None``。"""

        category = self._require_editable_cell(participant_id, item_id)
        formatted = format_score_input(text)
        if formatted is None:
            return None
        self._draft = with_value(self._draft, participant_id, item_id, formatted)
        logger.debug("Draft edit: %s/%s/%s=%r", category.id, participant_id, item_id, formatted)
        return formatted

    def commit_cell(self, participant_id: str, item_id: str) -> str:
        """フォーカスアウト時の確定。範囲外は丸め、1 桁は補完する。"""

        self._require_editable_cell(participant_id, item_id)
        raw = self._draft.get(participant_id, {}).get(item_id, "")
        text = raw if isinstance(raw, str) else f"{float(raw):.1f}"
        completed = complete_on_blur(text)
        number = parse_draft_value(completed)
        self._draft = with_value(self._draft, participant_id, item_id, "" if number is None else number)
        return completed

    async def submit(self, allow_incomplete: bool = False) -> SubmissionBatch:
        """選択中の種目の下書きを提出する（DRAFT -> SUBMITTED）。

        ScoreCell 全件と審査員の提出フラグを 1 つのバッチでアトミックに書き込む。
        未採点が残っていれば ``IncompleteSubmission`` を送出するので、
        確認後に ``allow_incomplete=True`` で呼び直す。
        """

        if self._saving:
            raise SubmissionInProgress("a submission is already in flight")
        category_id = self._require_selected()
        competition, category = self.find_category(category_id)
        judge = self._require_judge(competition)

        transition(state_of(judge, category_id), SubmissionEvent.SUBMIT)
        lock = LockState.of(competition, category, judge)
        if not can_edit(self.actor, CellRef(category_id, self.actor.email), lock):
            raise EditNotAllowed(f"category {category_id} is locked")

        participants = self.participants_for(category_id)
        items = category.active_items()
        missing = find_missing(items, participants, self._draft)
        if missing and not allow_incomplete:
            raise IncompleteSubmission(missing)

        batch = SubmissionBatch(
            competition_id=competition.id,
            category_id=category_id,
            cells=[
                ScoreCell(
                    category_id=category_id,
                    participant_id=p.id,
                    judge_email=self.actor.email,
                    values=finalized_values(self._draft.get(p.id), items),
                )
                for p in participants
            ],
            judge=judge.model_copy(
                update={"submitted_categories": {**judge.submitted_categories, category_id: True}}
            ),
        )

        self._saving = True
        logger.info(
            "Submitting category=%s judge=%s cells=%d missing=%d",
            category_id,
            self.actor.email,
            len(batch.cells),
            len(missing),
        )
        # 書き込みスレッドが終わるまで saving を保持する
        write = asyncio.ensure_future(asyncio.to_thread(self._store.commit_submission, batch))
        try:
            await asyncio.wait_for(asyncio.shield(write), timeout=self._submit_timeout)
        except asyncio.TimeoutError:
            write.add_done_callback(functools.partial(self._settle_late_write, batch))
            logger.warning("Submission timed out after %gs: category=%s", self._submit_timeout, category_id)
            raise PersistenceFailure(f"submission timed out after {self._submit_timeout:g}s") from None
        except asyncio.CancelledError:
            write.add_done_callback(functools.partial(self._settle_late_write, batch))
            raise
        except PersistenceFailure as exc:
            self._saving = False
            logger.error("Submission failed: category=%s judge=%s: %s", category_id, self.actor.email, exc)
            raise
        except Exception:
            self._saving = False
            raise

        self._saving = False
        self._apply_submission(batch)
        logger.info("Submission complete: category=%s judge=%s", category_id, self.actor.email)
        return batch

    def reopen(self, category_id: str | None = None) -> Judge:
        """提出済みを解除する（SUBMITTED -> DRAFT）。スコアはそのまま残る。"""

        category_id = category_id or self._require_selected()
        competition, category = self.find_category(category_id)
        judge = self._require_judge(competition)

        transition(state_of(judge, category_id), SubmissionEvent.REOPEN)
        if LockState.of(competition, category, None).admin_locked:
            raise EditNotAllowed(f"category {category_id} is locked")

        updated = self._store.set_submission_flag(competition.id, judge.email, category_id, False)
        self._replace_judge(updated)
        logger.info("Submission reopened: category=%s judge=%s", category_id, judge.email)
        return updated

    # --- admin commands ----------------------------------------------------

    def lock_competition(self, competition_id: str, locked: bool) -> Competition:
        self._require_admin()
        updated = cascade_competition_lock(self.find_competition(competition_id), locked)
        self._store.put_competition(updated)
        self._competitions[competition_id] = updated
        logger.info("Competition %s %s by %s", competition_id, "locked" if locked else "unlocked", self.actor.email)
        return updated

    def lock_category(self, category_id: str, locked: bool) -> Competition:
        self._require_admin()
        competition, _category = self.find_category(category_id)
        updated = lock_category_in(competition, category_id, locked)
        self._store.put_competition(updated)
        self._competitions[competition.id] = updated
        logger.info("Category %s %s by %s", category_id, "locked" if locked else "unlocked", self.actor.email)
        return updated

    # --- internals ---------------------------------------------------------

    def _on_snapshot(self, snapshot: ScoreSnapshot) -> None:
        if self._category_id is None:
            return
        self._draft = reconcile(
            self._category_id,
            self.actor.email,
            self.participants_for(self._category_id),
            snapshot,
            self._draft,
            False,
        )

    def _require_selected(self) -> str:
        if self._category_id is None:
            raise StaleReferenceError("no category selected")
        return self._category_id

    def _require_judge(self, competition: Competition) -> Judge:
        judge = self.judge_for(competition.id)
        if self.actor.role is not Role.JUDGE or judge is None:
            raise EditNotAllowed(f"{self.actor.email} is not a judge of {competition.id}")
        return judge

    def _require_admin(self) -> None:
        if not self.actor.role.is_admin:
            raise EditNotAllowed(f"{self.actor.email} is not an admin")

    def _require_editable_cell(self, participant_id: str, item_id: str) -> Category:
        category_id = self._require_selected()
        competition, category = self.find_category(category_id)
        judge = self._require_judge(competition)
        cell = CellRef(category_id, self.actor.email, participant_id)
        if not can_edit(self.actor, cell, LockState.of(competition, category, judge)):
            raise EditNotAllowed(f"scores for {category_id} are locked")
        if participant_id not in {p.id for p in self.participants_for(category_id)}:
            raise StaleReferenceError(f"participant {participant_id} is not in {category_id}")
        if item_id not in {item.id for item in category.active_items()}:
            raise StaleReferenceError(f"scoring item {item_id} is not scored in {category_id}")
        return category

    def _apply_submission(self, batch: SubmissionBatch) -> None:
        self._replace_judge(batch.judge)
        self._scores.apply_many(batch.cells)
        if self._category_id == batch.category_id:
            self._draft = reconcile(
                batch.category_id,
                self.actor.email,
                self.participants_for(batch.category_id),
                self._scores.snapshot,
                None,
                True,
            )

    def _settle_late_write(self, batch: SubmissionBatch, write: asyncio.Future) -> None:
        """タイムアウト後に終わった書き込みの結果を反映する。成功していれば SUBMITTED になる。"""

        self._saving = False
        if write.cancelled():
            return
        exc = write.exception()
        if exc is not None:
            logger.error("Late submission write failed: category=%s judge=%s: %s", batch.category_id, batch.judge.email, exc)
            return
        logger.warning(
            "Submission write completed after timeout: category=%s judge=%s", batch.category_id, batch.judge.email
        )
        self._apply_submission(batch)

    def _replace_judge(self, judge: Judge) -> None:
        judges = self._judges.setdefault(judge.competition_id, [])
        for idx, existing in enumerate(judges):
            if existing.email == judge.email:
                judges[idx] = judge
                return
        judges.append(judge)
