from __future__ import annotations

import asyncio
import logging
from types import MappingProxyType
from typing import Callable, Iterable, Mapping

from .domain import ScoreCell, normalize_email

logger = logging.getLogger(__name__)

# categoryId -> participantId -> judgeEmail -> itemId -> value
ScoreTree = dict[str, dict[str, dict[str, dict[str, float]]]]
Listener = Callable[["ScoreSnapshot"], None]

_EMPTY: Mapping = MappingProxyType({})


class ScoreSnapshot:
    """確定済みスコアの不変スナップショット。

    更新は ``with_cell`` で新しいスナップショットを作る。変更した経路だけ
    コピーし、それ以外の枝は前のスナップショットと共有する。
    """

    __slots__ = ("_tree", "version")

    def __init__(self, tree: ScoreTree | None = None, version: int = 0):
        self._tree: ScoreTree = tree or {}
        self.version = version

    @classmethod
    def from_cells(cls, cells: Iterable[ScoreCell], version: int = 0) -> "ScoreSnapshot":
        tree: ScoreTree = {}
        for cell in cells:
            participants = tree.setdefault(cell.category_id, {})
            judges = participants.setdefault(cell.participant_id, {})
            judges[cell.judge_email] = dict(cell.values)
        return cls(tree, version)

    def with_cell(self, cell: ScoreCell) -> "ScoreSnapshot":
        """1 セル分の ``values`` を丸ごと置き換えた新しいスナップショットを返す。"""

        tree = dict(self._tree)
        participants = dict(tree.get(cell.category_id, {}))
        judges = dict(participants.get(cell.participant_id, {}))
        judges[cell.judge_email] = dict(cell.values)
        participants[cell.participant_id] = judges
        tree[cell.category_id] = participants
        return ScoreSnapshot(tree, self.version + 1)

    def category_ids(self) -> list[str]:
        return list(self._tree)

    def category(self, category_id: str) -> Mapping[str, Mapping[str, Mapping[str, float]]]:
        participants = self._tree.get(category_id)
        if participants is None:
            return _EMPTY
        return MappingProxyType(
            {
                pid: MappingProxyType({j: MappingProxyType(v) for j, v in judges.items()})
                for pid, judges in participants.items()
            }
        )

    def cell(self, category_id: str, participant_id: str, judge_email: str) -> Mapping[str, float] | None:
        values = (
            self._tree.get(category_id, {})
            .get(participant_id, {})
            .get(normalize_email(judge_email))
        )
        return None if values is None else MappingProxyType(values)

    def judge_cells(self, category_id: str, judge_email: str) -> dict[str, dict[str, float]]:
        email = normalize_email(judge_email)
        return {
            pid: dict(judges[email])
            for pid, judges in self._tree.get(category_id, {}).items()
            if email in judges
        }

    def has_judge_cell(self, category_id: str, judge_email: str) -> bool:
        email = normalize_email(judge_email)
        return any(email in judges for judges in self._tree.get(category_id, {}).values())

    def to_dict(self) -> ScoreTree:
        return {
            cid: {pid: {j: dict(v) for j, v in judges.items()} for pid, judges in participants.items()}
            for cid, participants in self._tree.items()
        }

    def __len__(self) -> int:
        return sum(len(judges) for participants in self._tree.values() for judges in participants.values())


class ScoreStore:
    """リアルタイムフィードから更新される確定スコアの保持者。

    更新のたびに新しい ``ScoreSnapshot`` を購読者へ配信する。
    """

    def __init__(self, snapshot: ScoreSnapshot | None = None):
        self._snapshot = snapshot or ScoreSnapshot()
        self._listeners: list[Listener] = []

    @property
    def snapshot(self) -> ScoreSnapshot:
        return self._snapshot

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def apply(self, cell: ScoreCell) -> ScoreSnapshot:
        self._snapshot = self._snapshot.with_cell(cell)
        self._publish()
        return self._snapshot

    def apply_many(self, cells: Iterable[ScoreCell]) -> ScoreSnapshot:
        snapshot = self._snapshot
        for cell in cells:
            snapshot = snapshot.with_cell(cell)
        self._snapshot = snapshot
        self._publish()
        return snapshot

    def replace_all(self, cells: Iterable[ScoreCell]) -> ScoreSnapshot:
        self._snapshot = ScoreSnapshot.from_cells(cells, self._snapshot.version + 1)
        self._publish()
        return self._snapshot

    def _publish(self) -> None:
        snapshot = self._snapshot
        logger.debug(
            "Scores updated: version=%d categories=%d cells=%d",
            snapshot.version,
            len(snapshot.category_ids()),
            len(snapshot),
        )
        for listener in list(self._listeners):
            listener(snapshot)


def connect_feed(
    subscribe: Callable[[Callable[[ScoreCell], None]], Callable[[], None]],
    scores: ScoreStore,
    loop: asyncio.AbstractEventLoop | None = None,
) -> Callable[[], None]:
    """永続化層のフィードを ScoreStore につなぐ。

    ``loop`` を渡した場合、別スレッドから届いた更新もイベントループ上で
    適用する（UI 操作と同じ実行コンテキストに直列化する）。
    """

    if loop is None:
        return subscribe(scores.apply)

    def on_cell(cell: ScoreCell) -> None:
        loop.call_soon_threadsafe(scores.apply, cell)

    return subscribe(on_cell)
