from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DraftValue = Union[float, str]
RankValue = Union[int, Literal["-"]]

NO_RANK: Literal["-"] = "-"

# 古いスコアドキュメントはこれらを持たずキーだけで識別される
IDENTITY_FIELDS = frozenset({"categoryId", "participantId", "judgeEmail"})


def normalize_email(email: str) -> str:
    return email.strip().lower()


def score_key(category_id: str, participant_id: str, judge_email: str) -> str:
    return f"{category_id}_{participant_id}_{normalize_email(judge_email)}"


def judge_key(competition_id: str, judge_email: str) -> str:
    return f"{competition_id}_{normalize_email(judge_email)}"


def parse_score_key(key: str, known_ids: Iterable[tuple[str, str]] = ()) -> tuple[str, str, str] | None:
    """``{categoryId}_{participantId}_{email}`` を分解する。

    ``known_ids`` に (種目 ID, 参加者 ID) を渡すと、ID に ``_`` を含むキーもその組で照合する。
    渡さない場合は ID に ``_`` が無い前提で先頭 2 つの ``_`` で区切り、残りをメールとする。
    """

    for category_id, participant_id in sorted(known_ids, key=lambda ids: -len(ids[0]) - len(ids[1])):
        prefix = f"{category_id}_{participant_id}_"
        if key.startswith(prefix) and len(key) > len(prefix):
            return category_id, participant_id, key[len(prefix):]

    parts = key.split("_")
    if len(parts) < 3:
        return None
    return parts[0], parts[1], "_".join(parts[2:])


def iso_now() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


_DIGITS = re.compile(r"(\d+)")


def natural_key(value: str | None) -> tuple[Any, ...]:
    """数字部分を数値として比較するソートキー（"2" < "10"）。"""

    parts = _DIGITS.split(value or "")
    return tuple((0, int(p), "") if p.isdigit() else (1, 0, p.lower()) for p in parts if p)


class Role(str, Enum):
    ADMIN = "ADMIN"
    ROOT_ADMIN = "ROOT_ADMIN"
    JUDGE = "JUDGE"
    SPECTATOR = "SPECTATOR"
    USER = "USER"

    @property
    def is_admin(self) -> bool:
        return self in (Role.ADMIN, Role.ROOT_ADMIN)


class Document(BaseModel):
    """ドキュメントストア上の形（camelCase）と相互変換できるモデル。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class ScoringItem(Document):
    id: str
    label: str
    order: int = 0
    disabled: bool = False

    @property
    def is_teamwork(self) -> bool:
        return "teamwork" in self.label.lower()


class Category(Document):
    id: str
    name: str
    order: int = 0
    locked: bool = False
    scoring_items: list[ScoringItem] = Field(default_factory=list)

    @property
    def is_solo(self) -> bool:
        return "SOLO" in self.name.upper()

    def ordered_items(self) -> list[ScoringItem]:
        return sorted(self.scoring_items, key=lambda item: item.order)

    def active_items(self) -> list[ScoringItem]:
        """採点対象の項目。ソロ種目では teamwork を除外する。"""

        return [
            item
            for item in self.ordered_items()
            if not item.disabled and not (self.is_solo and item.is_teamwork)
        ]


class Competition(Document):
    id: str
    name: str
    locked: bool = False
    categories: list[Category] = Field(default_factory=list)

    def ordered_categories(self) -> list[Category]:
        return sorted(self.categories, key=lambda c: c.order)

    def find_category(self, category_id: str) -> Category | None:
        for category in self.categories:
            if category.id == category_id:
                return category
        return None


class Participant(Document):
    id: str
    category_id: str
    number: str = ""
    name: str = ""
    # 過去データ互換の手動上書き値
    total_score: float | None = None
    final_rank: int | None = None
    calculated_rank: int | None = None

    @property
    def rank_override(self) -> int | None:
        return self.final_rank or self.calculated_rank or None


class Judge(Document):
    email: str
    competition_id: str
    name: str = ""
    submitted_categories: dict[str, bool] = Field(default_factory=dict)

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email(cls, v: object) -> str:
        if not isinstance(v, str):
            raise TypeError("email must be a string")
        s = normalize_email(v)
        if not s:
            raise ValueError("email must not be blank")
        return s

    @property
    def key(self) -> str:
        return judge_key(self.competition_id, self.email)

    def is_submitted(self, category_id: str) -> bool:
        return bool(self.submitted_categories.get(category_id, False))


class ScoreCell(Document):
    category_id: str
    participant_id: str
    judge_email: str
    values: dict[str, float] = Field(default_factory=dict)
    updated_at: str = Field(default_factory=iso_now)

    @field_validator("judge_email", mode="before")
    @classmethod
    def _normalize_email(cls, v: object) -> str:
        if not isinstance(v, str):
            raise TypeError("judge_email must be a string")
        return normalize_email(v)

    @property
    def key(self) -> str:
        return score_key(self.category_id, self.participant_id, self.judge_email)

    @classmethod
    def from_document(
        cls, key: str, data: Mapping[str, Any], known_ids: Iterable[tuple[str, str]] = ()
    ) -> "ScoreCell | None":
        """ドキュメントを読み込む。古いドキュメントは ``values`` しか持たないのでキーから補う。"""

        fields = dict(data)
        if not IDENTITY_FIELDS <= fields.keys():
            parsed = parse_score_key(key, known_ids)
            if parsed is not None:
                category_id, participant_id, email = parsed
                fields.setdefault("categoryId", category_id)
                fields.setdefault("participantId", participant_id)
                fields.setdefault("judgeEmail", email)
        if not IDENTITY_FIELDS <= fields.keys():
            return None
        fields["values"] = {k: float(v) for k, v in (fields.get("values") or {}).items()}
        fields.setdefault("updatedAt", "")
        return cls.model_validate(fields)


class SubmissionBatch(BaseModel):
    """1回の提出でアトミックに書き込む N 件の ScoreCell と 1 件の Judge。"""

    competition_id: str
    category_id: str
    cells: list[ScoreCell]
    judge: Judge

    @property
    def size(self) -> int:
        return len(self.cells) + 1


class AggregatedRow(BaseModel):
    participant: Participant
    total_sum: float
    average: float
    judge_count: int
    judge_breakdown: dict[str, float] = Field(default_factory=dict)
    overridden: bool = False


class RankedRow(BaseModel):
    participant_id: str
    number: str
    name: str
    total_sum: float
    average: float
    judge_count: int
    judge_breakdown: dict[str, float] = Field(default_factory=dict)
    rank: RankValue
    is_tied: bool = False


class JudgeStatus(str, Enum):
    DONE = "done"
    SCORING = "scoring"
    PENDING = "pending"


class JudgeProgress(BaseModel):
    email: str
    name: str
    status: JudgeStatus


class CategoryProgress(BaseModel):
    category_id: str
    category_name: str
    participant_count: int
    completed: int
    required: int
    progress: float
    judges: list[JudgeProgress] = Field(default_factory=list)


class CompetitionOverview(BaseModel):
    competition_id: str
    total_judges: int
    active_judges: int
    completed_count: int
    required_count: int
    progress: float
    total_participants: int
    categories: list[CategoryProgress] = Field(default_factory=list)


class EditCellRequest(BaseModel):
    participant_id: str = Field(min_length=1)
    item_id: str = Field(min_length=1)
    text: str = Field(max_length=10)
    commit: bool = False

    @field_validator("text", mode="before")
    @classmethod
    def _strip_text(cls, v: object) -> str:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        if not isinstance(v, str):
            raise TypeError("text must be a string")
        return v.strip()


class EditCellResponse(BaseModel):
    participant_id: str
    item_id: str
    text: str
    accepted: bool


class SubmitRequest(BaseModel):
    allow_incomplete: bool = False


class SubmitResponse(BaseModel):
    category_id: str
    judge_email: str
    cell_count: int


class LockRequest(BaseModel):
    locked: bool


class DraftResponse(BaseModel):
    category_id: str
    judge_email: str
    state: str
    editable: bool
    items: list[ScoringItem]
    draft: dict[str, dict[str, DraftValue]]
    totals: dict[str, float]


class LeaderboardResponse(BaseModel):
    category_id: str
    scope: str
    rows: list[RankedRow]
