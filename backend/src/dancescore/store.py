from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Iterable, Iterator, Protocol

import boto3
from boto3.dynamodb.conditions import Key
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .config import Settings
from .domain import (
    IDENTITY_FIELDS,
    Competition,
    Judge,
    Participant,
    ScoreCell,
    SubmissionBatch,
    judge_key,
    normalize_email,
)
from .errors import PersistenceFailure
from .validation import ensure_score_in_range

logger = logging.getLogger(__name__)

ScoreListener = Callable[[ScoreCell], None]

# DynamoDB TransactWriteItems の上限
TRANSACT_LIMIT = 100
MAX_ATTEMPTS = 2


class DocumentStore(Protocol):
    def list_competitions(self) -> list[Competition]: ...

    def get_competition(self, competition_id: str) -> Competition | None: ...

    def put_competition(self, competition: Competition) -> None: ...

    def list_participants(self, category_id: str | None = None) -> list[Participant]: ...

    def list_judges(self, competition_id: str | None = None) -> list[Judge]: ...

    def get_judge(self, competition_id: str, email: str) -> Judge | None: ...

    def list_admin_emails(self) -> list[str]: ...

    def list_score_cells(self) -> list[ScoreCell]: ...

    def commit_submission(self, batch: SubmissionBatch) -> None: ...

    def set_submission_flag(
        self, competition_id: str, email: str, category_id: str, submitted: bool
    ) -> Judge: ...

    def subscribe(self, listener: ScoreListener) -> Callable[[], None]: ...


def validate_batch(batch: SubmissionBatch) -> None:
    """書き込み前に一括書き込み全体を検査する。1 件でも不正なら何も書かない。"""

    email = batch.judge.email
    if batch.judge.competition_id != batch.competition_id:
        raise PersistenceFailure("judge document belongs to another competition")
    for cell in batch.cells:
        if cell.category_id != batch.category_id or cell.judge_email != email:
            raise PersistenceFailure(f"score cell {cell.key} does not belong to this submission")
        for item_id, value in cell.values.items():
            ensure_score_in_range(value, item_id)


class _Feed:
    listeners: list[ScoreListener]

    def subscribe(self, listener: ScoreListener) -> Callable[[], None]:
        self.listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self.listeners:
                self.listeners.remove(listener)

        return unsubscribe

    def _notify(self, cells: Iterable[ScoreCell]) -> None:
        for cell in cells:
            for listener in list(self.listeners):
                listener(cell)


@dataclass
class InMemoryStore(_Feed):
    competitions: dict[str, Competition]
    participants: dict[str, Participant]
    judges: dict[str, Judge]
    admins: set[str]
    scores: dict[str, ScoreCell]
    listeners: list[ScoreListener] = field(default_factory=list)

    @classmethod
    def create(cls) -> "InMemoryStore":
        return cls(competitions={}, participants={}, judges={}, admins=set(), scores={})

    def list_competitions(self) -> list[Competition]:
        return list(self.competitions.values())

    def get_competition(self, competition_id: str) -> Competition | None:
        return self.competitions.get(competition_id)

    def put_competition(self, competition: Competition) -> None:
        self.competitions[competition.id] = competition

    def put_participant(self, participant: Participant) -> None:
        self.participants[f"{participant.category_id}_{participant.id}"] = participant

    def list_participants(self, category_id: str | None = None) -> list[Participant]:
        return [
            p for p in self.participants.values() if category_id is None or p.category_id == category_id
        ]

    def put_judge(self, judge: Judge) -> None:
        self.judges[judge.key] = judge

    def list_judges(self, competition_id: str | None = None) -> list[Judge]:
        return [
            j for j in self.judges.values() if competition_id is None or j.competition_id == competition_id
        ]

    def get_judge(self, competition_id: str, email: str) -> Judge | None:
        return self.judges.get(judge_key(competition_id, email))

    def put_admin(self, email: str) -> None:
        self.admins.add(normalize_email(email))

    def list_admin_emails(self) -> list[str]:
        return sorted(self.admins)

    def put_score_cell(self, cell: ScoreCell) -> None:
        """他のクライアントによる書き込み。フィード購読者へ配信する。"""

        self.scores[cell.key] = cell
        self._notify([cell])

    def list_score_cells(self) -> list[ScoreCell]:
        return list(self.scores.values())

    def commit_submission(self, batch: SubmissionBatch) -> None:
        validate_batch(batch)
        if batch.judge.key not in self.judges:
            raise PersistenceFailure(f"judge {batch.judge.email} is not registered")

        for cell in batch.cells:
            self.scores[cell.key] = cell
        self.judges[batch.judge.key] = batch.judge
        logger.info(
            "Committed submission: category=%s judge=%s cells=%d",
            batch.category_id,
            batch.judge.email,
            len(batch.cells),
        )
        self._notify(batch.cells)

    def set_submission_flag(
        self, competition_id: str, email: str, category_id: str, submitted: bool
    ) -> Judge:
        judge = self.get_judge(competition_id, email)
        if judge is None:
            raise KeyError("judge not found")
        updated = _with_flag(judge, category_id, submitted)
        self.judges[updated.key] = updated
        return updated


@dataclass
class DynamoDBStore(_Feed):
    table_name: str
    table: Any = None
    timeout_seconds: float = 15.0
    listeners: list[ScoreListener] = field(default_factory=list)

    @classmethod
    def from_settings(cls, settings: Settings) -> "DynamoDBStore":
        if not settings.ddb_table_name:
            raise RuntimeError("DDB_TABLE_NAME is required for dynamodb store")
        return cls(table_name=settings.ddb_table_name, timeout_seconds=settings.submit_timeout_seconds)

    @property
    def _table(self):
        if self.table is None:
            ddb = boto3.resource("dynamodb", config=client_config(self.timeout_seconds))
            self.table = ddb.Table(self.table_name)
        return self.table

    def list_competitions(self) -> list[Competition]:
        return [Competition.model_validate(_from_ddb(it["data"])) for it in self._query("COMPETITION")]

    def get_competition(self, competition_id: str) -> Competition | None:
        item = self._get("COMPETITION", competition_id)
        return None if item is None else Competition.model_validate(_from_ddb(item["data"]))

    def put_competition(self, competition: Competition) -> None:
        self._put("COMPETITION", competition.id, competition.to_document())

    def list_participants(self, category_id: str | None = None) -> list[Participant]:
        prefix = f"{category_id}_" if category_id is not None else None
        return [Participant.model_validate(_from_ddb(it["data"])) for it in self._query("PARTICIPANT", prefix)]

    def list_judges(self, competition_id: str | None = None) -> list[Judge]:
        prefix = f"{competition_id}_" if competition_id is not None else None
        return [Judge.model_validate(_from_ddb(it["data"])) for it in self._query("JUDGE", prefix)]

    def get_judge(self, competition_id: str, email: str) -> Judge | None:
        item = self._get("JUDGE", judge_key(competition_id, email))
        return None if item is None else Judge.model_validate(_from_ddb(item["data"]))

    def list_admin_emails(self) -> list[str]:
        return [normalize_email(it["sk"]) for it in self._query("ADMIN")]

    def list_score_cells(self) -> list[ScoreCell]:
        items = [(it["sk"], _from_ddb(it.get("data", {}))) for it in self._query("SCORE")]
        known: list[tuple[str, str]] = []
        if any(not IDENTITY_FIELDS <= data.keys() for _, data in items):
            # sk: {categoryId}_{participantId}_{judgeEmail}。ID の "_" は登録済み参加者で見分ける
            known = [(p.category_id, p.id) for p in self.list_participants()]
        cells: list[ScoreCell] = []
        for sk, data in items:
            cell = ScoreCell.from_document(sk, data, known)
            if cell is not None:
                cells.append(cell)
        return cells

    def commit_submission(self, batch: SubmissionBatch) -> None:
        validate_batch(batch)
        if batch.size > TRANSACT_LIMIT:
            raise PersistenceFailure(
                f"submission has {batch.size} documents, above the {TRANSACT_LIMIT} item transaction limit"
            )

        transact_items = [
            {"Put": {"TableName": self.table_name, "Item": _item("SCORE", cell.key, cell.to_document())}}
            for cell in batch.cells
        ]
        transact_items.append(
            {"Put": {"TableName": self.table_name, "Item": _item("JUDGE", batch.judge.key, batch.judge.to_document())}}
        )
        try:
            self._table.meta.client.transact_write_items(TransactItems=transact_items)
        except (BotoCoreError, ClientError) as exc:
            raise PersistenceFailure(str(exc)) from exc
        logger.info(
            "Committed submission transaction: category=%s judge=%s items=%d",
            batch.category_id,
            batch.judge.email,
            len(transact_items),
        )
        self._notify(batch.cells)

    def set_submission_flag(
        self, competition_id: str, email: str, category_id: str, submitted: bool
    ) -> Judge:
        judge = self.get_judge(competition_id, email)
        if judge is None:
            raise KeyError("judge not found")
        updated = _with_flag(judge, category_id, submitted)
        self._put("JUDGE", updated.key, updated.to_document())
        return updated

    def _get(self, pk: str, sk: str) -> dict | None:
        try:
            resp = self._table.get_item(Key={"pk": pk, "sk": sk})
        except (BotoCoreError, ClientError) as exc:
            raise PersistenceFailure(str(exc)) from exc
        return resp.get("Item") or None

    def _put(self, pk: str, sk: str, data: dict) -> None:
        try:
            self._table.put_item(Item=_item(pk, sk, data))
        except (BotoCoreError, ClientError) as exc:
            raise PersistenceFailure(str(exc)) from exc

    def _query(self, pk: str, sk_prefix: str | None = None) -> Iterator[dict]:
        condition = Key("pk").eq(pk)
        if sk_prefix is not None:
            condition = condition & Key("sk").begins_with(sk_prefix)
        kwargs: dict[str, Any] = {"KeyConditionExpression": condition}
        while True:
            try:
                resp = self._table.query(**kwargs)
            except (BotoCoreError, ClientError) as exc:
                raise PersistenceFailure(str(exc)) from exc
            yield from resp.get("Items", [])
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return
            kwargs["ExclusiveStartKey"] = last_key


def client_config(timeout_seconds: float) -> Config:
    """接続・読み取り時間と再試行回数を絞り、書き込みが提出タイムアウト内に成否を返すようにする。"""

    per_attempt = max(timeout_seconds / (2 * MAX_ATTEMPTS), 1.0)
    return Config(
        connect_timeout=per_attempt,
        read_timeout=per_attempt,
        retries={"max_attempts": MAX_ATTEMPTS, "mode": "standard"},
    )


def build_store(settings: Settings | None = None) -> DocumentStore:
    settings = settings or Settings.from_env()
    if settings.store_backend == "dynamodb":
        return DynamoDBStore.from_settings(settings)
    return InMemoryStore.create()


def _with_flag(judge: Judge, category_id: str, submitted: bool) -> Judge:
    flags = dict(judge.submitted_categories)
    flags[category_id] = submitted
    return judge.model_copy(update={"submitted_categories": flags})


def _item(pk: str, sk: str, data: dict) -> dict:
    return {"pk": pk, "sk": sk, "data": _to_ddb(data)}


def _to_ddb(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_ddb(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_ddb(v) for v in value]
    return value


def _from_ddb(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _from_ddb(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_ddb(v) for v in value]
    return value
