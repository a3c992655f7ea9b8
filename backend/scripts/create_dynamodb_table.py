from __future__ import annotations

import argparse
import os

import boto3

from dancescore.domain import Category, Competition, ScoringItem
from dancescore.store import DynamoDBStore

DEFAULT_CATEGORIES = [
    "Salsa Couple",
    "Bachata Couple",
    "Salsa Shine Solo Man",
    "Salsa Shine Solo Woman",
    "Salsa Shine Duo",
    "Bachata Shine Duo",
    "Salsa Group",
    "Bachata Group",
]

DEFAULT_ITEMS = [
    ScoringItem(id="tech", label="기술점수 (Technique)", order=0),
    ScoringItem(id="art", label="예술점수 (Artistry)", order=1),
    ScoringItem(id="teamwork", label="팀워크 (Teamwork)", order=2),
]


def _required_env(name: str) -> str:
    v = os.environ.get(name, "").strip()
    if not v:
        raise SystemExit(f"{name} is required")
    return v


def _slug(name: str) -> str:
    return "-".join(name.lower().split())


def default_competition(year: str) -> Competition:
    return Competition(
        id=year,
        name=year,
        categories=[
            Category(id=f"{year}-{_slug(name)}", name=name, order=i, scoring_items=DEFAULT_ITEMS)
            for i, name in enumerate(DEFAULT_CATEGORIES)
        ],
    )


def create_table(table_name: str) -> None:
    """単一テーブル。pk はコレクション名（COMPETITION / PARTICIPANT / JUDGE / ADMIN / SCORE）、
    sk はドキュメントキー（例: ``{categoryId}_{participantId}_{judgeEmail}``）。"""

    ddb = boto3.client("dynamodb")
    existing = ddb.list_tables().get("TableNames", [])
    if table_name in existing:
        print(f"Table already exists: {table_name}")
        return

    ddb.create_table(
        TableName=table_name,
        AttributeDefinitions=[
            {"AttributeName": "pk", "AttributeType": "S"},
            {"AttributeName": "sk", "AttributeType": "S"},
        ],
        KeySchema=[
            {"AttributeName": "pk", "KeyType": "HASH"},
            {"AttributeName": "sk", "KeyType": "RANGE"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )

    ddb.get_waiter("table_exists").wait(TableName=table_name)
    print(f"Created table: {table_name}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Provision the scoring table")
    parser.add_argument("--seed-year", action="append", default=[], help="create a default competition for YEAR")
    args = parser.parse_args()

    table_name = _required_env("DDB_TABLE_NAME")
    create_table(table_name)

    store = DynamoDBStore(table_name=table_name)
    for year in args.seed_year:
        if store.get_competition(year) is not None:
            print(f"Competition already exists: {year}")
            continue
        store.put_competition(default_competition(year))
        print(f"Seeded competition: {year}")


if __name__ == "__main__":
    main()
