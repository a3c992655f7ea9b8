from __future__ import annotations

import pytest
from pydantic import ValidationError

from dancescore.domain import Category, EditCellRequest, Judge, Participant, ScoringItem


def test_edit_cell_request_strips_text_and_limits_length():
    """入力テキストは前後の空白を除き、長すぎる入力は弾く。"""

    req = EditCellRequest(participant_id="p1", item_id="tech", text=" 55 ")
    assert req.text == "55"

    with pytest.raises(ValidationError):
        EditCellRequest(participant_id="p1", item_id="tech", text="1" * 11)


def test_edit_cell_request_requires_ids():
    """参加者 ID・項目 ID が空なら弾く。"""

    with pytest.raises(ValidationError):
        EditCellRequest(participant_id="", item_id="tech", text="7")
    with pytest.raises(ValidationError):
        EditCellRequest(participant_id="p1", item_id="", text="7")


def test_judge_email_is_lowercased_and_required():
    """審査員メールは小文字に正規化し、空白のみは弾く。"""

    assert Judge(email=" Judge@Example.COM ", competition_id="2025").email == "judge@example.com"
    with pytest.raises(ValidationError):
        Judge(email="   ", competition_id="2025")


def test_participant_document_uses_camel_case():
    """参加者ドキュメントは categoryId / totalScore などの camelCase。"""

    doc = Participant(id="p1", category_id="c1", number="7", name="Alpha").to_document()
    assert doc["categoryId"] == "c1"
    assert "totalScore" in doc and "finalRank" in doc

    parsed = Participant.model_validate({"id": "p2", "categoryId": "c1", "finalRank": 3})
    assert parsed.rank_override == 3


def test_active_items_skip_disabled_and_solo_teamwork():
    """採点対象は表示順で、無効化した項目とソロ種目の teamwork を除く。"""

    items = [
        ScoringItem(id="art", label="Artistry", order=1),
        ScoringItem(id="tech", label="Technique", order=0),
        ScoringItem(id="show", label="Showmanship", order=2, disabled=True),
        ScoringItem(id="teamwork", label="Teamwork", order=3),
    ]

    couple = Category(id="c", name="Bachata Couple", scoring_items=items)
    solo = Category(id="s", name="Bachata Shine Solo Woman", scoring_items=items)

    assert [i.id for i in couple.active_items()] == ["tech", "art", "teamwork"]
    assert [i.id for i in solo.active_items()] == ["tech", "art"]
