import io
from datetime import datetime

from openpyxl import load_workbook

from care_records.aggregator import aggregate_sections
from care_records.summarizer import SummaryResult
from care_records.workbook_writer import (
    MERGE_OVERVIEW_TITLE,
    SUMMARY_OVERVIEW_TITLE,
    NameCollisionCounter,
    assign_sheet_name,
    build_merge_workbook,
    build_summarize_merge_workbook,
    build_summary_workbook,
)


def assign_all(names):
    counter = NameCollisionCounter()
    labels = []
    for name in names:
        label, counter = assign_sheet_name(name, counter)
        labels.append(label)
    return labels, counter


def test_repeated_names_get_circled_digits():
    labels, counter = assign_all(["田中さん"] * 3)

    assert labels == ["田中さん", "田中さん①", "田中さん②"]
    assert counter.counts == {"田中さん": 3}


def test_counter_is_not_mutated_in_place():
    counter = NameCollisionCounter()

    label, updated = assign_sheet_name("田中さん", counter)

    assert counter.counts == {}
    assert updated.counts == {"田中さん": 1}


def test_forbidden_characters_are_removed():
    labels, _ = assign_all(["田中[1]/さん?", "a*b:c\\d"])

    assert labels == ["田中1さん", "abcd"]


def test_labels_fit_in_31_characters():
    long_name = "あ" * 40 + "さん"

    labels, _ = assign_all([long_name] * 3)

    assert all(len(label) <= 31 for label in labels)
    assert labels[0] == "あ" * 31
    assert labels[1] == "あ" * 30 + "①"


def test_after_twenty_collisions_numbers_are_parenthesized():
    labels, _ = assign_all(["田中さん"] * 23)

    assert labels[20] == "田中さん⑳"
    assert labels[21] == "田中さん(21)"
    assert labels[22] == "田中さん(22)"
    assert len(set(labels)) == 23


def test_summary_workbook_layout():
    summaries = {
        "田中さん": SummaryResult("田中さん", "要約本文", True),
        "佐藤様": SummaryResult("佐藤様", "要約失敗: API制限に達しました。", False),
    }

    data = build_summary_workbook(summaries, generated_at=datetime(2024, 6, 1, 9, 0, 0))
    workbook = load_workbook(io.BytesIO(data))

    assert workbook.sheetnames == ["田中さん", "佐藤様"]
    sheet = workbook["田中さん"]
    assert sheet["A1"].value == "項目"
    assert sheet["B2"].value == "田中さん"
    assert sheet["B3"].value == "要約本文"
    assert sheet["A4"].value == "作成日時"
    assert sheet["B4"].value == "2024/06/01 09:00:00"


def test_merge_workbook_has_overview_and_people():
    aggregation = aggregate_sections([
        ("a.xlsx", {"田中さん": "一", "佐藤様": "x"}),
        ("b.xlsx", {"田中さん": "二"}),
    ])

    workbook = load_workbook(io.BytesIO(build_merge_workbook(aggregation)))

    assert workbook.sheetnames[0] == MERGE_OVERVIEW_TITLE
    assert set(workbook.sheetnames[1:]) == {"田中さん", "佐藤様"}
    overview_values = [cell for row in workbook[MERGE_OVERVIEW_TITLE].iter_rows(values_only=True) for cell in row]
    assert "2名" in overview_values
    assert "3件" in overview_values
    person_values = [cell for row in workbook["田中さん"].iter_rows(values_only=True) for cell in row]
    assert "統合記録" in person_values


def test_summarize_merge_workbook():
    aggregation = aggregate_sections([("a_2024年6月1日.xlsx", {"田中さん": "元の記録"})])
    summaries = {"田中さん": SummaryResult("田中さん", "あ" * 250, True)}

    workbook = load_workbook(io.BytesIO(build_summarize_merge_workbook(summaries, aggregation)))

    assert workbook.sheetnames == [SUMMARY_OVERVIEW_TITLE, "田中さん"]
    values = [cell for row in workbook["田中さん"].iter_rows(values_only=True) for cell in row]
    assert "250文字" in values
    assert "2024年6月1日" in values
    assert "a_2024年6月1日.xlsx" in values
