import pytest

from care_records.names import UNCLASSIFIED_NAME, canonical_name, find_honorific_names
from care_records.sections import TRUNCATION_MARKER, truncate_content
from care_records.segmenter import clean_section, select_boundaries, split_by_person

HEADER_TEXT = """田中さん
朝食を完食されました。歩行も安定しています。

佐藤様
夜間に一度起きられましたが、すぐに入眠されました。
"""


def test_header_style_names_split_people():
    sections = split_by_person(HEADER_TEXT)

    assert sections == {
        "田中さん": "朝食を完食されました。歩行も安定しています。",
        "佐藤様": "夜間に一度起きられましたが、すぐに入眠されました。",
    }


def test_family_with_most_matches_wins():
    text = "\n".join([
        "氏名：田中太郎",
        "食事は全量摂取されました。",
        "氏名：佐藤花子",
        "午後はレクリエーションに参加されました。",
        "氏名：鈴木一郎",
        "ご家族と面会されました。",
        "【山本さん】",
        "特記事項なし。",
    ])

    family, boundaries = select_boundaries(text)

    assert family == "labeled"
    assert [b.name for b in boundaries] == ["田中太郎さん", "佐藤花子さん", "鈴木一郎さん"]


def test_date_prefixed_names():
    text = "6/1 田中さん\n食事良好。\n6/1 佐藤さん\n入浴された。\n"

    sections = split_by_person(text)

    assert sections == {"田中さん": "食事良好。", "佐藤さん": "入浴された。"}


def test_repeated_name_appends_content():
    text = "田中さん\n一回目の記録です。\n佐藤様\n記録あり。\n田中さん\n二回目の記録です。\n"

    sections = split_by_person(text)

    assert sections["田中さん"] == "一回目の記録です。\n\n二回目の記録です。"
    assert list(sections) == ["田中さん", "佐藤様"]


def test_long_preamble_is_kept_unclassified():
    preamble = "令和6年6月分 経過記録一覧。施設全体の行事として夏祭りを開催し、多くの利用者様が参加されました。以下に各利用者の記録を記載します。"
    text = preamble + "\n" + HEADER_TEXT

    sections = split_by_person(text)

    assert sections[UNCLASSIFIED_NAME] == preamble
    assert "田中さん" in sections and "佐藤様" in sections


def test_blank_line_chunks_without_name_lines():
    text = (
        "利用者 山田さん 本日の様子について記録します。食事は全量摂取されました。"
        "\n\n\n"
        "夜間は穏やかに過ごされ、朝まで良眠されていました。特記事項なし。"
    )

    sections = split_by_person(text)

    assert list(sections) == ["山田さん", "Unclassified (2)"]


def test_unsplittable_text_becomes_one_record():
    text = "短い記録です。名前の記載はありません。"

    assert split_by_person(text) == {UNCLASSIFIED_NAME: text}


@pytest.mark.parametrize("text", [
    "a",
    "田中さん",
    "\f\f記録\f",
    "----\n----\n",
    HEADER_TEXT * 3,
])
def test_non_empty_text_always_yields_a_section(text):
    assert len(split_by_person(text)) >= 1


def test_empty_text_yields_nothing():
    assert split_by_person("") == {}
    assert split_by_person("  \n ") == {}


def test_sections_are_capped():
    text = "田中さん\n" + "食事良好。" * 500 + "\n佐藤様\n特変なし。\n"

    sections = split_by_person(text, max_chars=200)

    assert len(sections["田中さん"]) <= 200
    assert sections["田中さん"].endswith(TRUNCATION_MARKER)


def test_truncation_is_idempotent():
    content = "記録" * 6000

    once = truncate_content(content)
    twice = truncate_content(once)

    assert once == twice
    assert len(once) <= 10000


def test_clean_section_strips_decoration():
    content = "-----\n## 日付\n6/1 食事良好\n\n\n\n\n6/2 入浴\n====="

    assert clean_section(content) == "6/1 食事良好\n\n6/2 入浴"


def test_invalid_names_are_rejected():
    # Runs of one repeated character are not names
    assert split_by_person("ああああああさん\n記録です。\nいいいいいいさん\n記録です。\n") == {
        UNCLASSIFIED_NAME: "ああああああさん\n記録です。\nいいいいいいさん\n記録です。"
    }


def test_canonical_names():
    assert canonical_name("田中") == "田中さん"
    assert canonical_name("佐藤様") == "佐藤様"
    assert canonical_name("氏名：鈴木") == "鈴木さん"
    assert canonical_name("Sheet1") == ""
    assert canonical_name("経過記録") == ""
    assert canonical_name("デイサービス") == ""
    assert canonical_name("利用者") == ""
    assert canonical_name("Residents") == ""
    assert canonical_name("June") == ""
    assert find_honorific_names("担当 山田さん より報告") == ["山田さん"]
