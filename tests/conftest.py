import io
import asyncio
from typing import Callable, Dict, List, Optional

import pytest
from openpyxl import Workbook

from care_records.config import Settings


def make_workbook(sheets: Dict[str, List[List]]) -> bytes:
    """Build an .xlsx file in memory, one sheet per entry."""
    workbook = Workbook()
    workbook.remove(workbook.active)
    for title, rows in sheets.items():
        worksheet = workbook.create_sheet(title=title)
        for row in rows:
            worksheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


class FakeGenerator:
    """Stands in for the Gemini client; records every call."""

    def __init__(self, respond: Optional[Callable[[str, str, float], str]] = None):
        self.respond = respond or (lambda system, prompt, temperature: "あ" * 250)
        self.calls: List[Dict] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def generate(self, model_id: str, system_instruction: str, prompt: str,
                       temperature: float) -> str:
        self.calls.append({
            "model": model_id,
            "system": system_instruction,
            "prompt": prompt,
            "temperature": temperature,
        })
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            return self.respond(system_instruction, prompt, temperature)
        finally:
            self.in_flight -= 1


@pytest.fixture
def settings():
    return Settings(api_key="test-key-0123456789", model_name="gemini-test", max_concurrency=4)


@pytest.fixture
def fake_generator():
    return FakeGenerator()


@pytest.fixture
def structured_workbook():
    return make_workbook({
        "Sheet1": [
            ["氏名", "記録内容"],
            ["山田太郎", "朝食を完食。夜間よく眠れた。"],
            ["佐藤花子", "入浴時に皮膚の発赤あり。"],
            ["鈴木一郎", "家族と面会。表情穏やか。"],
            ["高橋美咲", "水分摂取量が少なめ。"],
            ["田中健", "転倒なし。歩行安定。"],
        ]
    })
