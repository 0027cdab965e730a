import json
import logging
from typing import List, Optional

import pandas as pd

from core.data_processor import DataProcessor
from schemas.chat import ChartData, ChartType, ConversationMessage
from services.llm_client import LLMClient

logger = logging.getLogger(__name__)

EMPTY_RESULT_MESSAGE = (
    "I couldn't find any data matching your query. Please try rephrasing your "
    "question or check if the data exists for the criteria you specified."
)

RESPONSE_GENERATION_SYSTEM_PROMPT = """You are a helpful data analytics assistant.
Give concise, data-driven answers in 1-2 sentences.
Be specific with numbers and names.
Don't mention the chart or visualization in your response."""


def _fmt(value) -> str:
    if isinstance(value, float):
        return f"{value:,.2f}".rstrip("0").rstrip(".")
    return str(value)


def summarize_result(df: pd.DataFrame, charts: List[ChartData], processor: Optional[DataProcessor] = None) -> str:
    """Plain-text description of a result set, built without the LLM"""
    if df is None or df.empty:
        return EMPTY_RESULT_MESSAGE

    processor = processor or DataProcessor()
    records = processor.to_records(df)
    columns = [str(c) for c in df.columns]

    if len(records) == 1:
        if len(columns) == 1:
            return f"The {columns[0]} is {_fmt(records[0][columns[0]])}."
        pairs = ", ".join(f"{c}: {_fmt(records[0][c])}" for c in columns)
        return f"Found 1 row ({pairs})."

    summary = f"Found {len(records)} rows with columns {', '.join(columns)}."
    if not charts:
        return summary

    chart = charts[0]
    x_key, y_key = chart.config.x_key, chart.config.y_key
    if chart.type == ChartType.BAR:
        top = max(records, key=lambda r: (r[y_key] is not None, r[y_key] or 0))
        summary += f" The highest {y_key} is {_fmt(top[y_key])} for {_fmt(top[x_key])}."
    elif chart.type == ChartType.LINE:
        first, last = chart.data[0], chart.data[-1]
        summary += (
            f" {y_key} went from {_fmt(first[y_key])} at {_fmt(first[x_key])}"
            f" to {_fmt(last[y_key])} at {_fmt(last[x_key])}."
        )
    return summary


class ResultNarrator:
    """Writes the answer text with the LLM from a sample of the winning rows"""

    def __init__(self, llm: LLMClient, sample_rows: int = 10):
        self.llm = llm
        self.sample_rows = sample_rows
        self.processor = DataProcessor()

    async def narrate(self, messages: List[ConversationMessage], df: pd.DataFrame, model: Optional[str] = None) -> str:
        if df.empty:
            return EMPTY_RESULT_MESSAGE

        records = self.processor.to_records(df.head(self.sample_rows))
        context = ""
        if len(messages) > 1:
            history = "\n".join(
                f"{'User' if m.role == 'user' else 'Assistant'}: {m.content}" for m in messages[:-1]
            )
            context = f"Previous conversation:\n{history}\n"
        question = next((m.content for m in reversed(messages) if m.role == "user"), messages[-1].content)

        prompt = f"""{context}
Current user question:
"{question}"

Data summary for this question:
{len(df)} rows with columns: {', '.join(str(c) for c in df.columns)}
Data:
{json.dumps(records, indent=2, default=str)}

Provide an analysis with specific data and share any insights about what this reveals.
Use markdown formatting where it helps (bold, lists)."""

        return await self.llm.complete(
            RESPONSE_GENERATION_SYSTEM_PROMPT,
            [{"role": "user", "content": prompt}],
            model=model,
            temperature=0.3,
        )
