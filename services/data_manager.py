"""
DataManager for dataset import.

Loads CSV, JSON and JSONL files and normalizes every row into a Record,
accepting the common field aliases of instruction-tuning datasets.
"""

import json
import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from models import ChatMessage, Record
from models.record import ensure_string
from utils.performance import monitor_performance
from utils.text_cleaning import parse_think_tags
from utils.validation import validate_columns

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".csv", ".json", ".jsonl")

QUERY_KEYS = ("query", "instruction", "question", "prompt", "input")
ANSWER_KEYS = ("answer", "output", "response", "completion")
REASONING_KEYS = ("reasoning", "reasoning_trace", "thought", "thoughts", "scratchpad", "rationale", "trace")
MODEL_KEYS = ("modelUsed", "model_used", "model", "generator")
MESSAGE_KEYS = ("messages", "conversations", "conversation")

# consumed by normalization, so not copied into Record.extra
_CONSUMED_KEYS = set(
    QUERY_KEYS + ANSWER_KEYS + REASONING_KEYS + MODEL_KEYS + MESSAGE_KEYS
) | {
    "id", "score", "full_seed", "timestamp", "is_duplicate", "isDuplicate",
    "duplicate_group_id", "duplicateGroupId", "is_discarded", "isDiscarded",
    "has_unsaved_changes", "hasUnsavedChanges", "isMultiTurn", "extra",
}

_SHAREGPT_ROLES = {"human": "user", "gpt": "assistant", "system": "system", "user": "user", "assistant": "assistant"}


def _first(raw: Dict[str, Any], keys) -> Any:
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


def normalize_messages(raw_messages: Any) -> Optional[List[ChatMessage]]:
    """
    Convert a raw message list into ChatMessages.

    Accepts OpenAI style ({role, content}) and ShareGPT style ({from, value})
    entries. <think> blocks in assistant content are moved into
    reasoning_content unless the message already carries reasoning.

    Returns:
        List of ChatMessage, or None when raw_messages is not a list
    """
    if isinstance(raw_messages, str):
        try:
            raw_messages = json.loads(raw_messages)
        except ValueError:
            return None
    if not isinstance(raw_messages, list):
        return None

    messages = []
    for raw in raw_messages:
        if not isinstance(raw, dict):
            continue
        if "from" in raw and "role" not in raw:
            raw = {
                "role": _SHAREGPT_ROLES.get(str(raw.get("from")).lower(), "user"),
                "content": raw.get("value"),
            }
        message = ChatMessage.from_dict(raw)
        if message.role == "assistant" and not message.reasoning_content and "<think>" in message.content:
            reasoning, answer = parse_think_tags(message.content)
            message.reasoning_content = reasoning or None
            message.content = answer
        messages.append(message)
    return messages


def _coerce_score(value: Any) -> int:
    try:
        score = int(float(value))
    except (TypeError, ValueError):
        return 0
    return score if 0 <= score <= 5 else 0


def normalize_import_item(raw: Dict[str, Any]) -> Record:
    """
    Build a Record from one imported row.

    Query falls back to the last user message, and the answer of a
    multi-turn row always comes from its last assistant message.
    """
    messages = normalize_messages(_first(raw, MESSAGE_KEYS))

    query = ensure_string(_first(raw, QUERY_KEYS))
    answer = ensure_string(_first(raw, ANSWER_KEYS))
    reasoning = ensure_string(_first(raw, REASONING_KEYS))
    if messages:
        last_user = next((m for m in reversed(messages) if m.role == "user"), None)
        last_assistant = next((m for m in reversed(messages) if m.role == "assistant"), None)
        if not query and last_user is not None:
            query = last_user.content
        if last_assistant is not None:
            answer = last_assistant.content
            if not reasoning and last_assistant.reasoning_content:
                reasoning = last_assistant.reasoning_content
    elif "<think>" in answer and not reasoning:
        parsed_reasoning, answer = parse_think_tags(answer)
        reasoning = parsed_reasoning or ""

    model_used = _first(raw, MODEL_KEYS) or "Imported"
    deep = raw.get("deepMetadata")
    if model_used == "Imported" and isinstance(deep, dict) and deep.get("writer"):
        model_used = f"DEEP: {deep['writer']}"

    extra = dict(raw.get("extra") or {}) if isinstance(raw.get("extra"), dict) else {}
    extra.update({k: v for k, v in raw.items() if k not in _CONSUMED_KEYS})

    return Record(
        id=str(raw.get("id") or uuid.uuid4()),
        query=query,
        reasoning=reasoning,
        answer=answer,
        messages=messages if messages else None,
        score=_coerce_score(raw.get("score")),
        full_seed=ensure_string(raw.get("full_seed")) or query,
        model_used=str(model_used),
        timestamp=ensure_string(raw.get("timestamp")) or datetime.now(timezone.utc).isoformat(),
        extra=extra,
    )


def parse_records_text(text: str) -> Tuple[List[Dict[str, Any]], int]:
    """
    Parse a JSON array or JSONL document into raw rows.

    Returns:
        Tuple of (rows, number of skipped malformed lines)

    Raises:
        ValueError: If a JSON array document is malformed
    """
    content = (text or "").strip()
    if not content:
        return [], 0

    if content.startswith("[") and content.endswith("]"):
        try:
            parsed = json.loads(content)
        except ValueError as e:
            raise ValueError(f"JSON文件解析失败: {str(e)}")
        return [row for row in parsed if isinstance(row, dict)], 0

    if content.startswith("{") and content.endswith("}"):
        try:
            parsed = json.loads(content)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            return [parsed], 0

    rows = []
    skipped = 0
    for line_no, line in enumerate(content.splitlines(), 1):
        if not line.strip():
            continue
        try:
            row = json.loads(line)
        except ValueError:
            logger.warning("Skipping malformed JSONL line %d", line_no)
            skipped += 1
            continue
        if isinstance(row, dict):
            rows.append(row)
        else:
            skipped += 1
    return rows, skipped


def _read_csv(path: str) -> pd.DataFrame:
    try:
        return pd.read_csv(path, encoding='utf-8')
    except UnicodeDecodeError:
        try:
            return pd.read_csv(path, encoding='gbk')
        except Exception as e:
            raise ValueError(f"无法读取CSV文件，编码错误: {str(e)}")
    except FileNotFoundError:
        raise FileNotFoundError(f"文件未找到: {path}")
    except pd.errors.EmptyDataError:
        raise ValueError("CSV文件为空")
    except Exception as e:
        raise ValueError(f"CSV文件读取失败: {str(e)}")


class DataManager:
    """
    Imports dataset files into Records.

    Attributes:
        records: Records produced by the last load
        skipped_rows: Malformed rows skipped by the last load
        source_name: Base name of the last loaded file
    """

    def __init__(self):
        self.records: List[Record] = []
        self.skipped_rows = 0
        self.source_name = ""

    @monitor_performance("load_file")
    def load_file(self, path: str) -> List[Record]:
        """
        Load a CSV, JSON or JSONL file.

        Args:
            path: File path

        Returns:
            Normalized records, ids unique within the file

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the format is unsupported or the content is invalid
        """
        if not path or not os.path.exists(path):
            raise FileNotFoundError(f"文件未找到: {path}")

        extension = os.path.splitext(path)[1].lower()
        if extension not in SUPPORTED_EXTENSIONS:
            raise ValueError(f"不支持的文件格式: {extension}. 支持: {list(SUPPORTED_EXTENSIONS)}")

        if extension == ".csv":
            rows = self._csv_rows(path)
            skipped = 0
        else:
            with open(path, 'r', encoding='utf-8') as f:
                rows, skipped = parse_records_text(f.read())

        self.records = self.normalize_rows(rows)
        self.skipped_rows = skipped
        self.source_name = os.path.splitext(os.path.basename(path))[0]
        logger.info("Loaded %d records from %s (%d skipped)", len(self.records), path, skipped)
        return self.records

    def _csv_rows(self, path: str) -> List[Dict[str, Any]]:
        df = _read_csv(path)
        is_valid, error = validate_columns([str(c) for c in df.columns])
        if not is_valid:
            raise ValueError(error)
        df = df.astype(object).where(pd.notna(df), None)
        return df.to_dict(orient="records")

    @staticmethod
    def normalize_rows(rows: List[Dict[str, Any]]) -> List[Record]:
        """Normalize raw rows, re-keying records whose id repeats."""
        records = []
        seen = set()
        for row in rows:
            record = normalize_import_item(row)
            if record.id in seen:
                record.id = str(uuid.uuid4())
            seen.add(record.id)
            records.append(record)
        return records
