"""
ExportManager for dataset export.

Writes the curated dataset (discarded records excluded) to JSON or JSONL in
one of several record layouts.
"""

import json
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

from models import Record

DEFAULT_COLUMNS = ["query", "reasoning", "answer", "full_seed", "score", "model_used", "messages"]

# bookkeeping flags never exported as columns
EXCLUDED_COLUMNS = {"id", "is_duplicate", "duplicate_group_id", "is_discarded", "has_unsaved_changes", "extra"}


class ExportManager:
    """
    Manages export of curated records.

    Supported formats:
    - columns: the selected record columns, one object per record (default)
    - messages: OpenAI-style messages, reasoning kept in reasoning_content
    - sharegpt: ShareGPT conversations
    - alpaca: Alpaca instruction format

    Attributes:
        format: Record layout
        jsonl: Write one object per line instead of a JSON array
        columns: Columns for the "columns" layout
    """

    VALID_FORMATS = ["columns", "messages", "sharegpt", "alpaca"]

    def __init__(self, format: str = "columns", jsonl: bool = False, columns: Optional[List[str]] = None):
        """
        Raises:
            ValueError: If format is not supported
        """
        if format not in self.VALID_FORMATS:
            raise ValueError(
                f"Invalid format: {format}. Must be one of {self.VALID_FORMATS}"
            )
        self.format = format
        self.jsonl = jsonl
        self.columns = list(columns) if columns else list(DEFAULT_COLUMNS)

    @staticmethod
    def available_columns(records: List[Record]) -> List[str]:
        """All exportable column names, record fields first, then extra keys."""
        columns = [c for c in Record.__dataclass_fields__ if c not in EXCLUDED_COLUMNS]
        for record in records:
            for key in record.extra:
                if key not in columns:
                    columns.append(key)
        return columns

    def exportable(self, records: List[Record]) -> List[Record]:
        return [r for r in records if not r.is_discarded]

    def convert(self, record: Record) -> Dict[str, Any]:
        if self.format == "messages":
            return self.format_messages(record)
        if self.format == "sharegpt":
            return self.format_sharegpt(record)
        if self.format == "alpaca":
            return self.format_alpaca(record)
        return self.format_columns(record)

    def export(self, records: List[Record], original_filename: str = "dataset", output_dir: str = ".") -> str:
        """
        Write the export file.

        Args:
            records: All records; discarded ones are skipped
            original_filename: Base name of the imported file
            output_dir: Target directory

        Returns:
            Path to the generated file

        Raises:
            ValueError: If nothing is left to export
            PermissionError: If the file cannot be written
        """
        data = [self.convert(r) for r in self.exportable(records)]
        if not data:
            raise ValueError("没有可导出的记录")

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        base_name = os.path.splitext(os.path.basename(original_filename or "dataset"))[0]
        extension = "jsonl" if self.jsonl else "json"
        output_path = os.path.join(output_dir, f"{base_name}_{timestamp}_{len(data)}.{extension}")

        try:
            with open(output_path, 'w', encoding='utf-8') as f:
                if self.jsonl:
                    for row in data:
                        f.write(json.dumps(row, ensure_ascii=False, default=str) + "\n")
                else:
                    json.dump(data, f, ensure_ascii=False, indent=2, default=str)
        except PermissionError:
            raise PermissionError(f"无法写入文件: {output_path}")

        return output_path

    def format_columns(self, record: Record) -> Dict[str, Any]:
        """Selected columns; unknown names are looked up in record.extra."""
        full = record.to_dict()
        row = {"id": record.id}
        for column in self.columns:
            if column in full and column not in EXCLUDED_COLUMNS:
                value = full[column]
                if column == "messages" and value is None:
                    continue
                row[column] = value
            elif column in record.extra:
                row[column] = record.extra[column]
        return row

    def _conversation(self, record: Record) -> List[Dict[str, Any]]:
        if record.is_multi_turn:
            return [m.to_dict() for m in record.messages]
        assistant = {"role": "assistant", "content": record.answer}
        if record.reasoning:
            assistant["reasoning_content"] = record.reasoning
        return [{"role": "user", "content": record.effective_query}, assistant]

    def format_messages(self, record: Record) -> Dict[str, Any]:
        """
        OpenAI-style messages.

        Format:
        {"id": "0", "messages": [{"role": "user", ...}, {"role": "assistant", ...}], "score": 4}
        """
        return {"id": record.id, "messages": self._conversation(record), "score": record.score}

    def format_sharegpt(self, record: Record) -> Dict[str, Any]:
        """
        ShareGPT conversations. Reasoning is inlined as a <think> block.
        """
        speaker = {"user": "human", "assistant": "gpt", "system": "system"}
        conversations = []
        for message in self._conversation(record):
            value = message["content"]
            if message.get("reasoning_content"):
                value = f"<think>{message['reasoning_content']}</think>{value}"
            conversations.append({"from": speaker.get(message["role"], message["role"]), "value": value})
        return {"id": record.id, "conversations": conversations}

    def format_alpaca(self, record: Record) -> Dict[str, Any]:
        """
        Alpaca instruction format, with the reasoning trace as its own key.
        """
        return {
            "id": record.id,
            "instruction": record.effective_query,
            "input": "",
            "reasoning": record.reasoning,
            "output": record.answer,
        }
