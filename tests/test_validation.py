"""
Unit tests for validation utilities.

Tests validation functions for job configs, scores, columns, and preconditions.
"""

import pytest

from models import ChatMessage, JobConfig
from utils.validation import (
    MAX_CONCURRENCY,
    parse_job_config,
    validate_columns,
    validate_content_not_empty,
    validate_export_preconditions,
    validate_index_bounds,
    validate_job_config,
    validate_message_index,
    validate_score,
)


def test_validate_job_config_defaults():
    """Test the default config is valid."""
    assert validate_job_config(JobConfig()) == (True, "")


def test_validate_job_config_concurrency_bounds():
    """Test concurrency must be between 1 and the maximum."""
    is_valid, error_msg = validate_job_config(JobConfig(concurrency=0))
    assert is_valid == False
    assert "并发数" in error_msg

    is_valid, _ = validate_job_config(JobConfig(concurrency=MAX_CONCURRENCY + 1))
    assert is_valid == False


def test_validate_job_config_collects_all_errors():
    """Test every negative tunable is reported."""
    is_valid, error_msg = validate_job_config(JobConfig(pace_ms=-1, max_retries=-1, retry_delay_ms=-5))
    assert is_valid == False
    assert error_msg.count(";") == 2


def test_parse_job_config_from_ui_values():
    """Test UI values (floats, strings) are coerced."""
    config = parse_job_config({"concurrency": 4.0, "pace_ms": "250", "force": True})
    assert config.concurrency == 4
    assert config.pace_ms == 250
    assert config.max_retries == 2
    assert config.force is True


def test_parse_job_config_uses_base_defaults():
    """Test missing values come from the base config."""
    base = JobConfig(concurrency=3, retry_delay_ms=100)
    config = parse_job_config({}, base=base)
    assert config.concurrency == 3
    assert config.retry_delay_ms == 100


def test_parse_job_config_rejects_bad_values():
    """Test non-numeric and out-of-range values raise."""
    with pytest.raises(ValueError, match="任务配置无效"):
        parse_job_config({"concurrency": "many"})
    with pytest.raises(ValueError, match="并发数"):
        parse_job_config({"concurrency": 0})


def test_validate_score():
    """Test score validation."""
    assert validate_score(0)[0] == True
    assert validate_score(5)[0] == True
    assert validate_score(3.0)[0] == True
    assert validate_score(6)[0] == False
    assert validate_score(-1)[0] == False
    assert validate_score(2.5)[0] == False
    assert validate_score("abc")[0] == False
    assert validate_score(None)[0] == False


def test_validate_message_index():
    """Test message index and role checks."""
    messages = [ChatMessage("user", "q"), ChatMessage("assistant", "a")]

    assert validate_message_index(messages, 1, "assistant") == (True, "")
    assert validate_message_index(messages, 2)[0] == False
    assert validate_message_index(messages, -1)[0] == False
    is_valid, error_msg = validate_message_index(messages, 0, "assistant")
    assert is_valid == False
    assert "user" in error_msg
    assert validate_message_index(None, 0)[0] == False


def test_validate_columns_valid():
    """Test tables with a query-like column are accepted."""
    assert validate_columns(["instruction", "output"]) == (True, "")
    assert validate_columns(["messages"]) == (True, "")


def test_validate_columns_missing():
    """Test tables without any query-like column are rejected."""
    is_valid, error_msg = validate_columns(["output", "chunk"])
    assert is_valid == False
    assert "缺少问题列" in error_msg


def test_validate_content_not_empty():
    """Test empty and whitespace-only content."""
    assert validate_content_not_empty("text") == (True, "")
    is_valid, error_msg = validate_content_not_empty("   ", "问题")
    assert is_valid == False
    assert error_msg == "问题不能为空"


def test_validate_export_preconditions():
    """Test export needs at least one record."""
    assert validate_export_preconditions(3) == (True, "")
    assert validate_export_preconditions(0) == (False, "没有可导出的记录")


def test_validate_index_bounds():
    """Test index bounds."""
    assert validate_index_bounds(0, 5)[0] == True
    assert validate_index_bounds(5, 5)[0] == False
    assert validate_index_bounds(-1, 5)[0] == False
