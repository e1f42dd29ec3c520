"""
Validation utilities for input data.

Every validator returns an (is_valid, error_message) tuple so UI handlers
can show the message directly.
"""

from typing import Any, Dict, List, Optional, Tuple

from models.job import JobConfig

MAX_CONCURRENCY = 32


def validate_job_config(config: JobConfig) -> Tuple[bool, str]:
    """
    Validate job tunables.

    Args:
        config: JobConfig to check

    Returns:
        Tuple of (is_valid, error_message)
    """
    errors = []

    if not isinstance(config.concurrency, int) or config.concurrency < 1:
        errors.append("并发数必须大于等于1")
    elif config.concurrency > MAX_CONCURRENCY:
        errors.append(f"并发数不能超过{MAX_CONCURRENCY}")

    if config.pace_ms < 0:
        errors.append("请求间隔不能为负数")
    if config.max_retries < 0:
        errors.append("重试次数不能为负数")
    if config.retry_delay_ms < 0:
        errors.append("重试延迟不能为负数")

    if errors:
        return False, "; ".join(errors)
    return True, ""


def validate_score(score: Any) -> Tuple[bool, str]:
    """
    Validate a manual score (0 clears the rating).

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        value = int(score)
    except (TypeError, ValueError):
        return False, f"评分必须是整数: {score}"
    if value != score and not isinstance(score, str):
        return False, f"评分必须是整数: {score}"
    if not 0 <= value <= 5:
        return False, "评分必须在0到5之间"
    return True, ""


def validate_message_index(messages: Optional[List[Any]], index: int, role: Optional[str] = None) -> Tuple[bool, str]:
    """
    Validate a message index of a multi-turn record.

    Args:
        messages: Record messages (ChatMessage objects)
        index: Index to check
        role: Required role of the addressed message, if any

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not messages:
        return False, "该记录没有多轮消息"
    if index < 0 or index >= len(messages):
        return False, f"消息索引 {index} 超出范围 (总数: {len(messages)})"
    if role is not None and messages[index].role != role:
        return False, f"消息 {index} 的角色是 {messages[index].role}, 需要 {role}"
    return True, ""


def validate_columns(columns: List[str]) -> Tuple[bool, str]:
    """
    Validate that imported tabular data can produce records.

    A usable table has a query-like column or a messages column.

    Returns:
        Tuple of (is_valid, error_message)
    """
    usable = {
        "query", "instruction", "question", "prompt", "input",
        "messages", "conversations", "full_seed", "QUERY",
    }
    if not usable.intersection(columns):
        return False, f"缺少问题列, 需要以下任意一列: {sorted(usable)}"
    return True, ""


def validate_content_not_empty(content: str, field_name: str = "内容") -> Tuple[bool, str]:
    """
    Validate that content is not empty or whitespace-only.

    Args:
        content: Content to validate
        field_name: Name of the field for error message

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not content or not content.strip():
        return False, f"{field_name}不能为空"

    return True, ""


def validate_export_preconditions(exportable_count: int) -> Tuple[bool, str]:
    """
    Validate preconditions for export operation.

    Args:
        exportable_count: Number of records left after excluding discarded ones

    Returns:
        Tuple of (is_valid, error_message)
    """
    if exportable_count == 0:
        return False, "没有可导出的记录"

    return True, ""


def validate_index_bounds(index: int, total: int) -> Tuple[bool, str]:
    """
    Validate that index is within bounds.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if index < 0:
        return False, "索引不能为负数"

    if index >= total:
        return False, f"索引 {index} 超出范围 (总数: {total})"

    return True, ""


def parse_job_config(values: Dict[str, Any], base: Optional[JobConfig] = None) -> JobConfig:
    """
    Build a JobConfig from loosely typed UI values.

    Raises:
        ValueError: If a value is not a number or the config is invalid
    """
    base = base or JobConfig()
    try:
        config = JobConfig(
            concurrency=int(values.get("concurrency", base.concurrency)),
            pace_ms=int(values.get("pace_ms", base.pace_ms)),
            max_retries=int(values.get("max_retries", base.max_retries)),
            retry_delay_ms=int(values.get("retry_delay_ms", base.retry_delay_ms)),
            split_field_requests=bool(values.get("split_field_requests", base.split_field_requests)),
            force=bool(values.get("force", base.force)),
        )
    except (TypeError, ValueError) as e:
        raise ValueError(f"任务配置无效: {e}")

    is_valid, error = validate_job_config(config)
    if not is_valid:
        raise ValueError(error)
    return config
