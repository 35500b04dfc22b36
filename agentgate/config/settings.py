"""Runtime settings."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="AGENTGATE_", extra="ignore")

    app_name: str = "AgentGate"
    env: str = "dev"
    log_level: str = "info"
    log_file: str = "logs/agentgate.log"

    # debug 开启后把原始请求、归一化结果和提交给 bridge 的内容落盘到 debug_dir
    debug: bool = False
    debug_dir: str = "debug-requests"
    # 500 错误体中是否带 stack（仅调试环境打开）
    expose_error_stack: bool = False

    default_max_tokens: int = 4096
    thinking_budget_tokens: int = 10000
    thinking_repair_mode: str = "drop_turn"  # drop_turn | hoist
    stream_heartbeat_seconds: float = Field(default=15.0, gt=0)

    bridge_base_url: str = "http://127.0.0.1:7163"
    bridge_timeout_seconds: float = 600.0
    bridge_max_connections: int = 50
    bridge_max_keepalive_connections: int = 10
    bridge_tool_prefix: str = "mcp__api-tools__"
    # runtime 自带的内置工具一律禁用，工具执行交给调用方
    bridge_disallowed_tools: list[str] = Field(
        default_factory=lambda: [
            "Read",
            "Write",
            "Edit",
            "Bash",
            "Glob",
            "Grep",
            "LS",
            "MultiEdit",
            "NotebookEdit",
            "TodoRead",
            "TodoWrite",
            "WebFetch",
            "WebSearch",
            "Task",
        ]
    )

    transcript_backend: str = "file"  # file | redis
    transcript_dir: str = "debug-requests"
    transcript_runtime_version: str = "2.1.9"
    redis_url: str = "redis://127.0.0.1:6379/0"
    redis_key_prefix: str = "agentgate"
    transcript_ttl_seconds: int = 86400


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
