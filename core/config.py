"""
配置文件 - 项目配置管理
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import AliasChoices, BaseModel, Field, field_validator
from typing import Optional
from pydantic import model_validator


class RealtimeSettings(BaseModel):
    """Collaboration WebSocket settings (env: REALTIME__<FIELD>)."""

    ws_path: str = "/ws/collaborate"
    # Typing indicators auto-expire after this window
    typing_timeout_s: float = 5.0
    # Repeated typing_start for the same (user, node) restarts the window
    typing_reset_on_restart: bool = True

    # Heartbeat/idle detection; 0 disables server pings
    idle_ping_interval_s: float = 30.0
    pong_grace_s: float = 10.0
    missed_ping_limit: int = 2

    # Per-connection outbound queue
    send_queue_max: int = 100
    send_overflow_policy: str = Field(
        default="drop_oldest",
        description="队列溢出策略: drop_oldest | drop_new | disconnect",
    )


class Settings(BaseSettings):
    """项目配置"""

    # 基础配置
    PROJECT_NAME: str = Field(
        default="Plan Collaboration Service",
        validation_alias=AliasChoices("PROJECT_NAME", "APP_NAME"),
    )
    VERSION: str = Field(default="1.0.0", validation_alias=AliasChoices("VERSION", "APP_VERSION"))
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # 日志配置
    LOG_LEVEL: Optional[str] = None
    LOG_JSON: Optional[bool] = None

    # 安全配置
    SECRET_KEY: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("SECRET_KEY", "JWT_SECRET_KEY", "JWT_SECRET"),
        description="JWT签名密钥，生产环境必须设置",
    )
    ALGORITHM: str = Field(default="HS256", validation_alias=AliasChoices("ALGORITHM", "JWT_ALGORITHM"))
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30  # 30分钟

    # CORS配置
    CORS_ORIGINS: list = Field(default=["http://localhost:3000", "http://localhost:8000"])

    # 实时协作（WebSocket）分组配置
    realtime: RealtimeSettings = Field(default_factory=RealtimeSettings)

    # pydantic-settings v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
        populate_by_name=True,
    )

    @model_validator(mode="after")
    def _validate_secret_key(self):
        # 所有环境均要求显式配置 SECRET_KEY（或 JWT_SECRET_KEY），否则无法校验连接令牌
        if not self.SECRET_KEY:
            raise ValueError(
                "SECRET_KEY 未配置。请在环境变量或 .env 中设置 SECRET_KEY（或 JWT_SECRET_KEY）"
            )
        return self

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v):
        """允许 JSON 字符串或逗号分隔字符串两种格式。"""
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("[") and s.endswith("]"):
                import json
                try:
                    arr = json.loads(s)
                    if isinstance(arr, list):
                        return arr
                except ValueError:
                    pass
            if "," in s:
                return [item.strip() for item in s.split(",") if item.strip()]
            return [s]
        return v

    @property
    def log_level(self) -> str:
        if self.LOG_LEVEL:
            return self.LOG_LEVEL.upper()
        return "DEBUG" if self.DEBUG else "INFO"

    @property
    def log_json(self) -> bool:
        if self.LOG_JSON is not None:
            return self.LOG_JSON
        return not self.DEBUG


settings = Settings()
