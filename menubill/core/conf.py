from functools import lru_cache
from typing import Any, Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from menubill.core.path_conf import BASE_PATH


class Settings(BaseSettings):
    """全局配置"""

    model_config = SettingsConfigDict(
        env_file=f'{BASE_PATH}/.env',
        env_file_encoding='utf-8',
        extra='ignore',
        case_sensitive=True,
    )

    # .env 当前环境
    ENVIRONMENT: Literal['dev', 'prod'] = 'dev'

    # FastAPI
    FASTAPI_API_V1_PATH: str = '/api/v1'
    FASTAPI_TITLE: str = 'MenuBill'
    FASTAPI_DESCRIPTION: str = 'Subscription and checkout-link lifecycle engine'
    FASTAPI_DOCS_URL: str | None = '/docs'
    FASTAPI_OPENAPI_URL: str | None = '/openapi'

    # .env 数据库
    DATABASE_URL: str = 'sqlite+aiosqlite:///./menubill.db'

    # 数据库
    DATABASE_ECHO: bool | Literal['debug'] = False
    DATABASE_POOL_PRE_PING: bool = True
    DATABASE_CREATE_TABLES: bool = True  # Use migrations instead in prod

    # CORS
    CORS_ALLOWED_ORIGINS: list[str] = [  # 末尾不带斜杠
        'http://127.0.0.1:8000',
        'http://localhost:3000',
    ]
    MIDDLEWARE_CORS: bool = True

    # 日志
    LOG_LEVEL: str = 'INFO'
    LOG_FORMAT: str = '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'

    # Public URL used to build checkout-link visit URLs and Stripe redirects
    PUBLIC_BASE_URL: str = 'http://localhost:3000'

    # --------------------------------------------------------------------------
    # [Billing & Stripe Configuration]
    # --------------------------------------------------------------------------

    # Stripe API Keys
    STRIPE_SECRET_KEY: str = ''  # Stripe secret key (sk_...). Empty disables the gateway
    STRIPE_WEBHOOK_SECRET: str = ''  # Webhook signing secret (whsec_...)
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300

    # Any provider call slower than this is treated as failed
    PAYMENT_PROVIDER_TIMEOUT_SECONDS: float = 20.0

    # Trial policy
    BILLING_TRIAL_DAYS: int = 7
    BILLING_MAX_TRIAL_EXTENSION_DAYS: int = 30

    # Checkout links
    CHECKOUT_LINK_TTL_HOURS: int = 24
    CHECKOUT_LINK_SWEEP_ENABLED: bool = True
    CHECKOUT_LINK_SWEEP_INTERVAL_SECONDS: int = 60 * 10  # 10 分钟
    CHECKOUT_LINK_SWEEP_BATCH_SIZE: int = 200

    # Card validation
    CARD_VALIDATION_POLL_ATTEMPTS: int = 15
    CARD_VALIDATION_POLL_DELAY_SECONDS: float = 0.2

    # --------------------------------------------------------------------------
    # [CRM (Pipedrive) Configuration]
    # --------------------------------------------------------------------------
    PIPEDRIVE_API_TOKEN: str = ''
    PIPEDRIVE_BASE_URL: str = 'https://api.pipedrive.com'
    PIPEDRIVE_TIMEOUT_SECONDS: float = 15.0
    PIPEDRIVE_FIELD_CACHE_SECONDS: int = 60 * 30  # 30 分钟
    CRM_WEBHOOK_SECRET: str = ''
    CRM_WEBHOOK_SIGNATURE_HEADER: str = 'X-Webhook-Signature'
    CRM_SKIP_STALE_EVENTS: bool = False

    # Webhook dedup: how long an in-flight claim blocks re-delivery
    WEBHOOK_LOCK_WINDOW_SECONDS: int = 300

    # --------------------------------------------------------------------------
    # [Notifications]
    # --------------------------------------------------------------------------
    SLACK_BOT_TOKEN: str = ''
    SLACK_NOTIFICATION_CHANNEL_ID: str = ''
    SLACK_API_URL: str = 'https://slack.com/api/chat.postMessage'

    @property
    def STRIPE_ENABLED(self) -> bool:
        return bool(self.STRIPE_SECRET_KEY)

    @model_validator(mode='before')
    @classmethod
    def check_env(cls, values: Any) -> Any:
        """检查环境变量"""
        if values.get('ENVIRONMENT') == 'prod':
            # FastAPI
            values['FASTAPI_OPENAPI_URL'] = None
            values['FASTAPI_DOCS_URL'] = None
            values['DATABASE_CREATE_TABLES'] = False

        return values


@lru_cache
def get_settings() -> Settings:
    """获取全局配置单例"""
    return Settings()


# 创建全局配置实例
settings = get_settings()
