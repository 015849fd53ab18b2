"""Service configuration loaded from environment variables.

Each concern has its own settings class and env-var prefix, and the
top-level :class:`Settings` composes them.
"""

from __future__ import annotations

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ImapConfig(BaseSettings):
    """Remote mailbox (IMAPS) settings."""

    model_config = {"env_prefix": "IMAP_"}

    host: str = Field(default="qasid.iitk.ac.in", description="IMAP server hostname")
    port: int = Field(default=993, description="IMAPS port (implicit TLS)")
    verify_certificates: bool = Field(
        default=False,
        description="Verify the server certificate (the campus server is self-signed)",
    )
    mailbox: str = Field(default="INBOX", description="Mailbox selected read-only")
    max_messages: int = Field(
        default=40,
        ge=1,
        description="Number of most recent messages retrieved per session",
    )
    connect_timeout_seconds: float = Field(
        default=30.0,
        description="Deadline for connect + login",
    )
    fetch_timeout_seconds: float = Field(
        default=45.0,
        description="Deadline for the FETCH of the selected messages",
    )


class SmtpConfig(BaseSettings):
    """Outbound mail (SMTPS) settings."""

    model_config = {"env_prefix": "SMTP_"}

    host: str = Field(default="smtp.iitk.ac.in", description="SMTP server hostname")
    port: int = Field(default=465, description="SMTPS port (implicit TLS)")
    timeout_seconds: float = Field(default=30.0, description="Socket timeout")
    verify_certificates: bool = Field(default=False, description="Verify the server certificate")


class EnrichmentConfig(BaseSettings):
    """Chat-completions provider used for analysis and reply drafting."""

    model_config = {"env_prefix": "ENRICHMENT_"}

    base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        description="Base URL of the OpenAI-compatible API",
    )
    api_key: SecretStr | None = Field(default=None, description="Bearer credential")
    model: str = Field(default="minimax/minimax-m2:free", description="Model identifier")
    app_url: str = Field(
        default="http://localhost:3001",
        description="Sent as HTTP-Referer for provider analytics",
    )
    app_title: str = Field(default="MailMind", description="Sent as X-Title")
    temperature: float = Field(default=0.7)
    analysis_max_tokens: int = Field(default=1000)
    reply_max_tokens: int = Field(default=2000)
    timeout_seconds: float = Field(default=60.0, description="HTTP request timeout")
    max_body_chars: int = Field(default=4000, description="Body budget for analysis")
    max_subject_chars: int = Field(default=200, description="Subject budget for analysis")
    max_reply_body_chars: int = Field(default=2000, description="Body budget for reply drafting")


class RetrievalConfig(BaseSettings):
    """Batching and deadlines for the retrieval protocols."""

    model_config = {"env_prefix": "RETRIEVAL_"}

    deadline_seconds: float = Field(
        default=180.0,
        description="End-to-end deadline covering mailbox retrieval and enrichment",
    )
    group_size: int = Field(
        default=2,
        ge=1,
        description="Messages enriched concurrently per group",
    )
    page_size: int = Field(default=4, ge=1, description="Messages per progressive page")
    page_total: int = Field(default=40, ge=1, description="Cap on messages served by paging")


class Settings(BaseSettings):
    """Top-level settings for the API service.

    All env vars are prefixed with ``MAILMIND_``.
    Example: ``MAILMIND_JWT_SECRET=mysecret``
    """

    model_config = SettingsConfigDict(env_prefix="MAILMIND_")

    # --- Accounts -----------------------------------------------------------
    mail_domain: str = Field(
        default="iitk.ac.in",
        description="Domain appended to bare account names and required at login",
    )

    # --- JWT ----------------------------------------------------------------
    jwt_secret: SecretStr = Field(description="Secret key used to sign JWT tokens")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    jwt_expire_days: int = Field(default=7, description="Access token lifetime in days")

    # --- Server -------------------------------------------------------------
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=3001, description="Bind port")
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(
        default=True,
        description="Use JSON log output (True for prod, False for dev)",
    )

    # --- Collaborators ------------------------------------------------------
    imap: ImapConfig = Field(default_factory=ImapConfig)
    smtp: SmtpConfig = Field(default_factory=SmtpConfig)
    enrichment: EnrichmentConfig = Field(default_factory=EnrichmentConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)

    @field_validator("port")
    @classmethod
    def _reject_privileged_port(cls, value: int) -> int:
        if 0 < value < 1024:
            raise ValueError(
                f"port {value} is privileged; use an unprivileged port such as 3001"
            )
        return value
