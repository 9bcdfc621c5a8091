"""YAML config loading, validation, and the frozen per-run configuration snapshot."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from job_hunter.errors import ConfigurationError


@dataclass
class EmailConfig:
    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 587
    sender_email: str = ""
    sender_password: str = ""  # Gmail App Password
    recipient_email: str = ""
    email_from: str = ""  # Resend "from" address


@dataclass
class SearchConfig:
    max_results_per_group: int = 100
    fetch_timeout_seconds: int = 60


@dataclass
class AIConfig:
    model: str = "gpt-4o-mini"
    timeout_seconds: float = 60.0


@dataclass
class ApiKeys:
    serpapi_key: str = ""
    openai_api_key: str = ""
    resend_api_key: str = ""


@dataclass
class AppConfig:
    email: EmailConfig = field(default_factory=EmailConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    ai: AIConfig = field(default_factory=AIConfig)
    api_keys: ApiKeys = field(default_factory=ApiKeys)
    data_dir: str = "data"
    log_dir: str = "logs"


def load_config(config_path: str = "config.yaml", required: bool = True) -> AppConfig:
    """Load configuration from a YAML file; environment variables override it.

    With ``required=False`` a missing file yields defaults plus the environment.
    """
    path = Path(config_path)
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    elif required:
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            "Copy config.example.yaml to config.yaml and fill in your settings."
        )
    else:
        raw = {}

    config = AppConfig()

    # Email
    email_raw = raw.get("email", {})
    config.email = EmailConfig(
        smtp_server=email_raw.get("smtp_server", "smtp.gmail.com"),
        smtp_port=email_raw.get("smtp_port", 587),
        sender_email=email_raw.get("sender_email", ""),
        sender_password=os.environ.get("JOB_HUNTER_SMTP_PASSWORD", email_raw.get("sender_password", "")),
        recipient_email=email_raw.get("recipient_email", ""),
        email_from=os.environ.get("EMAIL_FROM", email_raw.get("email_from", "")),
    )

    # Search
    search_raw = raw.get("search", {})
    config.search = SearchConfig(
        max_results_per_group=search_raw.get("max_results_per_group", 100),
        fetch_timeout_seconds=search_raw.get("fetch_timeout_seconds", 60),
    )

    # AI
    ai_raw = raw.get("ai", {})
    config.ai = AIConfig(
        model=ai_raw.get("model", "gpt-4o-mini"),
        timeout_seconds=ai_raw.get("timeout_seconds", 60.0),
    )

    # API keys (env vars take precedence)
    keys_raw = raw.get("api_keys", {})
    config.api_keys = ApiKeys(
        serpapi_key=os.environ.get("SERPAPI_KEY", keys_raw.get("serpapi_key", "")),
        openai_api_key=os.environ.get("OPENAI_API_KEY", keys_raw.get("openai_api_key", "")),
        resend_api_key=os.environ.get("RESEND_API_KEY", keys_raw.get("resend_api_key", "")),
    )

    config.data_dir = raw.get("data_dir", "data")
    config.log_dir = raw.get("log_dir", "logs")

    return config


def validate_config(config: AppConfig) -> list[str]:
    """Return list of validation warnings (empty = OK)."""
    warnings = []

    if not config.api_keys.serpapi_key:
        warnings.append("No SerpAPI key configured - set it in settings or SERPAPI_KEY")

    if not config.api_keys.openai_api_key:
        warnings.append("No OpenAI API key configured - set it in settings or OPENAI_API_KEY")

    if not config.api_keys.resend_api_key and not config.email.sender_password:
        warnings.append("Email credentials not configured - digests will fail")

    if config.search.max_results_per_group <= 0:
        warnings.append("search.max_results_per_group must be positive")

    return warnings


# --- Per-run snapshot -------------------------------------------------------


@dataclass(frozen=True)
class GroupConfig:
    """Read-only view of a search group for the duration of one run."""

    id: int
    name: str
    keywords: tuple[str, ...]
    locations: tuple[str, ...]
    work_modes: tuple[str, ...]
    job_type: str
    title_filter: str
    ai_system_prompt: str
    no_match_max: int
    weak_match_max: int
    strong_match_min: int

    @property
    def label(self) -> str:
        return f'"{self.name}"' if self.name else f"#{self.id}"

    @classmethod
    def from_row(cls, row) -> "GroupConfig":
        return cls(
            id=row.id,
            name=row.group_name or "",
            keywords=tuple(row.keywords or []),
            locations=tuple(row.locations or []),
            work_modes=tuple(row.work_modes or []),
            job_type=row.job_type or "fullTime",
            title_filter=row.title_filter or "",
            ai_system_prompt=row.ai_system_prompt or "",
            no_match_max=row.score_no_match_max,
            weak_match_max=row.score_weak_match_max,
            strong_match_min=row.score_strong_match_min,
        )

    def problems(self) -> list[str]:
        errors = []
        if not (0 <= self.no_match_max < self.weak_match_max < 100):
            errors.append(
                f"Role {self.label} has invalid score thresholds "
                f"(no match max {self.no_match_max}, weak match max {self.weak_match_max})."
            )
        if self.strong_match_min != self.weak_match_max + 1:
            errors.append(
                f"Role {self.label}: strong match min must be weak match max + 1 "
                f"(got {self.strong_match_min})."
            )
        if not self.ai_system_prompt.strip():
            errors.append(f"Role {self.label} has no AI scoring prompt.")
        if not self.keywords:
            errors.append(f"Role {self.label} has no search keywords.")
        return errors


@dataclass(frozen=True)
class RunConfig:
    """Everything one run reads from configuration, frozen at run start."""

    serpapi_key: str
    openai_api_key: str
    resend_api_key: str
    ai_model: str
    ai_timeout_seconds: float
    dedup_system_prompt: str
    summary_prompt: str
    email_enabled: bool
    email: EmailConfig
    max_results_per_group: int
    fetch_timeout_seconds: int
    groups: tuple[GroupConfig, ...]
    blacklist: tuple[str, ...]


def collect_config_errors(settings, groups: list[GroupConfig], app_config: AppConfig) -> list[str]:
    """Human-readable problems that would stop a run from starting."""
    errors = []
    if settings is None:
        return ["Settings not found in database."]

    if not _pick(settings.openai_api_key, app_config.api_keys.openai_api_key):
        errors.append("OpenAI API key is not set.")
    if not _pick(settings.serpapi_key, app_config.api_keys.serpapi_key):
        errors.append("SerpAPI key is not set.")

    if not groups:
        errors.append("No active roles configured. Add at least one role in settings.")
    for group in groups:
        errors.extend(group.problems())

    if not (settings.dedup_system_prompt or "").strip():
        errors.append("Deduplication prompt is empty.")
    if not (settings.summary_prompt or "").strip():
        errors.append("Summary prompt is empty.")
    return errors


def build_run_config(settings, group_rows, blacklist_names, app_config: AppConfig) -> RunConfig:
    """Snapshot DB settings and process config into a RunConfig.

    Raises ConfigurationError listing every problem found.
    """
    groups = [GroupConfig.from_row(row) for row in group_rows if row.is_active]
    errors = collect_config_errors(settings, groups, app_config)
    if errors:
        raise ConfigurationError(" ".join(errors))

    email = EmailConfig(
        smtp_server=app_config.email.smtp_server,
        smtp_port=app_config.email.smtp_port,
        sender_email=app_config.email.sender_email,
        sender_password=app_config.email.sender_password,
        recipient_email=_pick(settings.email_recipient, app_config.email.recipient_email),
        email_from=_pick(settings.email_from, app_config.email.email_from),
    )

    return RunConfig(
        serpapi_key=_pick(settings.serpapi_key, app_config.api_keys.serpapi_key),
        openai_api_key=_pick(settings.openai_api_key, app_config.api_keys.openai_api_key),
        resend_api_key=_pick(settings.resend_api_key, app_config.api_keys.resend_api_key),
        ai_model=_pick(settings.ai_model, app_config.ai.model),
        ai_timeout_seconds=app_config.ai.timeout_seconds,
        dedup_system_prompt=settings.dedup_system_prompt,
        summary_prompt=settings.summary_prompt,
        email_enabled=bool(settings.email_enabled),
        email=email,
        max_results_per_group=app_config.search.max_results_per_group,
        fetch_timeout_seconds=app_config.search.fetch_timeout_seconds,
        groups=tuple(groups),
        blacklist=tuple(blacklist_names),
    )


def _pick(db_value: Optional[str], fallback: str) -> str:
    """DB value takes priority; env / YAML is the fallback."""
    return (db_value or "").strip() or (fallback or "").strip()
