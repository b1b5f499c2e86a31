"""Settings assembled once per invocation from the environment and ``.env.local`` files."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from dotenv import dotenv_values
from git import InvalidGitRepositoryError, NoSuchPathError, Repo
from git.exc import GitCommandError
from loguru import logger

from mrpilot.errors import ConfigError

DEFAULT_JIRA_BASE_URL = "https://innotech.atlassian.net/"
DEFAULT_GITLAB_HOST = "gitlab.service-hub.tech"
DEFAULT_LLM_MODEL = "gpt-5.2"
DEFAULT_REVIEWER = "william.chiang"
DEFAULT_AI_REVIEW_BOT = "service_account_8131c1c3f99badd3c4938c05fa68088b"

# Keys where the process environment wins over any .env.local value.
PROCESS_ENV_KEYS = (
    "JIRA_EMAIL",
    "JIRA_API_TOKEN",
    "GITLAB_TOKEN",
    "GITLAB_HOST",
    "COMPASS_API_TOKEN",
    "COMPASS_BASE_URL",
    "MR_REVIEWER",
    "AGENT_DISPLAY_NAME",
    "FIGMA_TOKEN",
    "OPENAI_API_KEY",
    "GROQ_API_KEY",
    "LLM_PROVIDER",
    "LLM_MODEL",
    "OPENAI_MODEL",
    "AI_REVIEW_BOT_USERNAME",
)

SETUP_GUIDES = {
    "jira_email": "Add JIRA_EMAIL=<your atlassian email> to .cursor/.env.local",
    "jira_api_token": (
        "Create a token at https://id.atlassian.com/manage-profile/security/api-tokens "
        "and add JIRA_API_TOKEN=<token> to .cursor/.env.local"
    ),
    "gitlab_token": (
        "Create a personal access token with `api` scope and add GITLAB_TOKEN=<token> "
        "to .cursor/.env.local (or run `git config gitlab.token <token>`)"
    ),
    "compass_api_token": "Add COMPASS_API_TOKEN=<token> to .cursor/.env.local",
    "compass_base_url": "Add COMPASS_BASE_URL=<https://compass host> to .cursor/.env.local",
    "figma_token": "Add FIGMA_TOKEN=<personal access token> to .cursor/.env.local",
    "openai_api_key": "Add OPENAI_API_KEY=<key> to .cursor/.env.local",
    "groq_api_key": "Add GROQ_API_KEY=<key> to .cursor/.env.local",
}


@dataclass(frozen=True)
class Settings:
    """Immutable runtime configuration passed explicitly to clients and nodes."""

    project_root: str
    jira_base_url: str = DEFAULT_JIRA_BASE_URL
    jira_email: Optional[str] = None
    jira_api_token: Optional[str] = None
    gitlab_host: str = DEFAULT_GITLAB_HOST
    gitlab_token: Optional[str] = None
    compass_api_token: Optional[str] = None
    compass_base_url: Optional[str] = None
    mr_reviewer: str = DEFAULT_REVIEWER
    agent_display_name: Optional[str] = None
    figma_token: Optional[str] = None
    openai_api_key: Optional[str] = None
    groq_api_key: Optional[str] = None
    llm_provider: str = "openai"
    llm_model: str = DEFAULT_LLM_MODEL
    ai_review_bot_username: str = DEFAULT_AI_REVIEW_BOT
    ticket_prefixes: Tuple[str, ...] = ("FE-", "IN-")
    fe_ticket_prefix: str = "FE-"
    default_target_branch: str = "main"
    extra: Mapping[str, str] = field(default_factory=dict)

    @property
    def tmp_dir(self) -> Path:
        return Path(self.project_root) / ".cursor" / "tmp"

    def require(self, name: str) -> str:
        """Return a configured value or raise ConfigError with setup guidance."""
        value = getattr(self, name, None)
        if not value:
            raise ConfigError(f"{name.upper()} is not configured", hint=SETUP_GUIDES.get(name))
        return value


def find_project_root(start: str = ".") -> str:
    """Top of the git working tree containing ``start``, or ``start`` itself outside a repo."""
    try:
        return Repo(start, search_parent_directories=True).working_tree_dir
    except (InvalidGitRepositoryError, NoSuchPathError):
        return os.path.abspath(start)


def parse_env_file(path: Path) -> Dict[str, str]:
    """Parse one ``.env.local`` file; a missing file yields an empty mapping."""
    if not path.is_file():
        return {}
    values = dotenv_values(path)
    return {key: value for key, value in values.items() if value is not None}


def load_env_local(project_root: str) -> Dict[str, str]:
    """Merge ``<root>/.env.local`` and ``<root>/.cursor/.env.local``.

    The tool-local file wins, but only for keys it sets to a non-empty value.
    """
    root = Path(project_root)
    merged = parse_env_file(root / ".env.local")
    for key, value in parse_env_file(root / ".cursor" / ".env.local").items():
        if value.strip():
            merged[key] = value
    return merged


def _git_config_token(project_root: str) -> Optional[str]:
    try:
        value = Repo(project_root, search_parent_directories=True).git.config("--get", "gitlab.token")
    except (InvalidGitRepositoryError, NoSuchPathError, GitCommandError):
        return None
    return value.strip() or None


def load_settings(project_root: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings with precedence: process env, ``.cursor/.env.local``, ``.env.local``, defaults."""
    root = project_root or find_project_root()
    env = dict(os.environ if environ is None else environ)
    values = load_env_local(root)
    for key in PROCESS_ENV_KEYS:
        if env.get(key):
            values[key] = env[key]

    def get(key: str, default: Optional[str] = None) -> Optional[str]:
        value = values.get(key)
        return value.strip() if value and value.strip() else default

    gitlab_token = get("GITLAB_TOKEN") or _git_config_token(root)
    provider = (get("LLM_PROVIDER", "openai") or "openai").lower()
    if provider not in ("openai", "groq"):
        raise ConfigError(f"Unsupported LLM_PROVIDER: {provider}", hint="Use LLM_PROVIDER=openai or LLM_PROVIDER=groq")

    settings = Settings(
        project_root=root,
        jira_base_url=DEFAULT_JIRA_BASE_URL,
        jira_email=get("JIRA_EMAIL"),
        jira_api_token=get("JIRA_API_TOKEN"),
        gitlab_host=get("GITLAB_HOST", DEFAULT_GITLAB_HOST),
        gitlab_token=gitlab_token,
        compass_api_token=get("COMPASS_API_TOKEN"),
        compass_base_url=get("COMPASS_BASE_URL"),
        mr_reviewer=(get("MR_REVIEWER", DEFAULT_REVIEWER) or DEFAULT_REVIEWER).lstrip("@"),
        agent_display_name=get("AGENT_DISPLAY_NAME"),
        figma_token=get("FIGMA_TOKEN"),
        openai_api_key=get("OPENAI_API_KEY"),
        groq_api_key=get("GROQ_API_KEY"),
        llm_provider=provider,
        llm_model=resolve_llm_model(None, values),
        ai_review_bot_username=get("AI_REVIEW_BOT_USERNAME", DEFAULT_AI_REVIEW_BOT),
        extra={k: v for k, v in values.items() if k not in PROCESS_ENV_KEYS},
    )
    logger.debug(f"Loaded settings for {root} (llm={settings.llm_provider}/{settings.llm_model})")
    return settings


def resolve_llm_model(explicit: Optional[str], env: Mapping[str, str], default: str = DEFAULT_LLM_MODEL) -> str:
    """Pick the model: explicit argument, then LLM_MODEL / OPENAI_MODEL, then the default."""
    if explicit and explicit.strip():
        return explicit.strip()
    for key in ("LLM_MODEL", "OPENAI_MODEL"):
        value = env.get(key)
        if value and value.strip():
            return value.strip()
    return default
