"""Per-API resilience configuration loaded from resilience.yaml.

Each external API gets a request rate and a retry policy:

    default:
      requests_per_minute: 60
    apis:
      fred:
        requests_per_minute: 120
        retry: {max_retries: 5, initial_delay: 0.5}

APIs without an entry use ``default``. No YAML file = built-in table.
"""

import logging
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from signal_hub.resilience.retry import RetryPolicy

logger = logging.getLogger(__name__)


class ApiPolicy(BaseModel):
    """Rate and retry settings for one external API."""

    requests_per_minute: int = Field(default=60, gt=0)
    burst_size: int | None = Field(default=None, gt=0)
    retry: RetryPolicy = RetryPolicy()
    circuit_reset_after: float = Field(default=60.0, ge=0)  # seconds


# Published free-tier limits of the upstream data vendors
DEFAULT_API_RATES: dict[str, int] = {
    "finnhub": 60,
    "fred": 120,
    "twelvedata": 800,
    "fmp": 250,
    "marketstack": 1000,
    "polygon": 500,
    "coingecko": 30,
    "alphavantage": 25,
}


def _default_apis() -> dict[str, ApiPolicy]:
    return {name: ApiPolicy(requests_per_minute=rpm) for name, rpm in DEFAULT_API_RATES.items()}


class ResilienceConfig(BaseModel):
    """Top-level resilience.yaml configuration."""

    default: ApiPolicy = ApiPolicy()
    apis: dict[str, ApiPolicy] = Field(default_factory=_default_apis)

    @model_validator(mode="after")
    def _validate(self):
        for name, policy in self.apis.items():
            if not name or name != name.strip():
                raise ValueError(f"invalid API name '{name}'")
            if policy.burst_size is not None and policy.burst_size > policy.requests_per_minute * 10:
                raise ValueError(
                    f"{name}: burst_size {policy.burst_size} exceeds 10x the per-minute rate"
                )
        return self

    def policy_for(self, api: str) -> ApiPolicy:
        """Return the API's policy, falling back to ``default``."""
        return self.apis.get(api, self.default)


_DEFAULT_PATH = Path(__file__).parent.parent / "resilience.yaml"


def load_resilience_config(path: Path | str | None = None) -> ResilienceConfig:
    """Load resilience config from a YAML file.

    Falls back to built-in defaults if the file doesn't exist.
    """
    config_path = Path(path) if path else _DEFAULT_PATH

    # Load .env so SIGNAL_HUB_* overrides are visible to Settings as well
    load_dotenv(config_path.parent / ".env", override=False)

    if not config_path.exists():
        logger.info(f"No resilience.yaml found at {config_path}, using defaults")
        return ResilienceConfig()

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    config = ResilienceConfig(**raw)
    logger.info(
        f"Loaded resilience config: {len(config.apis)} APIs, "
        f"default {config.default.requests_per_minute} req/min"
    )
    return config
