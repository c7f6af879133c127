from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .utils import stable_hash


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STEPVOTE_")

    k: int = Field(default=3, ge=1)
    round_batch_size: int = Field(default=5, ge=1)
    max_rounds: int = Field(default=50, ge=1)
    flag_token_ceiling: int = Field(default=750, ge=1)
    proposer_timeout_s: float = Field(default=30.0, gt=0)
    max_in_flight: int = Field(default=0, ge=0)
    # "candidate" checks the lead after every vote and cancels the rest of the round
    decision_check: Literal["round", "candidate"] = "round"
    max_steps: int = Field(default=0, ge=0)
    open_seed: int = 1337
    log_environment: Literal["development", "production"] = "development"

    def seed_for(self, label: str) -> int:
        digest = stable_hash({"label": label, "seed": self.open_seed})
        return int(digest[:8], 16)

    def concurrency(self) -> int:
        return self.max_in_flight or self.round_batch_size
