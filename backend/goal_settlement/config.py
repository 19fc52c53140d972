from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Savings Goal Settlement API"
    database_url: str = ""
    # Backend that owns contract wire framing, the prover and the vault API.
    backend_url: str = "http://localhost:3001"
    # Empty means no contract configured; proofs then settle in degraded local mode.
    savings_goals_contract: str = ""
    stellar_network: Literal["testnet", "mainnet", "local"] = "testnet"
    vault_address: str = "CAOAAJZKK4PT6WO2PFEXMFIGWDTAMS5Z7GDG36SGSC646V3B3HBYBHIE"

    contract_write_timeout_seconds: float = 30.0
    # read-after-write must stay well under the write timeout
    contract_read_timeout_seconds: float = 5.0
    prover_timeout_seconds: float = 90.0
    vault_timeout_seconds: float = 30.0
    read_max_retries: int = 2

    reconcile_debounce_seconds: float = 10.0
    allow_unverified_achievement: bool = True

    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings = Settings()
