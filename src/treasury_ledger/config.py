from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    db_host: str = "localhost"
    db_port: int = 54377
    db_user: str = "postgres"
    db_password: str = "postgres"
    db_name: str = "treasury_ledger"
    redis_url: str = "redis://localhost:6379/0"
    near_rpc_url: str = "https://archival-rpc.mainnet.fastnear.com/"
    fastnear_api_key: str = ""
    rpc_rate_per_second: float = 5.0
    rpc_timeout: float = 30.0
    intents_contract: str = "intents.near"
    nearblocks_api_key: str = ""
    monitor_interval_seconds: int = 4 * 3600  # six intents polls per day
    seed_lookback_blocks: int = 2_592_000  # ~30 days at one block per second
    past_lookback_blocks: int = 600_000  # ~7 days
    ft_receipt_lookahead_blocks: int = 3
    probe_attempts: int = 3
    probe_backoff_seconds: float = 2.0
    max_fill_iterations: int = 50
    debug: bool = True

    @property
    def database_url(self) -> str:
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    class Config:
        env_file = ".env"


settings = Settings()
