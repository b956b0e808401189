from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    db_host: str = "localhost"
    db_port: int = 54377
    db_user: str = "postgres"
    db_password: str = "postgres"
    db_name: str = "equitybridge"
    redis_url: str = "redis://localhost:6379/0"

    alpaca_api_key: str = ""
    alpaca_api_secret: str = ""
    alpaca_base_url: str = "https://paper-api.alpaca.markets/v2"
    brokerage_timeout: float = 30.0
    brokerage_rate_per_second: float = 3.0

    chain_rpc_url: str = "https://base-sepolia.publicnode.com"
    chain_id: int = 84532  # Base Sepolia
    rpc_timeout: float = 20.0
    rpc_rate_per_second: float = 10.0
    contract_address: str = "0x8B0EF8eD5D6F3ceF0803c26Ea7471ba83CB6cB80"
    operator_private_key: str = ""

    confirmation_lag: int = 3  # blocks behind head, reorg margin
    max_block_range: int = 2000  # eth_getLogs span per cycle
    initial_lookback_blocks: int = 100
    start_block: int | None = None

    max_attempts: int = 4
    retry_backoff_seconds: float = 1.0
    retry_backoff_max_seconds: float = 30.0

    time_in_force: str = "day"
    extended_hours: bool = False
    supported_symbols: list[str] = ["AAPL", "TSLA", "MSFT"]
    catalog_refresh_seconds: int = 900

    scan_interval_seconds: float = 60.0
    lock_ttl_seconds: int = 600
    debug: bool = False

    @property
    def database_url(self) -> str:
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    class Config:
        env_file = ".env"


settings = Settings()
