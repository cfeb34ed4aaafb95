# storefront/config.py

from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite+aiosqlite:///./storefront.db"

    # Stripe
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_API_VERSION: str = "2025-02-24.acacia"
    MIN_STRIPE_AMOUNT_USD: float = 0.50

    # Solana RPC: Helius -> Alchemy -> public mainnet
    SOLANA_RPC_URL: str = ""
    HELIUS_API_KEY: str = ""
    ALCHEMY_API_KEY: str = ""
    SOLANA_RPC_TIMEOUT: float = 15.0

    COINGECKO_API: str = "https://api.coingecko.com/api/v3"

    # Merchant dashboard auth
    AUTH_SECRET_KEY: str = "change-me"
    AUTH_TOKEN_EXPIRE_MINUTES: int = 480
    AUTH_LOGIN: str = "admin"
    AUTH_PASSWORD: str = "admin"

    LOG_DIR: str = "storefront/log"
    LOG_PRINT: str = "1"

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )

    @property
    def solana_rpc_url(self) -> str:
        if self.SOLANA_RPC_URL:
            return self.SOLANA_RPC_URL
        if self.HELIUS_API_KEY:
            return f"https://mainnet.helius-rpc.com/?api-key={self.HELIUS_API_KEY}"
        if self.ALCHEMY_API_KEY:
            return f"https://solana-mainnet.g.alchemy.com/v2/{self.ALCHEMY_API_KEY}"
        return "https://api.mainnet-beta.solana.com"

settings = Settings()
