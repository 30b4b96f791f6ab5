from pydantic import BaseModel, ConfigDict


class TokenEntity(BaseModel):
    address: str  # checksum
    symbol: str
    decimals: int

    model_config = ConfigDict(frozen=True)
