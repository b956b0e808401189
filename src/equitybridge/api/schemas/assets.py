from typing import Optional

from pydantic import BaseModel


class SupportedAssetResponse(BaseModel):
    symbol: str
    name: Optional[str] = None
    tradable: bool
    fractionable: bool = False
    brokerage_asset_id: Optional[str] = None

    model_config = {"from_attributes": True}


class SupportedAssetList(BaseModel):
    assets: list[SupportedAssetResponse]
    supported_symbols: list[str]
