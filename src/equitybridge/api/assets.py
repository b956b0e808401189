from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from equitybridge.api.deps import get_catalog
from equitybridge.api.schemas.assets import SupportedAssetList, SupportedAssetResponse
from equitybridge.catalog.asset_catalog import AssetCatalog
from equitybridge.exceptions import DependencyError

router = APIRouter(prefix="/api/assets", tags=["assets"])

CatalogDep = Annotated[AssetCatalog, Depends(get_catalog)]


@router.get("/supported", response_model=SupportedAssetList)
async def list_supported_assets(catalog: CatalogDep) -> SupportedAssetList:
    """Allow-listed symbols that are active on the brokerage."""
    try:
        assets = await catalog.list_supported_assets()
    except DependencyError as e:
        raise HTTPException(status_code=503, detail=f"Asset catalog unavailable: {e}")
    return SupportedAssetList(
        assets=[SupportedAssetResponse.model_validate(a) for a in assets],
        supported_symbols=catalog.supported_symbols,
    )
