"""Id lookups for deep links: /api/metadata/*.

`type` picks the side of the platform (driver or customer); anything else
falls back to driver.
"""

from typing import Any

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from ridemetrics.api.dependencies import StoreDep, require_params

router = APIRouter(prefix="/api/metadata", tags=["metadata"])


def _not_found(message: str) -> JSONResponse:
    return JSONResponse(status_code=404, content={"success": False, "error": message})


@router.get("/city-uuid")
def city_uuid(
    store: StoreDep,
    city: str | None = None,
    merchantId: str | None = None,
    kind: str = Query("driver", alias="type"),
) -> Any:
    require_params(city=city, merchantId=merchantId)
    uuid = store.metadata.city_uuid(city, merchantId, kind)
    if uuid is None:
        return _not_found("City UUID not found")
    return {"success": True, "uuid": uuid}


@router.get("/merchant-cities")
def merchant_cities(
    store: StoreDep,
    merchantId: str | None = None,
    kind: str = Query("driver", alias="type"),
) -> Any:
    require_params(merchantId=merchantId)
    cities = store.metadata.merchant_cities(merchantId, kind)
    return {"success": True, "cities": cities}


@router.get("/merchant-uuid")
def merchant_uuid(
    store: StoreDep,
    merchant: str | None = None,
    kind: str = Query("driver", alias="type"),
) -> Any:
    require_params(merchant=merchant)
    uuid = store.metadata.merchant_uuid(merchant, kind)
    if uuid is None:
        return _not_found("Merchant UUID not found")
    return {"success": True, "uuid": uuid}
