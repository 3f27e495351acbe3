from fastapi import Depends, FastAPI, HTTPException, status
from contextlib import asynccontextmanager
from typing import List
import logging

# Use relative imports
from . import config, deals, schemas, totals
from .crud import CatalogReader, SqlCatalog
from .database import AsyncSessionFactory, Base, engine

# Basic logging setup
logging.basicConfig(level=config.LOG_LEVEL, format='%(asctime)s [%(levelname)s] %(name)s: %(message)s')
logger = logging.getLogger(__name__)


# Use this only for development/testing. Use Alembic for production migrations.
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Pricing Service starting up...")
    logger.info(f"Listening on {config.APP_HOST}:{config.APP_PORT}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables check complete.")
    yield
    logger.info("Pricing Service shutting down...")
    await engine.dispose()


app = FastAPI(
    title="Pricing Service",
    description="Applies deals to products and calculates order totals including tax, coupons, shipping and COD fees.",
    version="0.2.0",
    lifespan=lifespan
)


def get_catalog() -> CatalogReader:
    """FastAPI dependency providing the catalog store."""
    return SqlCatalog(AsyncSessionFactory)


@app.get("/health", tags=["Monitoring"], summary="Health Check")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy"}


@app.post(
    "/pricing/products",
    response_model=List[schemas.PricedProduct],
    tags=["Pricing"],
    summary="Apply Deals to Products"
)
async def price_products_endpoint(
    request_data: schemas.ProductPricingRequest,
    catalog: CatalogReader = Depends(get_catalog)
):
    """
    Returns the requested products annotated with their original price,
    best deal price and the deal that produced it. Unknown ids are omitted.
    """
    logger.info(f"Received deal pricing request for products: {request_data.product_ids}")
    try:
        products = await catalog.fetch_products(request_data.product_ids)
        by_id = {product.id: product for product in products}
        ordered = [by_id[product_id] for product_id in dict.fromkeys(request_data.product_ids) if product_id in by_id]
        return await deals.apply_deals_to_products(catalog, ordered)
    except Exception as e:
        logger.exception(f"Error applying deals to products {request_data.product_ids}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred during deal pricing."
        )


@app.post(
    "/pricing/totals",
    response_model=schemas.TotalsResult,
    tags=["Pricing"],
    summary="Calculate Order Totals"
)
async def calculate_totals_endpoint(
    request_data: schemas.CheckoutTotalsRequest,
    catalog: CatalogReader = Depends(get_catalog)
):
    """
    Receives line items (product, quantity, optional variant) with the coupon,
    shipping method, payment method and address, and returns the totals.
    """
    logger.info(f"Received totals request for {len(request_data.items)} line items")
    try:
        return await totals.calculate_totals(catalog, request_data)
    except Exception as e:
        logger.exception(f"Error calculating totals: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred during totals calculation."
        )
