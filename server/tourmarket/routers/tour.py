"""Tour router for catalog operations."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.dependencies import RequiredAuth
from ..core.exceptions import ProblemDetailsException
from ..core.identifiers import parse_resource_id
from ..models.tour import Tour as TourModel
from ..schemas.common import Money
from ..schemas.tour import (
    CreateTourRequest,
    GetTourRequest,
    ModerateTourRequest,
    Tour,
    UpdateTourPriceRequest,
)
from ..services.authorization import Actor
from ..services.catalog_service import CatalogService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/tour", tags=["tour"])

# Define dependencies to avoid B008 linting errors
DB_DEPENDENCY = Depends(get_db)


def _convert_tour_to_schema(tour_model: TourModel) -> Tour:
    """Convert tour model to schema."""
    return Tour(
        id=str(tour_model.id),
        title=tour_model.title,
        description=tour_model.description,
        price=Money(amount=tour_model.price_amount, currency=tour_model.price_currency),
        max_group_size=tour_model.max_group_size,
        operator_id=tour_model.created_by,
        is_active=tour_model.is_active,
        approval_status=tour_model.approval_status,
        available_dates=[entry.travel_date for entry in tour_model.available_dates],
    )


def _tour_response(tour_model: TourModel) -> JSONResponse:
    return JSONResponse(
        status_code=200,
        content=_convert_tour_to_schema(tour_model).model_dump(mode="json")
    )


@router.post("/create", response_model=Tour)
async def create_tour(
    request: CreateTourRequest,
    actor: Actor = RequiredAuth,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """
    Publish a new tour.

    The tour is owned by the calling operator and awaits admin approval
    before it can be booked.
    """
    try:
        tour = await CatalogService(db).create_tour(request, actor)
        return _tour_response(tour)

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in tour creation",
            extra={"title": request.title, "user_id": actor.user_id, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/get", response_model=Tour)
async def get_tour(
    request: GetTourRequest,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """Retrieve a tour by ID."""
    try:
        tour = await CatalogService(db).get_tour_by_id_or_raise(parse_resource_id(request.tour_id, "tour"))
        return _tour_response(tour)

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in tour retrieval",
            extra={"tour_id": request.tour_id, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/moderate", response_model=Tour)
async def moderate_tour(
    request: ModerateTourRequest,
    actor: Actor = RequiredAuth,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """Approve or reject a tour (admin only)."""
    try:
        tour = await CatalogService(db).set_approval_status(
            parse_resource_id(request.tour_id, "tour"),
            request.approval_status,
            actor,
            is_active=request.is_active,
        )
        return _tour_response(tour)

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in tour moderation",
            extra={"tour_id": request.tour_id, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/update-price", response_model=Tour)
async def update_tour_price(
    request: UpdateTourPriceRequest,
    actor: Actor = RequiredAuth,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """
    Change a tour's per-participant price.

    Bookings already made keep the price they were requested at.
    """
    try:
        tour = await CatalogService(db).update_price(
            parse_resource_id(request.tour_id, "tour"),
            request.price_amount,
            actor,
        )
        return _tour_response(tour)

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in tour price update",
            extra={"tour_id": request.tour_id, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error")
