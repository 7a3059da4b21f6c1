import logging
from uuid import UUID

from fastapi import APIRouter, Depends, status

from coopmarket.api.deps import get_principal
from coopmarket.core.errors import ConflictError, ForbiddenError, NotFoundError
from coopmarket.models.order import MenuItem, Restaurant
from coopmarket.schemas.ledger import Actor, ActorRole
from coopmarket.schemas.response import SuccessResponse
from coopmarket.schemas.restaurant import MenuItemRequest, MenuItemResponse, RestaurantRequest, RestaurantResponse

log = logging.getLogger(__name__)

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED, response_model=SuccessResponse)
async def add_restaurant(restaurant_data: RestaurantRequest, actor: Actor = Depends(get_principal)):
    """
    Registers the calling restaurant principal as the operator of a new restaurant.
    """
    if actor.role != ActorRole.RESTAURANT:
        raise ForbiddenError("Only restaurant accounts can register a restaurant")
    if await Restaurant.filter(owner_id=actor.id).exists():
        raise ConflictError(f"{actor.id} already operates a restaurant", reason="restaurant_exists")

    restaurant = await Restaurant.create(owner_id=actor.id, **restaurant_data.model_dump())
    log.info(f"Restaurant '{restaurant.name}' created for owner {actor.id}.")
    data = RestaurantResponse(
        id=restaurant.id,
        owner_id=restaurant.owner_id,
        name=restaurant.name,
        lat=restaurant.lat,
        lng=restaurant.lng,
        is_open=restaurant.is_open,
        average_prep_time=restaurant.average_prep_time,
    ).model_dump()
    return SuccessResponse(data=data)


@router.post("/{restaurant_id}/menu", status_code=status.HTTP_201_CREATED, response_model=SuccessResponse)
async def add_menu_item(restaurant_id: UUID, item_data: MenuItemRequest, actor: Actor = Depends(get_principal)):
    """Adds a menu item to the caller's own restaurant."""
    restaurant = await Restaurant.get_or_none(id=restaurant_id)
    if not restaurant:
        raise NotFoundError(f"Restaurant with ID {restaurant_id} not found.")
    if actor.role != ActorRole.RESTAURANT or restaurant.owner_id != actor.id:
        raise ForbiddenError("Only the restaurant's operator can change its menu")

    menu_item = await MenuItem.create(restaurant=restaurant, **item_data.model_dump())
    data = MenuItemResponse(
        id=menu_item.id,
        restaurant_id=restaurant.id,
        name=menu_item.name,
        price=menu_item.price,
        is_available=menu_item.is_available,
    ).model_dump()
    return SuccessResponse(data=data)
