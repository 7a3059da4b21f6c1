import uuid
from pydantic import BaseModel, Field


class RestaurantRequest(BaseModel):
    name: str = Field(..., description="Name of the restaurant.")
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    average_prep_time: int = Field(20, gt=0, description="Typical preparation time in minutes.")
    is_open: bool = Field(True, description="Whether the restaurant is accepting orders.")


class MenuItemRequest(BaseModel):
    name: str = Field(..., description="Name of the menu item (e.g., Chicken Biryani).")
    price: int = Field(..., gt=0, description="Selling price in paise.")
    is_available: bool = Field(True, description="Whether the item can be ordered.")


class RestaurantResponse(BaseModel):
    id: uuid.UUID
    owner_id: str
    name: str
    lat: float
    lng: float
    is_open: bool
    average_prep_time: int


class MenuItemResponse(BaseModel):
    id: uuid.UUID
    restaurant_id: uuid.UUID
    name: str
    price: int
    is_available: bool
