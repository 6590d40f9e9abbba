"""
Pydantic schemas for YouPick Discovery Service
"""
from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum


class GeoPoint(BaseModel):
    """Latitude/longitude pair in degrees"""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    class Config:
        frozen = True


class Timeframe(str, Enum):
    """How far ahead an event search looks"""
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"


EVENT_TYPES = {"music", "sports", "festival", "comedy", "food", "art", "other"}


# User schema (decoded from the bearer token)
class User(BaseModel):
    """Authenticated viewer"""
    id: str
    username: Optional[str] = None
    email: Optional[str] = None


# Event search schemas
class EventRecord(BaseModel):
    """Event returned by the search provider, optionally enriched with distance"""
    name: str
    date: str
    time: Optional[str] = None
    venue: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    address: Optional[str] = None
    distance: Optional[float] = None  # miles, computed per caller
    source: Optional[str] = None

    @validator("type")
    def normalize_type(cls, v):
        if v is None:
            return v
        v = v.lower()
        return v if v in EVENT_TYPES else "other"


class EventSearchRequest(BaseModel):
    """Event search request"""
    subject_name: str = Field(..., min_length=1, max_length=200)
    subject_category: str = Field(..., min_length=1, max_length=100)
    timeframe: Timeframe = Timeframe.TODAY
    location_scope: Optional[str] = Field(None, max_length=200)
    caller_location: Optional[GeoPoint] = None


class EventSearchResponse(BaseModel):
    """Event search response"""
    events: List[EventRecord]
    timeframe: Timeframe
    error: Optional[str] = None


# Category safety net schemas
class CandidateSpot(BaseModel):
    """Spot checked against an intent's category rule"""
    name: str
    category: str = ""
    description: Optional[str] = None
    tags: Optional[List[str]] = None


class SpotValidationRequest(BaseModel):
    """Batch validation request"""
    intent: Optional[str] = None
    spots: List[CandidateSpot] = Field(..., max_items=200)


class SpotValidationResponse(BaseModel):
    """Spots that passed validation, in request order"""
    intent: str
    spots: List[CandidateSpot]
    rejected: int


# Places schemas
class PlacePrediction(BaseModel):
    """Autocomplete prediction"""
    place_id: str
    description: str
    main_text: Optional[str] = None
    secondary_text: Optional[str] = None


class PlaceDetails(BaseModel):
    """Resolved locality for a place id"""
    place_id: str
    city: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class City(BaseModel):
    """Locality inside a region"""
    place_id: str
    name: str
    formatted_address: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class CitiesResponse(BaseModel):
    """Cities-in-region response"""
    cities: List[City]
    error: Optional[str] = None


# Feed schemas
class FeedTab(str, Enum):
    """Feed tab"""
    TODAY = "today"
    TRENDING = "trending"
    NEW = "new"


class FeedFilter(BaseModel):
    """Filters for one feed page"""
    city: Optional[str] = None
    center: Optional[GeoPoint] = None
    radius_miles: Optional[float] = Field(None, gt=0)
    post_type: Optional[str] = None
    tab: Optional[FeedTab] = None


class FeedPost(BaseModel):
    """Feed post with author and like fields joined in at fetch time"""
    id: str
    user_id: Optional[str] = None
    post_type: str
    post_subtype: Optional[str] = None
    title: str = ""
    body: Optional[str] = None
    result_place_id: Optional[str] = None
    result_name: str = ""
    result_category: Optional[str] = None
    result_address: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    city: Optional[str] = None
    is_anonymous: bool = False
    is_bot: bool = False
    bot_display_name: Optional[str] = None
    bot_avatar_url: Optional[str] = None
    visibility: str = "public"
    created_at: datetime
    expires_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None
    # Derived
    username: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    like_count: int = 0
    liked_by_me: bool = False


class PostDraft(BaseModel):
    """New feed post"""
    post_type: str = Field(..., min_length=1, max_length=50)
    post_subtype: Optional[str] = Field(None, max_length=50)
    title: str = Field(..., min_length=1, max_length=200)
    body: Optional[str] = Field(None, max_length=2000)
    result_place_id: Optional[str] = None
    result_name: str = Field(..., min_length=1, max_length=200)
    result_category: Optional[str] = None
    result_address: Optional[str] = None
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    city: Optional[str] = Field(None, max_length=120)
    is_anonymous: bool = False
    metadata: Optional[Dict[str, Any]] = None


class FeedResponse(BaseModel):
    """Feed page response"""
    posts: List[FeedPost]
    error: Optional[str] = None


class LikeResponse(BaseModel):
    """Like toggle result"""
    post_id: str
    liked: bool
    like_count: int
    status: str


class PostCreatedResponse(BaseModel):
    """Post creation result"""
    id: str


# Kafka event schemas
class PostCreatedEvent(BaseModel):
    """Post insert notification"""
    event_type: str = "post.created"
    post_id: str
    user_id: Optional[str] = None
    city: Optional[str] = None
    timestamp: str
