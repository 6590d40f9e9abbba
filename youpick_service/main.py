"""
FastAPI application for YouPick Discovery Service
"""
from fastapi import FastAPI, Depends, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from contextlib import aclosing, asynccontextmanager
from typing import List, Optional
import logging

from .config import settings
from .database import db, get_db, Database
from .cache import search_cache, get_cache
from .category_rules import CategoryPolicy, get_category_policy
from .service_client import service_client, get_service_client, ServiceClient
from .kafka_producer import kafka_producer, get_kafka_producer, KafkaProducerManager
from .kafka_consumer import kafka_consumer
from .notifications import PostNotifier, get_post_notifier
from .dependencies import get_current_user_optional
from .errors import AuthorizationFailure, DiscoveryError, TransportFailure, ValidationFailure
from .feed import FeedAggregator
from .search import EventSearchService
from .schemas import (
    User,
    CitiesResponse,
    EventSearchRequest,
    EventSearchResponse,
    FeedFilter,
    FeedResponse,
    FeedTab,
    GeoPoint,
    LikeResponse,
    PlaceDetails,
    PlacePrediction,
    PostCreatedResponse,
    PostDraft,
    SpotValidationRequest,
    SpotValidationResponse,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info("Starting YouPick Discovery Service...")

    await db.connect()
    logger.info("Database connected")

    await search_cache.connect()
    logger.info("Search cache initialized")

    await service_client.start()
    await kafka_producer.start()
    await kafka_consumer.start()

    logger.info(f"YouPick Discovery Service started successfully on port {settings.PORT}")

    yield

    # Shutdown
    logger.info("Shutting down YouPick Discovery Service...")

    await kafka_consumer.stop()
    await kafka_producer.stop()
    await service_client.stop()
    await search_cache.disconnect()
    await db.disconnect()

    logger.info("YouPick Discovery Service shut down successfully")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Event search, category safety net and community feed for YouPick",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


ERROR_STATUS = {
    AuthorizationFailure: status.HTTP_401_UNAUTHORIZED,
    ValidationFailure: 422,
    TransportFailure: status.HTTP_502_BAD_GATEWAY,
}


@app.exception_handler(DiscoveryError)
async def discovery_error_handler(request: Request, exc: DiscoveryError):
    """Map service errors to HTTP responses"""
    status_code = ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


# Helper functions to build per-request services
def get_event_search_service(
    cache=Depends(get_cache),
    client: ServiceClient = Depends(get_service_client),
    producer: KafkaProducerManager = Depends(get_kafka_producer),
) -> EventSearchService:
    """Get EventSearchService over the shared cache"""
    return EventSearchService(cache, client, producer)


def get_feed_aggregator(
    db: Database = Depends(get_db),
    notifier: PostNotifier = Depends(get_post_notifier),
    producer: KafkaProducerManager = Depends(get_kafka_producer),
    current_user: Optional[User] = Depends(get_current_user_optional),
) -> FeedAggregator:
    """Get FeedAggregator for the current viewer"""
    return FeedAggregator(
        db,
        viewer_id=current_user.id if current_user else None,
        notifier=notifier,
        kafka_producer=producer,
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION
    }


# Event search endpoints
@app.post(
    "/api/v1/events/search",
    response_model=EventSearchResponse,
    tags=["Events"],
    summary="Search events for a spot",
)
async def search_events(
    request: EventSearchRequest,
    service: EventSearchService = Depends(get_event_search_service),
):
    """
    Search events related to a spot

    - Results are cached for 10 minutes per spot, category, timeframe and city
    - Distance from caller_location is computed per request
    - Provider failures return an empty list with an error message
    """
    events = await service.search(
        request.subject_name,
        request.subject_category,
        request.timeframe,
        request.location_scope,
        request.caller_location,
    )
    return EventSearchResponse(events=events, timeframe=request.timeframe, error=service.error)


# Category safety net
@app.post(
    "/api/v1/spots/validate",
    response_model=SpotValidationResponse,
    tags=["Spots"],
    summary="Filter spots against an intent's category rule",
)
async def validate_spots(
    request: SpotValidationRequest,
    policy: CategoryPolicy = Depends(get_category_policy),
):
    kept = policy.filter_valid(request.spots, request.intent)
    return SpotValidationResponse(
        intent=policy.resolve_intent(request.intent),
        spots=kept,
        rejected=len(request.spots) - len(kept),
    )


# Places endpoints
@app.get(
    "/api/v1/places/autocomplete",
    response_model=List[PlacePrediction],
    tags=["Places"],
)
async def autocomplete(
    query: str = Query(..., min_length=1, max_length=200),
    types: Optional[str] = Query(None),
    country: Optional[str] = Query(None, min_length=2, max_length=2),
    client: ServiceClient = Depends(get_service_client),
):
    return await client.autocomplete(query, types, country)


@app.get(
    "/api/v1/places/cities",
    response_model=CitiesResponse,
    tags=["Places"],
)
async def cities_in_region(
    region: str = Query(..., min_length=1, max_length=120),
    country: Optional[str] = Query(None, max_length=120),
    client: ServiceClient = Depends(get_service_client),
):
    """Alphabetical, de-duplicated localities in a region"""
    try:
        cities = await client.cities_in_region(region, country)
    except TransportFailure as e:
        return CitiesResponse(cities=[], error=e.message)
    return CitiesResponse(cities=cities)


@app.get(
    "/api/v1/places/{place_id}",
    response_model=PlaceDetails,
    tags=["Places"],
)
async def place_details(
    place_id: str,
    client: ServiceClient = Depends(get_service_client),
):
    details = await client.place_details(place_id)
    if details is None:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": "Place not found"})
    return details


# Feed endpoints
def get_feed_filter(
    city: Optional[str] = Query(None, max_length=120),
    latitude: Optional[float] = Query(None, ge=-90, le=90),
    longitude: Optional[float] = Query(None, ge=-180, le=180),
    radius_miles: Optional[float] = Query(None, gt=0),
    post_type: Optional[str] = Query(None, max_length=50),
    tab: Optional[FeedTab] = Query(None),
) -> FeedFilter:
    """Feed filter from query parameters"""
    center = None
    if latitude is not None and longitude is not None:
        center = GeoPoint(latitude=latitude, longitude=longitude)

    return FeedFilter(
        city=city,
        center=center,
        radius_miles=radius_miles,
        post_type=post_type,
        tab=tab,
    )


@app.get(
    "/api/v1/feed",
    response_model=FeedResponse,
    tags=["Feed"],
    summary="Get community feed",
)
async def get_feed(
    feed_filter: FeedFilter = Depends(get_feed_filter),
    aggregator: FeedAggregator = Depends(get_feed_aggregator),
):
    """
    Get the newest public posts

    - Filtered by exact city, or by radius around latitude/longitude
    - Posts without coordinates are never excluded by the radius
    """
    posts = await aggregator.fetch_page(feed_filter)
    return FeedResponse(posts=posts, error=aggregator.error)


async def feed_events(request: Request, aggregator: FeedAggregator, feed_filter: FeedFilter):
    """Server-sent events: one FeedResponse per page until the client leaves"""
    async with aclosing(aggregator.stream(feed_filter)) as pages:
        async for posts in pages:
            if await request.is_disconnected():
                logger.debug("Feed stream client disconnected")
                break
            response = FeedResponse(posts=posts, error=aggregator.error)
            yield f"data: {response.model_dump_json()}\n\n"


@app.get(
    "/api/v1/feed/stream",
    tags=["Feed"],
    summary="Stream community feed updates",
)
async def stream_feed(
    request: Request,
    feed_filter: FeedFilter = Depends(get_feed_filter),
    aggregator: FeedAggregator = Depends(get_feed_aggregator),
):
    """
    Stream the feed as server-sent events

    - The first event is the current page
    - Every post insert sends the page refetched with the same filter
    """
    return StreamingResponse(
        feed_events(request, aggregator, feed_filter),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@app.post(
    "/api/v1/feed/posts",
    response_model=PostCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Feed"],
    summary="Create a feed post",
)
async def create_post(
    draft: PostDraft,
    aggregator: FeedAggregator = Depends(get_feed_aggregator),
):
    post_id = await aggregator.create_post(draft)
    return PostCreatedResponse(id=post_id)


@app.post(
    "/api/v1/feed/posts/{post_id}/like",
    response_model=LikeResponse,
    tags=["Feed"],
    summary="Like or unlike a post",
)
async def toggle_like(
    post_id: str,
    aggregator: FeedAggregator = Depends(get_feed_aggregator),
):
    mutation = await aggregator.toggle_like(post_id)
    post = aggregator.get_post(post_id)
    return LikeResponse(
        post_id=post_id,
        liked=post.liked_by_me,
        like_count=post.like_count,
        status=mutation.status.value,
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "youpick_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
