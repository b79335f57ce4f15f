from datetime import date, datetime
from typing import Optional
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError
from config.database import Database
from config.settings import settings
from schemas.auth import AuthContext
from schemas.dashboard import WeeklyCoachData, WeeklyCoachRequest, WeeklyCoachResponse
from services.exceptions import BookingError, ForbiddenError, UsageLimitError
import httpx
import logging

logger = logging.getLogger(__name__)


def _ai_unavailable(message: str) -> BookingError:
    return BookingError("AI_UNAVAILABLE", message, "Try again later", status_code=502)


def week_key(range_start: str) -> str:
    """ISO week of the range start, e.g. "2025-W07"."""
    year, week, _ = date.fromisoformat(range_start[:10]).isocalendar()
    return f"{year}-W{week:02d}"


class WeeklyCoachService:
    """Weekly AI summary of a barber's dashboard.

    One analysis per user, shop and week: repeated requests for the same range
    are answered from the cache, a new range in an already used week is refused.
    """

    def __init__(self, db: Database, client: Optional[httpx.AsyncClient] = None):
        self.db = db
        self.client = client

    async def get_weekly_coach(self, actor: AuthContext, payload: WeeklyCoachRequest) -> WeeklyCoachResponse:
        if not actor.is_barber:
            raise ForbiddenError("Only barbers can request the weekly analysis")

        cache_key = f"{payload.shop_id}_{payload.range.start}_{payload.range.end}"
        cached = await self.db.ai_weekly_cache.find_one({"cache_key": cache_key})
        if cached:
            logger.info(f"Weekly coach cache hit for {cache_key}")
            return WeeklyCoachResponse(
                cached=True,
                data=WeeklyCoachData(**cached["data"]),
                created_at=cached["created_at"]
            )

        try:
            week = week_key(payload.range.start)
        except ValueError:
            raise BookingError("INVALID_RANGE", f"Invalid range start '{payload.range.start}'", status_code=422)
        usage_key = f"{actor.user_id}_{payload.shop_id}_{week}"

        # Claim this week's analysis before calling out so two requests cannot both spend it
        try:
            await self.db.ai_usage.insert_one({
                "usage_key": usage_key,
                "user_id": actor.user_id,
                "shop_id": payload.shop_id,
                "week": week,
                "created_at": datetime.now()
            })
        except DuplicateKeyError:
            raise UsageLimitError(f"The weekly analysis for {week} has already been used")

        try:
            data = await self._request_analysis(payload)
        except BookingError:
            await self.db.ai_usage.delete_one({"usage_key": usage_key})
            raise

        now = datetime.now()
        await self.db.ai_weekly_cache.replace_one(
            {"cache_key": cache_key},
            {
                "cache_key": cache_key,
                "user_id": actor.user_id,
                "shop_id": payload.shop_id,
                "range": payload.range.model_dump(),
                "data": data.model_dump(),
                "created_at": now
            },
            upsert=True
        )
        logger.info(f"Stored weekly analysis {cache_key} for user {actor.user_id}")
        return WeeklyCoachResponse(cached=False, data=data, created_at=now)

    async def _request_analysis(self, payload: WeeklyCoachRequest) -> WeeklyCoachData:
        if not settings.ai_coach_url:
            raise _ai_unavailable("The weekly analysis is not configured")

        headers = {"Content-Type": "application/json"}
        if settings.ai_coach_token:
            headers["Authorization"] = f"Bearer {settings.ai_coach_token}"
        body = payload.model_dump(by_alias=True)

        try:
            if self.client is not None:
                response = await self.client.post(settings.ai_coach_url, json=body, headers=headers,
                                                  timeout=settings.ai_coach_timeout)
            else:
                async with httpx.AsyncClient(timeout=settings.ai_coach_timeout) as client:
                    response = await client.post(settings.ai_coach_url, json=body, headers=headers)
            response.raise_for_status()
            result = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Weekly analysis request failed: {str(e)}", exc_info=True)
            raise _ai_unavailable("The weekly analysis could not be generated")

        # The endpoint may answer with the bare data or wrapped in {"data": ...}
        if isinstance(result, dict) and isinstance(result.get("data"), dict):
            result = result["data"]
        try:
            return WeeklyCoachData.model_validate(result)
        except ValidationError as e:
            logger.error(f"Weekly analysis response has an unexpected shape: {str(e)}")
            raise _ai_unavailable("The weekly analysis returned an invalid answer")
