"""HTTP API: cron-triggered pipeline jobs and subscriber endpoints."""

from datetime import timedelta
from functools import lru_cache
from html import escape
from typing import Any, List, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import AliasChoices, BaseModel, Field
import structlog

from ..classification.taxonomy import selectable_counties
from ..config.settings import settings
from ..ingestion.utils import utcnow
from ..newsletter.interfaces import NoArticlesError, DeliveryError, Subscriber
from ..newsletter.scheduling import is_valid_timezone, parse_send_time
from ..personalization.refiner import InterestRefiner, ConversationTurn
from ..personalization.search import ArticleSearch
from ..pipeline.jobs import NewsPipeline

logger = structlog.get_logger()

DATE_RANGES = {
    "last-week": timedelta(days=7),
    "last-month": timedelta(days=30),
    "last-3-months": timedelta(days=90),
    "last-year": timedelta(days=365),
    "all": None,
}
REFINE_ACTIONS = ("ask-questions", "enhance-description", "determine-counties")


class CronAuthError(Exception):
    """Missing or wrong bearer token on a pipeline endpoint."""


class SearchRequest(BaseModel):
    query: str = ""
    dateRange: str = "last-month"


class PreferencesUpdate(BaseModel):
    email: str
    interests: Optional[str] = None
    timezone: Optional[str] = None
    preferredSendTimes: Optional[Any] = None
    counties: Optional[List[str]] = None
    cities: Optional[List[str]] = None
    fullName: Optional[str] = None
    active: Optional[bool] = Field(None, validation_alias=AliasChoices("active", "newsletter_active"))


class TurnIn(BaseModel):
    question: str
    answer: str


class RefineRequest(BaseModel):
    action: Optional[str] = None
    interests: Optional[str] = None
    conversation: Optional[List[TurnIn]] = None
    preferences: Optional[List[str]] = None


class PreviewRequest(BaseModel):
    email: Optional[str] = None
    interests: Optional[str] = None
    counties: List[str] = Field(default_factory=list)
    cities: List[str] = Field(default_factory=list)
    firstName: str = ""
    cc: Optional[str] = None


@lru_cache(maxsize=1)
def get_pipeline() -> NewsPipeline:
    return NewsPipeline()


def verify_cron(authorization: Optional[str] = Header(None)) -> None:
    """Require `Bearer <cron secret>` when a secret is configured."""
    if settings.cron_secret and authorization != f"Bearer {settings.cron_secret}":
        logger.warning("cron_unauthorized")
        raise CronAuthError()


def error_response(status_code: int, message: str, details: str = None) -> JSONResponse:
    content = {"error": message}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def server_error(operation: str, error: Exception) -> JSONResponse:
    logger.error("request_failed", operation=operation, error=str(error))
    return error_response(500, "Internal server error", str(error))


def unsubscribe_page(title: str, message: str, status_code: int) -> HTMLResponse:
    html = f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>{escape(title)}</title>
    <style>
        body {{ font-family: Arial, sans-serif; max-width: 600px; margin: 50px auto; padding: 20px; text-align: center; color: #333; }}
        h1 {{ color: #2c3e50; }}
        a {{ color: #666; }}
    </style>
</head>
<body>
    <h1>{escape(title)}</h1>
    <p>{message}</p>
    <p><a href="{settings.public_base_url}">Return to OpenMidmarket</a></p>
</body>
</html>"""
    return HTMLResponse(content=html, status_code=status_code)


def create_app() -> FastAPI:
    app = FastAPI(title="CRE News")

    @app.exception_handler(CronAuthError)
    async def cron_auth_handler(request: Request, exc: CronAuthError):
        return error_response(401, "Unauthorized")

    @app.get("/health")
    async def health_check(pipeline: NewsPipeline = Depends(get_pipeline)):
        """Health check endpoint for load balancers."""
        try:
            stats = pipeline.storage.get_stats()
            return {"status": "healthy", "database": "connected", "articles": stats["total_articles"]}
        except Exception as e:
            return JSONResponse(status_code=503, content={"status": "unhealthy", "error": str(e)})

    # Cron jobs

    @app.get("/api/news/scrape-rss", dependencies=[Depends(verify_cron)])
    async def scrape_rss(pipeline: NewsPipeline = Depends(get_pipeline)):
        try:
            return await pipeline.scrape_rss()
        except Exception as e:
            return server_error("scrape-rss", e)

    @app.get("/api/news/scrape-firecrawl", dependencies=[Depends(verify_cron)])
    async def scrape_firecrawl(pipeline: NewsPipeline = Depends(get_pipeline)):
        try:
            return await pipeline.scrape_firecrawl()
        except Exception as e:
            return server_error("scrape-firecrawl", e)

    @app.get("/api/news/scrape-linkedin", dependencies=[Depends(verify_cron)])
    async def scrape_linkedin(pipeline: NewsPipeline = Depends(get_pipeline)):
        try:
            return await pipeline.scrape_linkedin()
        except Exception as e:
            return server_error("scrape-linkedin", e)

    @app.get("/api/news/categorize-articles", dependencies=[Depends(verify_cron)])
    async def categorize_articles(
        batch_size: int = Query(None, ge=1, le=500),
        pipeline: NewsPipeline = Depends(get_pipeline)
    ):
        try:
            return await pipeline.categorize(batch_size)
        except Exception as e:
            return server_error("categorize-articles", e)

    @app.get("/api/news/prepare-newsletters", dependencies=[Depends(verify_cron)])
    async def prepare_newsletters(pipeline: NewsPipeline = Depends(get_pipeline)):
        try:
            return await pipeline.prepare_newsletters()
        except Exception as e:
            return server_error("prepare-newsletters", e)

    @app.get("/api/news/send-scheduled-newsletters", dependencies=[Depends(verify_cron)])
    async def send_scheduled_newsletters(pipeline: NewsPipeline = Depends(get_pipeline)):
        try:
            return await pipeline.send_newsletters()
        except Exception as e:
            return server_error("send-scheduled-newsletters", e)

    # Articles

    @app.get("/api/news/articles")
    async def list_articles(
        limit: int = Query(50, ge=1, le=100),
        offset: int = Query(0, ge=0),
        pipeline: NewsPipeline = Depends(get_pipeline)
    ):
        try:
            articles = pipeline.storage.list_articles(limit=limit, offset=offset)
            return {"articles": [a.to_dict() for a in articles], "limit": limit, "offset": offset}
        except Exception as e:
            return server_error("list-articles", e)

    @app.post("/api/news/search")
    async def search_articles(body: SearchRequest, pipeline: NewsPipeline = Depends(get_pipeline)):
        query = body.query.strip()
        if not query:
            return error_response(400, "Search query is required")
        if body.dateRange not in DATE_RANGES:
            return error_response(400, f"Invalid dateRange. Use one of: {', '.join(DATE_RANGES)}")
        try:
            window = DATE_RANGES[body.dateRange]
            since = utcnow() - window if window else None
            candidates = pipeline.storage.search_candidates(since=since, limit=settings.search_candidate_limit)
            results = await ArticleSearch(pipeline.llm).search(candidates, query)
            return {
                "articles": [a.to_dict() for a in results],
                "total": len(results),
                "query": query,
                "dateRange": body.dateRange,
            }
        except Exception as e:
            return server_error("search", e)

    # Subscribers

    @app.get("/api/news/preferences")
    async def get_preferences(email: str = Query(None), pipeline: NewsPipeline = Depends(get_pipeline)):
        if not email:
            return error_response(400, "Email is required")
        subscriber = pipeline.storage.get_subscriber_by_email(email)
        if subscriber is None:
            return error_response(404, "Subscriber not found")
        return subscriber.to_dict()

    @app.put("/api/news/preferences")
    async def update_preferences(body: PreferencesUpdate, pipeline: NewsPipeline = Depends(get_pipeline)):
        if not body.email.strip():
            return error_response(400, "Email is required")
        if body.timezone is not None and not is_valid_timezone(body.timezone):
            return error_response(400, f"Invalid timezone: {body.timezone}")
        send_times = None
        if body.preferredSendTimes is not None:
            raw = body.preferredSendTimes
            send_times = [parse_send_time(t) for t in raw] if isinstance(raw, list) else [None]
            if None in send_times:
                return error_response(400, "Send times need dayOfWeek 0-6 and hour 0-23")
        try:
            subscriber = pipeline.storage.update_preferences(
                body.email,
                interests=body.interests,
                timezone=body.timezone,
                preferred_send_times=send_times,
                counties=body.counties,
                cities=body.cities,
                full_name=body.fullName,
                is_active=body.active,
            )
            if subscriber is None and body.active:
                email = body.email.strip().lower()
                subscriber = pipeline.storage.upsert_subscriber(Subscriber(
                    email=email,
                    full_name=body.fullName or email.split("@")[0],
                    selected_counties=body.counties or [],
                    selected_cities=body.cities or [],
                    interests=body.interests or "",
                    timezone=body.timezone,
                    preferred_send_times=send_times or [],
                    is_active=True,
                ))
        except Exception as e:
            return server_error("update-preferences", e)
        if subscriber is None:
            return error_response(404, "Subscriber not found")
        return subscriber.to_dict()

    @app.get("/api/news/unsubscribe", response_class=HTMLResponse)
    async def unsubscribe(email: str = Query(None), pipeline: NewsPipeline = Depends(get_pipeline)):
        if not email:
            return unsubscribe_page("Invalid Request", "No email address was provided.", 400)
        try:
            if not pipeline.storage.unsubscribe(email):
                return unsubscribe_page(
                    "Not Found", f"We couldn't find a subscription for {escape(email)}.", 404
                )
        except Exception as e:
            logger.error("unsubscribe_failed", email=email, error=str(e))
            return unsubscribe_page("Something Went Wrong", "Please try again later.", 500)
        return unsubscribe_page(
            "Unsubscribed",
            f"{escape(email)} will no longer receive the newsletter.",
            200,
        )

    @app.post("/api/news/refine-interests")
    async def refine_interests(body: RefineRequest, pipeline: NewsPipeline = Depends(get_pipeline)):
        if not body.action or not body.interests:
            return error_response(400, "Missing required fields: action and interests")
        if body.action not in REFINE_ACTIONS:
            return error_response(
                400, "Invalid action. Must be 'ask-questions', 'enhance-description', or 'determine-counties'"
            )
        if body.action in ("enhance-description", "determine-counties") and body.conversation is None:
            return error_response(400, "Missing or invalid conversation array")
        if body.action == "determine-counties" and body.preferences is None:
            return error_response(400, "Missing or invalid preferences array")
        if not pipeline.llm.is_configured():
            return error_response(500, "LLM API key not configured")

        refiner = InterestRefiner(pipeline.llm)
        conversation = [ConversationTurn(t.question, t.answer) for t in body.conversation or []]
        try:
            if body.action == "ask-questions":
                return {"success": True, "questions": await refiner.ask_questions(body.interests)}
            if body.action == "enhance-description":
                preferences = await refiner.enhance_description(body.interests, conversation)
                return {"success": True, "preferences": preferences}
            counties = await refiner.determine_counties(
                body.interests, conversation, body.preferences,
                pipeline.storage.list_counties() or selectable_counties(),
            )
            return {"success": True, "counties": counties}
        except Exception as e:
            return server_error(f"refine-interests:{body.action}", e)

    @app.post("/api/news/send-preview")
    async def send_preview(body: PreviewRequest, pipeline: NewsPipeline = Depends(get_pipeline)):
        if not body.email or not body.interests:
            return error_response(400, "Email and interests are required")
        try:
            selection = await pipeline.sender.send_preview(
                body.email, body.interests, body.counties, body.cities,
                first_name=body.firstName, cc=body.cc,
            )
        except NoArticlesError as e:
            return error_response(404, str(e))
        except DeliveryError as e:
            return error_response(500, str(e))
        except Exception as e:
            return server_error("send-preview", e)
        return {
            "success": True,
            "message": f"Preview sent to {body.email}",
            "nationalArticles": len(selection.national),
            "localArticles": len(selection.local),
        }

    return app


app = create_app()
