import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .db import SessionLocal, init_db
from .errors import AIServiceUnavailable, LessonNotFound, PersistenceUnavailable, ScoringError
from .settings import settings
from .routers import auth
from .routers import feedback
from .routers import gamification
from .routers import lessons

logging.basicConfig(
	level=getattr(logging, settings.log_level.upper(), logging.INFO),
	format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Speaking Academy API")
app.include_router(auth.router)
app.include_router(lessons.router)
app.include_router(feedback.router)
app.include_router(gamification.router)


@app.exception_handler(ScoringError)
async def scoring_error_handler(request: Request, exc: ScoringError):
	logger.warning("Unusable judgement for %s: %s", request.url.path, exc)
	return JSONResponse(status_code=502, content={"detail": f"Feedback could not be scored, please resubmit: {exc}"})


@app.exception_handler(AIServiceUnavailable)
async def ai_error_handler(request: Request, exc: AIServiceUnavailable):
	logger.warning("AI service failed for %s: %s", request.url.path, exc)
	return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.exception_handler(PersistenceUnavailable)
async def persistence_error_handler(request: Request, exc: PersistenceUnavailable):
	logger.error("Storage unavailable for %s: %s", request.url.path, exc)
	return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(LessonNotFound)
async def lesson_not_found_handler(request: Request, exc: LessonNotFound):
	return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.get("/info")
def root():
	return {"status": "ok", "ai_configured": bool(settings.ai_api_key)}


@app.on_event("startup")
async def startup_event():
	# Initialize DB schema
	init_db()
	db = SessionLocal()
	try:
		auth.ensure_seed_admin(db)
	finally:
		db.close()
