import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config.settings import AppSettings, get_settings
from core.job_runner import JobRunner
from core.process_store import ProcessStore
from router import chat
from services.chart_inference import ChartInferenceEngine
from services.data_context import DataContext
from services.llm_client import LLMClient
from services.message_processor import MessageProcessor
from services.schema_catalog import SchemaCatalog
from services.schema_linker import SchemaLinker
from services.sql_executor import SQLExecutor
from services.sql_generator import SQLGenerator
from services.summarizer import ResultNarrator

logger = logging.getLogger("text2sql")


def build_message_processor(settings: AppSettings, store: ProcessStore) -> MessageProcessor:
    """Wire the pipeline against Groq and the configured database"""
    llm = LLMClient.from_settings(settings.ai)
    executor = SQLExecutor.from_settings(settings.database)
    catalog = SchemaCatalog(engine_factory=lambda: executor.engine)
    data_context = None
    if settings.database.date_range_table:
        data_context = DataContext(executor, settings.database.date_range_table, settings.database.date_range_column)
    return MessageProcessor(
        store=store,
        linker=SchemaLinker(llm, catalog),
        generator=SQLGenerator(llm, data_context),
        executor=executor,
        charts=ChartInferenceEngine(max_categories=settings.charts.max_categories),
        settings=settings.pipeline,
        narrator=ResultNarrator(llm) if settings.ai.narrate_results else None,
        temperatures=settings.ai.candidate_temperatures,
    )


def create_app(
    settings: Optional[AppSettings] = None,
    store: Optional[ProcessStore] = None,
    processor: Optional[MessageProcessor] = None,
) -> FastAPI:
    settings = settings or get_settings()
    store = store or ProcessStore()
    processor = processor or build_message_processor(settings, store)
    runner = JobRunner(store)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting up (%s)", settings.environment)
        yield
        await runner.shutdown()
        dispose = getattr(processor.executor, "dispose", None)
        if dispose is not None:
            dispose()
        logger.info("Shut down.")

    app = FastAPI(
        title=settings.api.title,
        version=settings.api.version,
        description=settings.api.description,
        lifespan=lifespan,
        # Interactive docs stay off in production
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
    )
    app.state.settings = settings
    app.state.process_store = store
    app.state.message_processor = processor
    app.state.job_runner = runner

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Every error body is {"error": "..."}
    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}" for err in exc.errors()
        )
        return JSONResponse(status_code=400, content={"error": f"Invalid request: {problems}"})

    app.include_router(chat.router)

    @app.get("/")
    def root():
        return {
            "status": "running",
            "processes": len(store),
            "activeJobs": runner.active,
        }

    return app


app = create_app()
