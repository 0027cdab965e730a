"""FastAPI dependencies resolving the objects wired onto app.state by create_app."""
from fastapi import Request

from config.settings import AppSettings
from core.job_runner import JobRunner
from core.process_store import ProcessStore
from services.message_processor import MessageProcessor


def get_app_settings(request: Request) -> AppSettings:
    return request.app.state.settings


def get_process_store(request: Request) -> ProcessStore:
    return request.app.state.process_store


def get_message_processor(request: Request) -> MessageProcessor:
    return request.app.state.message_processor


def get_job_runner(request: Request) -> JobRunner:
    return request.app.state.job_runner
