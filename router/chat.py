from fastapi import APIRouter, Depends, HTTPException, status

from config.settings import AppSettings
from core.dependencies import get_app_settings, get_job_runner, get_message_processor, get_process_store
from core.errors import ProcessNotFoundError
from core.job_runner import JobRunner
from core.process_store import Process, ProcessStore
from schemas.chat import ChatJobResponse, ChatRequest, ProcessOptions
from services.message_processor import MessageProcessor

router = APIRouter(prefix="/chat", tags=["chat"])


def resolve_options(options: ProcessOptions, settings: AppSettings) -> ProcessOptions:
    """Fill in the default model and reject models we cannot route"""
    model = options.model or settings.ai.default_model
    if model not in settings.ai.models:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown model '{model}'. Available: {', '.join(sorted(settings.ai.models))}",
        )
    return options.model_copy(update={"model": model})


@router.post("", response_model=ChatJobResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_chat(
    request: ChatRequest,
    settings: AppSettings = Depends(get_app_settings),
    store: ProcessStore = Depends(get_process_store),
    processor: MessageProcessor = Depends(get_message_processor),
    runner: JobRunner = Depends(get_job_runner),
):
    """
    Starts an asynchronous text-to-SQL job.
    Returns a processId immediately. Use GET /chat/{processId} to poll for results.
    """
    if request.last_user_message is None:
        raise HTTPException(status_code=400, detail="No user message found in the conversation.")

    options = resolve_options(request.options or ProcessOptions(), settings)

    process_id = await store.create()
    runner.spawn(process_id, processor.run(process_id, list(request.messages), options))

    return ChatJobResponse(process_id=process_id)


@router.get("/{process_id}", response_model=Process, response_model_exclude_none=True)
async def get_chat_status(process_id: str, store: ProcessStore = Depends(get_process_store)):
    """Current state of a process; never waits on the pipeline."""
    try:
        return await store.get(process_id)
    except ProcessNotFoundError:
        raise HTTPException(status_code=404, detail="Process not found")
