from typing import Optional

GENERIC_ERROR_MESSAGE = "Sorry, something went wrong while processing your request. Please try again."
CANCELLED_MESSAGE = "the request was cancelled"


class ProcessNotFoundError(LookupError):
    """Raised when a process id is not present in the store"""

    def __init__(self, process_id: str):
        super().__init__(f"Process not found: {process_id}")
        self.process_id = process_id


class LLMError(RuntimeError):
    """The language model provider failed after all retries"""


class PipelineError(Exception):
    """
    Base for failures raised inside the message pipeline.
    `user_message` is what ends up in Process.error, `str(exc)` stays in the logs.
    """
    user_message: str = GENERIC_ERROR_MESSAGE

    def __init__(self, detail: str = "", user_message: Optional[str] = None):
        super().__init__(detail or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class LinkingError(PipelineError):
    user_message = "schema linking failed"


class GenerationError(PipelineError):
    user_message = "SQL generation failed"


class ExecutionError(PipelineError):
    user_message = "SQL execution failed"


class ExhaustionError(PipelineError):
    user_message = "no candidate produced an executable query"


class JobTimeoutError(PipelineError):
    user_message = "the request timed out before an answer was ready"
