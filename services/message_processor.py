import asyncio
import logging
import time
from typing import List, Optional, Sequence

import pandas as pd

from config.settings import PipelineSettings
from core.data_processor import DataProcessor
from core.errors import (
    CANCELLED_MESSAGE,
    GENERIC_ERROR_MESSAGE,
    JobTimeoutError,
    LinkingError,
    PipelineError,
)
from core.process_store import ProcessStore
from schemas.catalog import LinkedSchema
from schemas.chat import ChartData, ConversationMessage, DebugInfo, ProcessedMessage, ProcessOptions
from services.chart_inference import ChartInferenceEngine
from services.schema_linker import SchemaLinker
from services.sql_executor import SQLExecutor
from services.sql_generator import SQLGenerator
from services.summarizer import ResultNarrator, summarize_result
from services.voting import Candidate, vote
from utils.sql_guard import is_read_only_query

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURES = (0.0, 0.3, 0.5)


class MessageProcessor:
    """
    Runs one submitted conversation through the pipeline:
    Link schema -> Generate N candidates -> Execute -> Vote -> Chart -> Save

    The only side effect of `run` is the status writes to the process store,
    ending in exactly one terminal write.
    """

    def __init__(
        self,
        store: ProcessStore,
        linker: SchemaLinker,
        generator: SQLGenerator,
        executor: SQLExecutor,
        charts: ChartInferenceEngine,
        settings: Optional[PipelineSettings] = None,
        narrator: Optional[ResultNarrator] = None,
        temperatures: Sequence[float] = DEFAULT_TEMPERATURES,
    ):
        self.store = store
        self.linker = linker
        self.generator = generator
        self.executor = executor
        self.charts = charts
        self.settings = settings or PipelineSettings()
        self.narrator = narrator
        self.temperatures = list(temperatures) or list(DEFAULT_TEMPERATURES)
        self.processor = DataProcessor()

    async def run(self, process_id: str, messages: List[ConversationMessage], options: ProcessOptions) -> None:
        started = time.monotonic()
        try:
            await self.store.mark_processing(process_id)
            result = await asyncio.wait_for(
                self._process(process_id, messages, options),
                timeout=self.settings.job_deadline,
            )
        except asyncio.TimeoutError:
            logger.warning("[%s] Deadline of %.1fs exceeded", process_id, self.settings.job_deadline)
            await self.store.fail(process_id, JobTimeoutError.user_message)
        except PipelineError as e:
            logger.warning("[%s] Failed: %s", process_id, e)
            await self.store.fail(process_id, e.user_message)
        except asyncio.CancelledError:
            logger.warning("[%s] Cancelled", process_id)
            await self.store.fail(process_id, CANCELLED_MESSAGE)
            raise
        except Exception:
            logger.exception("[%s] Unexpected error", process_id)
            await self.store.fail(process_id, GENERIC_ERROR_MESSAGE)
        else:
            await self.store.complete(process_id, result)
            logger.info("[%s] Completed in %.2fs", process_id, time.monotonic() - started)

    async def _process(
        self, process_id: str, messages: List[ConversationMessage], options: ProcessOptions
    ) -> ProcessedMessage:
        # 1. Schema linking: without it no query is possible
        linked_schema = await self._link(process_id, messages)
        logger.info("[%s] Linked tables: %s", process_id, ", ".join(t.name for t in linked_schema.tables))

        # 2. Generate and execute every candidate concurrently
        count = options.candidate_count
        logger.info("[%s] Generating %d SQL candidate(s)", process_id, count)
        candidates = await asyncio.gather(*(
            self._run_candidate(process_id, index, messages, linked_schema, options)
            for index in range(count)
        ))

        # 3. Vote
        outcome = vote(candidates, self.processor, self.settings.vote_float_precision)
        winner = outcome.winner
        logger.info(
            "[%s] %d/%d candidates executed, %d distinct result(s)",
            process_id, outcome.successful_executions, count, outcome.group_count,
        )

        # 4. Charts and answer text
        charts = self.charts.infer(winner.rows)
        content = await self._compose_content(process_id, messages, winner.rows, charts, options)

        debug = None
        if options.debug:
            debug = DebugInfo(
                linked_schema=linked_schema.model_dump(by_alias=True),
                confidence=outcome.confidence,
                candidate_count=count,
                successful_executions=outcome.successful_executions,
                refined_candidates=sum(1 for c in candidates if c.refined),
            )
        return ProcessedMessage(content=content, charts=charts, sql=winner.sql, debug=debug)

    async def _link(self, process_id: str, messages: List[ConversationMessage]) -> LinkedSchema:
        try:
            return await asyncio.wait_for(self.linker.link(messages), timeout=self.settings.linking_timeout)
        except asyncio.TimeoutError as e:
            raise LinkingError("schema linking timed out") from e
        except LinkingError:
            raise
        except Exception as e:
            raise LinkingError(str(e)) from e

    async def _run_candidate(
        self,
        process_id: str,
        index: int,
        messages: List[ConversationMessage],
        linked_schema: LinkedSchema,
        options: ProcessOptions,
    ) -> Candidate:
        """Generate and execute one candidate. Failures are recorded on the candidate, never raised."""
        candidate = Candidate(index=index)
        temperature = self.temperatures[index % len(self.temperatures)]

        try:
            sql = await asyncio.wait_for(
                self.generator.generate(messages, linked_schema, options.model, temperature=temperature),
                timeout=self.settings.generation_timeout,
            )
        except asyncio.TimeoutError:
            candidate.error = "generation timed out"
        except Exception as e:
            candidate.error = f"generation failed: {e}"
        else:
            candidate.sql = sql
            if not sql or not sql.strip():
                candidate.error = "generation returned no SQL"
            elif not is_read_only_query(sql):
                candidate.error = "generated SQL is not read-only"

        if candidate.error:
            logger.warning("[%s] Candidate %d (t=%.1f): %s", process_id, index + 1, temperature, candidate.error)
            return candidate

        error = await self._execute(candidate, candidate.sql)
        if error and self.settings.refine_failed_sql:
            error = await self._refine(process_id, candidate, error, messages, linked_schema, options)

        if error:
            candidate.error = error
            logger.warning("[%s] Candidate %d execution failed: %s", process_id, index + 1, error)
        else:
            logger.info("[%s] Candidate %d returned %d row(s)", process_id, index + 1, len(candidate.rows))
        return candidate

    async def _execute(self, candidate: Candidate, sql: str) -> Optional[str]:
        """Run `sql` and store the rows on the candidate; returns the error text on failure"""
        try:
            candidate.rows = await asyncio.wait_for(
                self.executor.execute(sql), timeout=self.settings.execution_timeout
            )
        except asyncio.TimeoutError:
            return "execution timed out"
        except Exception as e:
            return str(e) or e.__class__.__name__
        return None

    async def _refine(
        self,
        process_id: str,
        candidate: Candidate,
        error: str,
        messages: List[ConversationMessage],
        linked_schema: LinkedSchema,
        options: ProcessOptions,
    ) -> Optional[str]:
        """One repair attempt for a failed candidate; returns the remaining error, if any"""
        try:
            refined = await asyncio.wait_for(
                self.generator.refine(candidate.sql, error, messages, linked_schema, options.model),
                timeout=self.settings.generation_timeout,
            )
        except asyncio.TimeoutError:
            return f"{error} (refinement timed out)"
        except Exception as e:
            return f"{error} (refinement failed: {e})"

        if not refined or not is_read_only_query(refined):
            return f"{error} (refined SQL rejected)"

        refined_error = await self._execute(candidate, refined)
        if refined_error:
            return refined_error
        logger.info("[%s] Candidate %d recovered by refinement", process_id, candidate.index + 1)
        candidate.sql = refined
        candidate.refined = True
        return None

    async def _compose_content(
        self,
        process_id: str,
        messages: List[ConversationMessage],
        rows: pd.DataFrame,
        charts: List[ChartData],
        options: ProcessOptions,
    ) -> str:
        if self.narrator is not None and not rows.empty:
            try:
                return await asyncio.wait_for(
                    self.narrator.narrate(messages, rows, options.model),
                    timeout=self.settings.generation_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning("[%s] Narration timed out, using plain summary", process_id)
            except Exception as e:
                logger.warning("[%s] Narration failed, using plain summary: %s", process_id, e)
        return summarize_result(rows, charts, self.processor)
