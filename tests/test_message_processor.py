import asyncio

import pandas as pd
import pytest

from conftest import THREE_ROWS, FakeExecutor, FakeGenerator, FakeLinker
from core.errors import LinkingError
from core.process_store import ProcessStatus
from schemas.chat import ChartType, ProcessOptions

Q1 = "SELECT category, revenue FROM orders"
Q2 = "SELECT category, SUM(total) AS revenue FROM orders GROUP BY category"
Q3 = "SELECT category, revenue FROM order_totals"


async def _run(store, processor, messages, **options):
    process_id = await store.create()
    await processor.run(process_id, messages, ProcessOptions(**options))
    return await store.get(process_id)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "use_consistency,level,expected",
    [(True, "low", 1), (True, "medium", 2), (True, "high", 3), (False, "high", 1), (False, "low", 1)],
)
async def test_candidate_count_follows_reasoning_level(store, make_processor, messages, use_consistency, level, expected):
    generator = FakeGenerator([Q1])
    processor = make_processor(generator=generator)

    process = await _run(store, processor, messages, use_consistency=use_consistency, reasoning_level=level, debug=True)

    assert generator.calls == expected
    assert process.status == ProcessStatus.COMPLETED
    assert process.result.debug.candidate_count == expected


@pytest.mark.asyncio
async def test_two_matching_candidates_outvote_a_failed_one(store, make_processor, messages):
    generator = FakeGenerator([Q1, Q2, Q3])
    executor = FakeExecutor({Q1: THREE_ROWS, Q2: THREE_ROWS.iloc[::-1].reset_index(drop=True)})
    processor = make_processor(generator=generator, executor=executor)

    process = await _run(store, processor, messages, use_consistency=True, reasoning_level="high", debug=True)

    assert process.status == ProcessStatus.COMPLETED
    result = process.result
    assert result.sql == Q1
    assert result.debug.candidate_count == 3
    assert result.debug.successful_executions == 2
    assert result.debug.confidence == 1.0
    assert result.debug.refined_candidates == 0
    assert result.debug.linked_schema["tables"][0]["name"] == "orders"
    assert result.charts[0].type == ChartType.BAR
    assert result.charts[0].config.x_key == "category"


@pytest.mark.asyncio
async def test_disagreeing_candidates_pick_the_first(store, make_processor, messages):
    other = pd.DataFrame({"category": ["food"], "revenue": [1.0]})
    generator = FakeGenerator([Q1, Q2])
    executor = FakeExecutor({Q1: THREE_ROWS, Q2: other})
    processor = make_processor(generator=generator, executor=executor)

    process = await _run(store, processor, messages, use_consistency=True, reasoning_level="medium", debug=True)

    assert process.result.sql == Q1
    assert process.result.debug.confidence == 0.5
    assert process.result.debug.successful_executions == 2


@pytest.mark.asyncio
async def test_all_candidates_failing_fails_the_job(store, make_processor, messages):
    generator = FakeGenerator([Q3, "DELETE FROM orders", ""])
    processor = make_processor(generator=generator, executor=FakeExecutor({}))

    process = await _run(store, processor, messages, use_consistency=True, reasoning_level="high")

    assert process.status == ProcessStatus.FAILED
    assert process.error == "no candidate produced an executable query"
    assert process.result is None


@pytest.mark.asyncio
async def test_schema_linking_failure_never_reaches_the_generator(store, make_processor, messages):
    generator = FakeGenerator([Q1])
    processor = make_processor(linker=FakeLinker(error=LinkingError("model returned garbage")), generator=generator)

    process = await _run(store, processor, messages, use_consistency=True)

    assert process.status == ProcessStatus.FAILED
    assert process.error == "schema linking failed"
    assert generator.calls == 0


@pytest.mark.asyncio
async def test_unexpected_linker_errors_are_linking_failures(store, make_processor, messages):
    processor = make_processor(linker=FakeLinker(error=RuntimeError("connection refused")))
    process = await _run(store, processor, messages)
    assert process.error == "schema linking failed"


@pytest.mark.asyncio
async def test_schema_linking_timeout_is_fatal(store, make_processor, messages):
    generator = FakeGenerator([Q1])
    processor = make_processor(linker=FakeLinker(delay=1), generator=generator, linking_timeout=0.01)

    process = await _run(store, processor, messages)

    assert process.error == "schema linking failed"
    assert generator.calls == 0


@pytest.mark.asyncio
async def test_generation_errors_only_fail_their_candidate(store, make_processor, messages):
    generator = FakeGenerator([RuntimeError("rate limited"), Q1])
    processor = make_processor(generator=generator)

    process = await _run(store, processor, messages, use_consistency=True, reasoning_level="medium", debug=True)

    assert process.status == ProcessStatus.COMPLETED
    assert process.result.debug.successful_executions == 1
    assert process.result.debug.confidence == 1.0


@pytest.mark.asyncio
async def test_generation_timeout_only_fails_that_candidate(store, make_processor, messages):
    generator = FakeGenerator([Q1], delays={0: 1})
    processor = make_processor(generator=generator, generation_timeout=0.05)

    process = await _run(store, processor, messages, use_consistency=True, reasoning_level="medium", debug=True)

    assert process.status == ProcessStatus.COMPLETED
    assert process.result.debug.successful_executions == 1


@pytest.mark.asyncio
async def test_candidates_run_concurrently(store, make_processor, messages):
    generator = FakeGenerator([Q1], delays={0: 0.2, 1: 0.2, 2: 0.2})
    processor = make_processor(generator=generator)

    loop = asyncio.get_running_loop()
    started = loop.time()
    process = await _run(store, processor, messages, use_consistency=True, reasoning_level="high")

    assert process.status == ProcessStatus.COMPLETED
    assert loop.time() - started < 0.5


@pytest.mark.asyncio
async def test_candidates_sample_at_increasing_temperatures(store, make_processor, messages):
    generator = FakeGenerator([Q1])
    processor = make_processor(generator=generator)

    await _run(store, processor, messages, use_consistency=True, reasoning_level="high")

    assert sorted(generator.temperatures) == [0.0, 0.3, 0.5]


@pytest.mark.asyncio
async def test_job_deadline_fails_the_job_and_discards_late_results(store, make_processor, messages):
    generator = FakeGenerator([Q1], delays={0: 0.3})
    processor = make_processor(generator=generator, job_deadline=0.05)

    process = await _run(store, processor, messages)
    assert process.status == ProcessStatus.FAILED
    assert process.error == "the request timed out before an answer was ready"

    await asyncio.sleep(0.4)
    process = await store.get(process.id)
    assert process.status == ProcessStatus.FAILED
    assert process.result is None


@pytest.mark.asyncio
async def test_debug_is_only_attached_when_requested(store, make_processor, messages):
    process = await _run(store, make_processor(), messages)

    assert process.status == ProcessStatus.COMPLETED
    assert process.result.debug is None
    assert process.result.sql == Q1
    assert process.result.content.startswith("Found 3 rows")


@pytest.mark.asyncio
async def test_empty_result_completes_without_charts(store, make_processor, messages):
    empty = pd.DataFrame({"category": [], "revenue": []})
    processor = make_processor(executor=FakeExecutor({Q1: empty}))

    process = await _run(store, processor, messages)

    assert process.status == ProcessStatus.COMPLETED
    assert process.result.charts == []
    assert "couldn't find any data" in process.result.content


@pytest.mark.asyncio
async def test_refinement_can_recover_a_failed_candidate(store, make_processor, messages):
    generator = FakeGenerator([Q3], refinements={Q3: Q1})
    processor = make_processor(generator=generator, refine_failed_sql=True)

    process = await _run(store, processor, messages, debug=True)

    assert generator.refine_calls == 1
    assert process.status == ProcessStatus.COMPLETED
    assert process.result.sql == Q1
    assert process.result.debug.refined_candidates == 1


@pytest.mark.asyncio
async def test_refinement_is_off_by_default(store, make_processor, messages):
    generator = FakeGenerator([Q3], refinements={Q3: Q1})
    process = await _run(store, make_processor(generator=generator), messages)

    assert generator.refine_calls == 0
    assert process.status == ProcessStatus.FAILED


@pytest.mark.asyncio
async def test_internal_errors_are_sanitized(store, make_processor, messages):
    class ExplodingCharts:
        def infer(self, df):
            raise KeyError("SELECT secret_column FROM payroll")

    processor = make_processor()
    processor.charts = ExplodingCharts()

    process = await _run(store, processor, messages)

    assert process.status == ProcessStatus.FAILED
    assert "payroll" not in process.error
    assert process.error.startswith("Sorry, something went wrong")
