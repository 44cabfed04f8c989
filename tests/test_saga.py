"""
Тесты для саги с компенсациями
"""
import pytest

from ijazah.exceptions import CleanupWarning, IjazahError, UploadError
from ijazah.saga import Saga


def returning(value, log=None, name=None):
    async def action(ctx):
        if log is not None:
            log.append(name)
        return value
    return action


def failing(error):
    async def action(ctx):
        raise error
    return action


class TestSaga:
    """Тесты для Saga"""

    @pytest.mark.asyncio
    async def test_results_stored_in_context(self):
        """Тест сохранения результатов шагов в контексте"""
        async def second(ctx):
            return ctx["first"] + 1

        context = await Saga("test").step("first", returning(1)).step("second", second).run()

        assert context == {"first": 1, "second": 2}

    @pytest.mark.asyncio
    async def test_optional_step_failure_continues(self):
        """Тест продолжения саги после сбоя необязательного шага"""
        saga = (
            Saga("test")
            .step("pin", failing(RuntimeError("pin failed")), required=False)
            .step("ledger", returning("ok"))
        )

        with pytest.warns(CleanupWarning):
            context = await saga.run()

        assert context["pin"] is None
        assert context["ledger"] == "ok"

    @pytest.mark.asyncio
    async def test_compensations_run_in_reverse(self):
        """Тест обратного порядка компенсаций"""
        compensated = []

        def compensation(name):
            async def compensate(ctx, result):
                compensated.append((name, result))
            return compensate

        saga = (
            Saga("test")
            .step("a", returning("file_a"), compensation("a"))
            .step("b", returning("file_b"), compensation("b"))
            .step("c", failing(UploadError("upload failed")))
        )

        with pytest.raises(UploadError):
            await saga.run()

        assert compensated == [("b", "file_b"), ("a", "file_a")]

    @pytest.mark.asyncio
    async def test_orphaned_artifacts_reported(self):
        """Тест передачи артефактов без компенсации в ошибку"""
        saga = (
            Saga("test")
            .step("photoPath", returning("photo.png"))
            .step("pdf", returning(b"%PDF"), artifact=False)
            .step("ipfsCID", returning("bafy"))
            .step("ledger", failing(UploadError("ledger failed")))
        )

        with pytest.raises(UploadError) as exc_info:
            await saga.run()

        assert exc_info.value.orphaned == {"photoPath": "photo.png", "ipfsCID": "bafy"}
        assert exc_info.value.is_partial

    @pytest.mark.asyncio
    async def test_unexpected_error_wrapped(self):
        """Тест обертки неожиданной ошибки"""
        saga = Saga("test").step("a", returning("x")).step("b", failing(KeyError("boom")))

        with pytest.raises(IjazahError) as exc_info:
            await saga.run()

        assert exc_info.value.orphaned == {"a": "x"}
        assert isinstance(exc_info.value.__cause__, KeyError)

    @pytest.mark.asyncio
    async def test_failed_compensation_does_not_mask_error(self):
        """Тест: сбой компенсации логируется, исходная ошибка сохраняется"""
        async def broken(ctx, result):
            raise OSError("disk gone")

        saga = (
            Saga("test")
            .step("a", returning("x"), broken)
            .step("b", failing(UploadError("original")))
        )

        with pytest.warns(CleanupWarning):
            with pytest.raises(UploadError, match="original") as exc_info:
                await saga.run()

        assert exc_info.value.orphaned == {}

    @pytest.mark.asyncio
    async def test_failed_step_not_compensated(self):
        """Тест: шаг, завершившийся ошибкой, не компенсируется"""
        compensated = []

        async def compensate(ctx, result):
            compensated.append(result)

        saga = Saga("test").step("a", failing(UploadError("fail")), compensate)

        with pytest.raises(UploadError):
            await saga.run()

        assert compensated == []
