"""
Пошаговое выполнение многошаговых операций с объявленными компенсациями.

Каждый шаг сам объявляет, что делать при сбое следующих шагов:
компенсация, либо ничего (артефакт шага попадает в orphaned ошибки).
"""
import logging
import warnings
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .exceptions import CleanupWarning, IjazahError

logger = logging.getLogger(__name__)

Context = Dict[str, Any]
Action = Callable[[Context], Awaitable[Any]]
Compensation = Callable[[Context, Any], Awaitable[Any]]


class SagaStep:
    """Шаг саги"""

    def __init__(
            self,
            name: str,
            action: Action,
            compensation: Optional[Compensation] = None,
            required: bool = True,
            artifact: bool = True
    ):
        self.name = name
        self.action = action
        self.compensation = compensation
        # Сбой необязательного шага логируется, сага продолжается
        self.required = required
        # Результат шага - внешний артефакт (файл, CID), который остается при сбое
        self.artifact = artifact

    def __repr__(self) -> str:
        return f"SagaStep({self.name!r}, required={self.required})"


class Saga:
    """Упорядоченный список шагов с компенсациями"""

    def __init__(self, name: str):
        self.name = name
        self.steps: List[SagaStep] = []

    def step(
            self,
            name: str,
            action: Action,
            compensation: Optional[Compensation] = None,
            required: bool = True,
            artifact: bool = True
    ) -> "Saga":
        """Добавление шага. Возвращает саму сагу для цепочки вызовов."""
        self.steps.append(SagaStep(name, action, compensation, required, artifact))
        return self

    async def run(self, context: Optional[Context] = None) -> Context:
        """
        Выполнение шагов по порядку.

        Результат каждого шага сохраняется в контексте под его именем.

        Args:
            context: Начальный контекст

        Returns:
            Context: Контекст с результатами всех шагов

        Raises:
            IjazahError: Исходная ошибка обязательного шага; в orphaned
                результаты выполненных шагов без компенсации
        """
        context = context if context is not None else {}
        completed: List[SagaStep] = []

        for step in self.steps:
            try:
                context[step.name] = await step.action(context)
            except Exception as e:
                if not step.required:
                    self._warn(f"Шаг '{step.name}' саги {self.name} не выполнен: {e}")
                    context[step.name] = None
                    continue

                logger.error(f"Сага {self.name} прервана на шаге '{step.name}': {e}")
                orphaned = await self._compensate(completed, context)
                if isinstance(e, IjazahError):
                    e.orphaned.update(orphaned)
                    raise
                raise IjazahError(str(e), orphaned=orphaned) from e

            completed.append(step)

        return context

    async def _compensate(self, completed: List[SagaStep], context: Context) -> Dict[str, Any]:
        """Компенсации выполненных шагов в обратном порядке"""
        orphaned = {}

        for step in reversed(completed):
            result = context.get(step.name)
            if step.compensation is None:
                if step.artifact and result is not None:
                    orphaned[step.name] = result
                continue

            try:
                await step.compensation(context, result)
                logger.info(f"Компенсация шага '{step.name}' саги {self.name} выполнена")
            except Exception as e:
                self._warn(f"Компенсация шага '{step.name}' саги {self.name} не выполнена: {e}")

        return orphaned

    @staticmethod
    def _warn(message: str) -> None:
        logger.warning(message)
        warnings.warn(message, CleanupWarning, stacklevel=3)
