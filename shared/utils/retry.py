"""Retry con backoff exponencial para escrituras secundarias (auditoría)"""
import asyncio
import logging
from typing import Awaitable, Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
) -> T:
    """
    Ejecutar una coroutine con reintentos

    Args:
        func: Función sin argumentos que retorna la coroutine a ejecutar
        max_retries: Reintentos después del primer intento
        initial_delay: Espera antes del primer reintento, en segundos
        max_delay: Tope de la espera entre reintentos
        exponential_base: Factor de crecimiento de la espera
        exceptions: Excepciones que disparan un reintento; el resto se propaga

    Raises:
        La última excepción si se agotan los reintentos
    """
    delay = initial_delay
    attempt = 0
    while True:
        try:
            return await func()
        except exceptions as e:
            if attempt >= max_retries:
                raise
            attempt += 1
            logger.warning(f"Intento {attempt}/{max_retries} fallido ({type(e).__name__}), reintentando en {delay:.2f}s")
            await asyncio.sleep(delay)
            delay = min(delay * exponential_base, max_delay)
