from functools import lru_cache
from typing import List, Optional
from langchain_google_genai import GoogleGenerativeAIEmbeddings
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)
from docrag.core.config import settings
from docrag.core.errors import EmbeddingServiceError
from docrag.utils.logger import get_logger

logger = get_logger("docrag.embedder")


@lru_cache(maxsize=1)
def get_embedding_client() -> GoogleGenerativeAIEmbeddings:
    """
    Build the embedding client once. The model id comes from configuration
    only; indexing and querying must share it.
    """
    logger.info("Loading embedding client", extra={
        "model": settings.EMBEDDING_MODEL,
        "dimension": settings.EMBEDDING_DIM,
    })
    return GoogleGenerativeAIEmbeddings(
        model=settings.EMBEDDING_MODEL,
        google_api_key=settings.GOOGLE_API_KEY,
    )


# Client errors that still deserve another try: request timeout, rate limit.
RETRYABLE_CLIENT_CODES = frozenset((408, 429))


def _status_code(exc: BaseException) -> Optional[int]:
    """HTTP status carried by the error or anything it wraps, if any."""
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        for attr in ("status_code", "code"):
            value = getattr(exc, attr, None)
            if isinstance(value, int) and 100 <= value < 600:
                return value
        exc = exc.__cause__ or exc.__context__
    return None


def _is_transient(exc: BaseException) -> bool:
    # Empty/invalid responses are not worth retrying; cancellation never is.
    if not isinstance(exc, Exception) or isinstance(exc, EmbeddingServiceError):
        return False
    code = _status_code(exc)
    if code is not None and 400 <= code < 500 and code not in RETRYABLE_CLIENT_CODES:
        return False
    return True


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        f"Embedding attempt {retry_state.attempt_number}/{settings.EMBEDDING_MAX_ATTEMPTS} failed: {exc}",
        extra={"attempt": retry_state.attempt_number},
    )


async def _embed_once(text: str) -> List[float]:
    vector = await get_embedding_client().aembed_query(text)
    if not vector:
        raise EmbeddingServiceError("Embedding service returned an empty vector")
    return [float(v) for v in vector]


async def embed_text(text: str) -> List[float]:
    """
    Embed a single piece of text.

    Transient failures are retried up to EMBEDDING_MAX_ATTEMPTS times, waiting
    EMBEDDING_BACKOFF_SECONDS x attempt number between tries. Client errors
    other than 408/429 (bad key, invalid argument) fail on the first attempt. The vector is
    returned as-is: length is validated by the vector store on insert.

    Raises:
        EmbeddingServiceError: after the last attempt fails, or on a permanent error
    """
    max_attempts = settings.EMBEDDING_MAX_ATTEMPTS
    backoff = settings.EMBEDDING_BACKOFF_SECONDS
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_incrementing(start=backoff, increment=backoff),
        retry=retry_if_exception(_is_transient),
        before_sleep=_log_retry,
    )
    try:
        async for attempt in retrying:
            with attempt:
                return await _embed_once(text)
    except RetryError as e:
        last = e.last_attempt.exception()
        logger.error("Embedding failed after retries", extra={
            "attempts": e.last_attempt.attempt_number,
            "text_length": len(text),
            "error": str(last),
        })
        raise EmbeddingServiceError(
            f"Embedding failed after {e.last_attempt.attempt_number} attempts: {last}",
            attempts=e.last_attempt.attempt_number,
        ) from last
    except EmbeddingServiceError:
        raise
    except Exception as e:
        # Permanent client error (auth, invalid argument): not retried
        logger.error("Embedding request rejected", extra={
            "status_code": _status_code(e),
            "text_length": len(text),
            "error": str(e),
        })
        raise EmbeddingServiceError(f"Embedding request rejected: {e}", attempts=1) from e
    raise EmbeddingServiceError("Embedding retry loop exited without a result")
