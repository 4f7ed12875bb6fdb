import asyncio
import random
from abc import abstractmethod

from shared.clients.ClientInterface import ClientInterface
from shared.errors import (
    EmbeddingApiFailureError,
    MissingCredentialError,
    RequestFailedError,
    TransientNetworkError,
)
from shared.helper.HelperConfig import HelperConfig


class EmbedClientInterface(ClientInterface):
    """Turns note text into a fixed-dimension vector and owns the retry policy.

    Stateless across calls: every do_generate() is an independent sequence of
    at most max_attempts outbound requests.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # model and embedding config
        self.embed_model = helper_config.get_string_val(f"{self.get_client_type().upper()}_MODEL", default="text-embedding-3-small")
        self.embed_dimensions = int(helper_config.get_number_val(f"{self.get_client_type().upper()}_DIMENSIONS", default=0))

        # retry config
        self.max_attempts = int(helper_config.get_number_val(f"{self.get_client_type().upper()}_MAX_ATTEMPTS", default=3))
        self.retry_base_delay = float(helper_config.get_number_val(f"{self.get_client_type().upper()}_RETRY_BASE_DELAY", default=1.0))
        self.retry_jitter = float(helper_config.get_number_val(f"{self.get_client_type().upper()}_RETRY_JITTER", default=0.0))
        if self.max_attempts < 1:
            raise ValueError(f"{self.get_client_type().upper()}_MAX_ATTEMPTS must be at least 1, got {self.max_attempts}.")

        # replaced in tests to observe backoff without waiting
        self._sleep = asyncio.sleep

    ##########################################
    ############### CHECKER ##################
    ##########################################

    @abstractmethod
    def has_credentials(self) -> bool:
        """
        Returns True if an API key is configured for the embedding backend.
        """
        pass

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "embed"

    def get_backoff_delay(self, attempt: int) -> float:
        """Delay before the attempt following the given failed attempt.

        Args:
            attempt (int): One-based number of the attempt that just failed.

        Returns:
            float: base * 2^(attempt-1) seconds (1s, 2s, 4s, ... with base 1), plus optional jitter.
        """
        delay = self.retry_base_delay * (2 ** (attempt - 1))
        if self.retry_jitter > 0:
            delay += random.uniform(0, self.retry_jitter)
        return delay

    ################ ENDPOINTS ##################
    @abstractmethod
    def get_endpoint_embedding(self) -> str:
        """
        Returns the endpoint path for embedding requests (e.g. "/v1/embeddings").
        """
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_embed_payload(self, text: str) -> dict:
        """Build the backend-specific request body for an embedding request.

        Args:
            text (str): The text to embed.

        Returns:
            dict: JSON-serialisable request body (e.g. {"model": "...", "input": "..."}).
        """
        pass

    ##########################################
    ################# OTHER ##################
    ##########################################

    @abstractmethod
    def extract_embedding_from_response(self, response_data: dict) -> list[float]:
        """Extract the embedding vector from a raw embedding API response.

        Args:
            response_data (dict): The parsed JSON response body.

        Returns:
            list[float]: The embedding vector.

        Raises:
            ValueError: If the response format is invalid or the embedding is empty.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_generate(self, text: str) -> list[float]:
        """Generate an embedding vector for the given text.

        Transient failures (transport errors, non-2xx responses, unparsable
        bodies) are retried up to max_attempts in total with exponential
        backoff between attempts.

        Args:
            text (str): The text to embed.

        Returns:
            list[float]: The embedding vector of the first successful attempt.

        Raises:
            MissingCredentialError: If no API key is configured. Not retried.
            EmbeddingApiFailureError: If every attempt failed. The last error is chained.
        """
        if not self.has_credentials():
            raise MissingCredentialError(
                f"No API key configured for embed client '{self.get_engine_name()}'."
            )

        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self._do_generate_once(text)
            except (TransientNetworkError, RequestFailedError, ValueError) as exc:
                last_error = exc
                if attempt == self.max_attempts:
                    break
                delay = self.get_backoff_delay(attempt)
                self.logging.warning(
                    "Embedding attempt %d/%d failed: %s. Retrying in %.1fs.",
                    attempt, self.max_attempts, exc, delay,
                )
                await self._sleep(delay)

        self.logging.error(
            "Embedding failed after %d attempt(s): %s", self.max_attempts, last_error
        )
        raise EmbeddingApiFailureError(
            f"Embedding failed after {self.max_attempts} attempt(s): {last_error}",
            last_error=last_error,
        ) from last_error

    async def _do_generate_once(self, text: str) -> list[float]:
        """Send a single embedding request and validate the result.

        Raises:
            TransientNetworkError: If the backend cannot be reached.
            RequestFailedError: On a non-2xx status.
            ValueError: If the response does not contain a valid embedding.
        """
        response = await self.do_request(
            method="POST",
            endpoint=self.get_endpoint_embedding(),
            json=self.get_embed_payload(text),
            raise_on_error=True,
        )
        embedding = self.extract_embedding_from_response(response.json())
        if self.embed_dimensions and len(embedding) != self.embed_dimensions:
            raise ValueError(
                f"Embedding has {len(embedding)} dimensions, expected {self.embed_dimensions}."
            )
        return embedding


