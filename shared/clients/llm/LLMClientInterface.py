from abc import abstractmethod

from shared.clients.ClientInterface import ClientInterface
from shared.errors import (
    CompletionFailedError,
    MissingCompletionCredentialError,
    RequestFailedError,
    TransientNetworkError,
)
from shared.helper.HelperConfig import HelperConfig


class LLMClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # chat / completion config
        self.chat_model = helper_config.get_string_val(f"{self.get_client_type().upper()}_CHAT_MODEL", default="gpt-3.5-turbo")

    ##########################################
    ############### CHECKER ##################
    ##########################################

    @abstractmethod
    def has_credentials(self) -> bool:
        """
        Returns True if an API key is configured for the LLM backend.
        """
        pass

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "llm"

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_chat(self) -> str:
        """Returns the endpoint path for chat/completion requests (e.g. "/v1/chat/completions")."""
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_chat_payload(self, messages: list[dict], max_tokens: int | None = None, temperature: float | None = None) -> dict:
        """Build the backend-specific request body for a chat/completion request.

        Args:
            messages (list[dict]): OpenAI-format messages
                (e.g. [{"role": "user", "content": "..."}]).
            max_tokens (int | None): Upper bound for the reply length, backend default if None.
            temperature (float | None): Sampling temperature, backend default if None.

        Returns:
            dict: JSON-serialisable request body.
        """
        pass

    ##########################################
    ################# OTHER ##################
    ##########################################

    @abstractmethod
    def extract_chat_response(self, response_data: dict) -> str:
        """Extract the assistant reply text from a raw chat API response.

        Args:
            response_data (dict): The parsed JSON response body.

        Returns:
            str: The assistant reply text.

        Raises:
            ValueError: If the response does not contain a valid reply.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_chat(self, messages: list[dict], max_tokens: int | None = None, temperature: float | None = None) -> str:
        """Send a chat/completion request and return the assistant reply text.

        Args:
            messages (list[dict]): OpenAI-format messages
                (e.g. [{"role": "user", "content": "..."}]).
            max_tokens (int | None): Upper bound for the reply length.
            temperature (float | None): Sampling temperature.

        Returns:
            str: The assistant reply, stripped of surrounding whitespace.

        Raises:
            MissingCompletionCredentialError: If no API key is configured.
            CompletionFailedError: If the request fails or the reply is unusable.
        """
        if not self.has_credentials():
            raise MissingCompletionCredentialError(
                f"No API key configured for LLM client '{self.get_engine_name()}'."
            )

        body = self.get_chat_payload(messages, max_tokens=max_tokens, temperature=temperature)
        try:
            response = await self.do_request(
                method="POST",
                endpoint=self._get_endpoint_chat(),
                json=body,
                raise_on_error=True,
            )
            return self.extract_chat_response(response.json()).strip()
        except (TransientNetworkError, RequestFailedError, ValueError) as exc:
            self.logging.error("Chat completion with model '%s' failed: %s", self.chat_model, exc)
            raise CompletionFailedError(f"Chat completion failed: {exc}") from exc
