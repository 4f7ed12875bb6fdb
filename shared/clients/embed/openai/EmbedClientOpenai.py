from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class EmbedClientOpenai(EmbedClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default="https://api.openai.com", val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def has_credentials(self) -> bool:
        return bool(self._api_key)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Openai"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        # the API key is checked per request so a missing key surfaces as MissingCredentialError
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default="https://api.openai.com"),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"Authorization": f"Bearer {self._api_key}"}
        return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/v1/models"

    def get_endpoint_embedding(self) -> str:
        return "/v1/embeddings"

    ################ PAYLOAD BUILDER ##################
    def get_embed_payload(self, text: str) -> dict:
        """Build the OpenAI embedding request body.

        Args:
            text (str): The text to embed.

        Returns:
            dict: {"model": "...", "input": "..."}
        """
        return {"model": self.embed_model, "input": text}

    ##########################################
    ################# OTHER ##################
    ##########################################

    def extract_embedding_from_response(self, response_data: dict) -> list[float]:
        """Extract the first embedding from an OpenAI /v1/embeddings response.

        Args:
            response_data (dict): {"data": [{"embedding": [...], "index": 0}], ...}

        Returns:
            list[float]: The embedding vector.

        Raises:
            ValueError: If the response does not contain a valid embedding.
        """
        data = response_data.get("data") if isinstance(response_data, dict) else None
        if not data or not isinstance(data, list):
            raise ValueError(
                "OpenAI response does not contain embedding data. "
                f"Response keys: {list(response_data.keys()) if isinstance(response_data, dict) else type(response_data).__name__}"
            )
        embedding = data[0].get("embedding") if isinstance(data[0], dict) else None
        if not embedding:
            raise ValueError("OpenAI response contains an empty embedding.")
        return [float(v) for v in embedding]
