import importlib

from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.helper.HelperConfig import HelperConfig


class EmbedClientManager:
    """
    Instantiates the embedding client for the engine named in EMBED_ENGINE.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        """
        Reads the embed engine from configuration, e.g. "openai" -> "Openai".

        Raises:
            ValueError: If no embed engine is configured.
        """
        engine = self.helper_config.get_string_val("EMBED_ENGINE", default="openai")
        if not engine.strip():
            raise ValueError("No Embed engine specified in configuration.")
        return engine.strip().lower().capitalize()

    def _initialize_client(self) -> EmbedClientInterface:
        """
        Imports shared.clients.embed.<engine>.EmbedClient<Engine> and instantiates it.

        Raises:
            ValueError: If the engine is unknown.
        """
        engine = self._get_engine_from_env()
        class_name = f"EmbedClient{engine}"
        try:
            module = importlib.import_module(f"shared.clients.embed.{engine.lower()}.{class_name}")
            client_class = getattr(module, class_name)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported Embed engine specified: '{engine}'. Error: {e}")

        client = client_class(helper_config=self.helper_config)
        self.logging.debug("Instantiated Embed client for engine: %s", engine)
        return client

    def get_client(self) -> EmbedClientInterface:
        """
        Returns the instantiated Embed client.
        """
        return self.client
