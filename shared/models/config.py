from typing import Literal

from pydantic import BaseModel


class EnvConfig(BaseModel):
    """
    A single environment setting a client declares as required.

    Attributes:
        env_key (str): Key suffix, prefixed by the client type and engine (e.g. "BASE_URL" -> "RAG_CHROMA_BASE_URL").
        val_type (str): Expected value type: "string", "number", "bool" or "list".
        default (str | int | float | bool | list | None): Fallback value. None makes the setting mandatory.
    """

    env_key: str
    val_type: Literal["string", "number", "bool", "list"] = "string"
    default: str | int | float | bool | list | None = None
