"""Central configuration helper for the note sync pipeline."""

import logging
import os
from typing import Mapping


class HelperConfig:
    """Central configuration helper. Reads all settings from environment variables.

    An explicit mapping can be passed instead of the process environment, which
    keeps service construction free of global state in tests and embedders.
    """

    def __init__(self, logger: logging.Logger, env: Mapping[str, str] | None = None) -> None:
        self._logger = logger
        self._env = env

    def _read_raw(self, key: str) -> str | None:
        source = self._env if self._env is not None else os.environ
        return source.get(key.upper()) or None  # empty string → None

    def get_string_val(self, key: str, default: str | None = None) -> str:
        """Read a string setting.

        Args:
            key (str): Setting name (case-insensitive).
            default (str | None): Fallback value if the setting is not set.

        Returns:
            str: The resolved value.

        Raises:
            ValueError: If the setting is not set and no default is provided.
        """
        val = self._read_raw(key)
        if val is None and default is None:
            raise ValueError(f"Environment variable '{key.upper()}' is not set.")
        return val.strip() if val is not None else default

    def get_number_val(self, key: str, default: float | int | None = None) -> float | int:
        """Read a numeric setting.

        Args:
            key (str): Setting name (case-insensitive).
            default (float | int | None): Fallback value if the setting is not set.

        Returns:
            float | int: The resolved numeric value.

        Raises:
            ValueError: If the setting is not set and no default is provided.
            ValueError: If the value cannot be parsed as a number.
        """
        raw = self._read_raw(key)
        if raw is None:
            if default is None:
                raise ValueError(f"Environment variable '{key.upper()}' is not set.")
            return default
        raw = raw.strip()
        try:
            return int(raw) if "." not in raw else float(raw)
        except ValueError:
            raise ValueError(f"Environment variable '{key.upper()}' is not a valid number: '{raw}'.")

    def get_bool_val(self, key: str, default: bool | None = None) -> bool:
        """Read a boolean setting ("true", "1" and "yes" are truthy).

        Raises:
            ValueError: If the setting is not set and no default is provided.
        """
        raw = self._read_raw(key)
        if raw is None:
            if default is None:
                raise ValueError(f"Environment variable '{key.upper()}' is not set.")
            return default
        return raw.strip().lower() in ("true", "1", "yes")

    def get_list_val(self, key: str, default: list[str] | None = None, separator: str = ",", element_type: type = str) -> list:
        """Read a list setting in the form "[elem1,elem2,...]".

        Args:
            key (str): Setting name (case-insensitive).
            default (list[str] | None): Fallback value if the setting is not set.
            separator (str): The delimiter between elements.
            element_type (type): The type each element is cast to.

        Returns:
            list: The resolved list of elements.

        Raises:
            ValueError: If the setting is not set and no default is provided,
                is not bracketed, or contains elements that cannot be cast.
        """
        raw_val = self._read_raw(key)
        if raw_val is None:
            if default is None:
                raise ValueError(f"Environment variable '{key.upper()}' is not set.")
            return default
        raw_val = raw_val.strip()
        if not raw_val.startswith("[") or not raw_val.endswith("]"):
            raise ValueError(f"Environment variable '{key.upper()}' must be in the format '[elem1{separator}elem2{separator}...]'. Got: '{raw_val}'")
        elements = [v.strip() for v in raw_val[1:-1].split(separator) if v.strip()]
        try:
            return [element_type(elem) for elem in elements]
        except ValueError as e:
            raise ValueError(f"Environment variable '{key.upper()}' contains invalid elements: {e}. Type set to {element_type.__name__}. Got: '{raw_val}'")

    def get_logger(self) -> logging.Logger:
        """Return the application logger."""
        return self._logger
