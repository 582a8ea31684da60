"""
Interface to create models with associated .yaml storage.
"""

from pathlib import Path
from typing import Self

import yaml
from pydantic import BaseModel

__all__ = [
    "BaseYamlModel",
]


class BaseYamlModel(BaseModel):
    """
    Base pydantic model with additional functionality to load from and dump to
    .yaml files.
    """

    @classmethod
    def load_yaml(cls, file: Path) -> Self:
        """
        Load model from .yaml file.

        :raises ValueError: If file is missing or doesn't hold a mapping
        :raises pydantic.ValidationError: If contents don't match the model
        """
        if not file.is_file():
            raise ValueError(f"file does not exist: '{file}'")

        return cls.from_yaml(file.read_text())

    @classmethod
    def from_yaml(cls, text: str) -> Self:
        """
        Create model from .yaml text.
        """
        model = yaml.safe_load(text)

        if not isinstance(model, dict):
            raise ValueError(f"Invalid yaml contents: {model}")

        return cls(**model)

    def to_yaml(self) -> str:
        model = self.model_dump(mode="json", by_alias=True, exclude_unset=True)
        return yaml.safe_dump(model, default_flow_style=False, sort_keys=False)

    def dump_yaml(self, file: Path):
        """
        Dump model to .yaml file.
        """
        file.write_text(self.to_yaml())
