"""
Base class for resources.

Resources are versioned, editable data that services consume.
They're loaded from YAML files shipped with the package.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import yaml


class Resource(ABC):
    """
    Base class for all resources.
    
    Resources are data objects that can be:
    - Loaded from YAML files
    - Versioned
    - Swapped without touching the code that uses them
    """
    
    @property
    @abstractmethod
    def resource_id(self) -> str:
        """Unique identifier for this resource."""
        pass
    
    @property
    def resource_type(self) -> str:
        return self.__class__.__name__.lower()
    
    @property
    def version(self) -> int:
        return 1
    
    @classmethod
    @abstractmethod
    def from_dict(cls, data: dict[str, Any]) -> Resource:
        """Create a resource from a dictionary."""
        pass
    
    @abstractmethod
    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        pass
    
    @classmethod
    def from_yaml(cls, path: Path | str) -> Resource:
        """Load a resource from a YAML file."""
        path = Path(path)
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data)
