import logging
import os
from dataclasses import MISSING, fields, is_dataclass
from typing import Optional

from ..logs import configure_logging

configure_logging()
logger = logging.getLogger(__name__)

TRUTHY = ("1", "true", "yes", "on")


def _coerce(field_type, value):
    if is_dataclass(field_type):
        return field_type(value)
    if field_type is bool and isinstance(value, str):
        return value.strip().lower() in TRUTHY
    return field_type(value)


class ExplicitParams:
    def __init__(self, data: Optional[dict] = None):
        if data is None:
            data = {}

        for f in fields(self):
            if f.name not in data or data[f.name] is None:
                # nested sections fall back to their own defaults
                if is_dataclass(f.type):
                    setattr(self, f.name, f.type({}))
                continue

            setattr(self, f.name, _coerce(f.type, data[f.name]))

    def as_dict(self):
        result = {}
        for f in fields(self):
            if not hasattr(self, f.name):
                continue

            v = getattr(self, f.name)

            if is_dataclass(v):
                result[f.name] = v.as_dict()
            else:
                result[f.name] = f.type(v)
        return result

    def override(self, attribute: str, value) -> bool:
        """
        Set an attribute from an external source (typically a CLI flag).
        `None` values are ignored so unset flags keep the file's value.
        """
        if value is None:
            return False

        field = next((f for f in fields(self) if f.name == attribute), None)
        if field is None:
            raise AttributeError(f"{self.__class__.__name__} has no attribute '{attribute}'")

        setattr(self, attribute, _coerce(field.type, value))
        return True

    def set_attribute_from_env(self, attribute: str, env_var: str) -> bool:
        """
        Set the value of an attribute from an environment variable.
        """
        cls_name = self.__class__.__name__
        if not hasattr(self, attribute):
            raise AttributeError(f"{cls_name} has no attribute '{attribute}'")

        if value := os.getenv(env_var):
            self.override(attribute, value)
            logger.debug(f"{env_var} key loaded to {cls_name}.{attribute}")
            return True

        logger.debug(f"{env_var} key not found, using default value for {cls_name}.{attribute}")
        return False

    @classmethod
    def verify(cls, data: dict) -> bool:
        instance = cls(data)

        for field in fields(instance):
            if not hasattr(instance, field.name) and field.default is MISSING:
                raise KeyError(f"Missing required field: {field.name}")

            if is_dataclass(field.type):
                field.type.verify(data.get(field.name) or {})

        return True

    def __repr__(self):
        key_pair_string: str = ", ".join([f"{key}={value}" for key, value in vars(self).items()])
        return f"{self.__class__.__name__}({key_pair_string})"
