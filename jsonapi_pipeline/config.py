# Configuration settings should be set in app.config
# The get_config function looks up an option in the current app config, the environment
# and finally the JsonapiConfig class defaults
import os
import logging
import posixpath
from dataclasses import dataclass, fields, replace
from urllib.parse import urlsplit
from flask import current_app
from typing import Any, Callable, List, Mapping, Sequence
import jsonapi_pipeline
from . import errors

_MISSING = object()


def get_config(option: str, default: Any = None) -> Any:
    """Retrieve a configuration parameter from the app
    :param option: configuration parameter
    :param default: value returned when the option isn't configured anywhere
    :return: configuration value
    """
    try:
        return current_app.config[option]
    except (KeyError, RuntimeError):
        pass
    result = os.environ.get(option, _MISSING)
    if result is not _MISSING:
        class_default = getattr(jsonapi_pipeline.JsonapiConfig, option, default)
        return _coerce(result, class_default)
    return getattr(jsonapi_pipeline.JsonapiConfig, option, default)


def _coerce(value: str, like: Any) -> Any:
    """Convert an environment variable string to the type of the class default"""
    if isinstance(like, bool):
        return value.lower() in ("1", "true", "yes", "on")
    if isinstance(like, int):
        try:
            return int(value)
        except ValueError:
            raise errors.ServerOptionsError(f"invalid integer configuration value: '{value}'")
    return value


def is_debug() -> bool:
    """
    We use the loglevel to check whether we're running in debug mode
    :return: whether the app is in debug mode
    """
    return jsonapi_pipeline.log.getEffectiveLevel() < logging.INFO


@dataclass(frozen=True)
class Options:
    """
    json:api pipeline options, validated once when the API is constructed
    """

    path_prefix: str = ""
    default_page_size: int = 0
    no_content_on_insert: bool = False
    strict_unmarshal: bool = False
    include_nested_limit: int = 3
    filter_value_limit: int = 50
    payload_links: bool = True
    # flask view decorators applied to every exposed endpoint
    middlewares: Sequence[Callable] = ()
    # models exposed with the default handler only
    default_handler_models: Sequence[type] = ()
    # (model, handler) pairs, the handler is an object or a mapping of hook names
    model_handlers: Sequence[Any] = ()

    @classmethod
    def from_config(cls, **overrides: Any) -> "Options":
        """Build the options from the app config (JSONAPI_<OPTION>) and the keyword overrides.
        Keyword arguments take precedence over the configuration.
        """
        values = {}
        for option in fields(cls):
            if option.name in overrides:
                continue
            config_name = f"JSONAPI_{option.name.upper()}"
            if not hasattr(jsonapi_pipeline.JsonapiConfig, config_name):
                continue
            values[option.name] = get_config(config_name)
        unknown = set(overrides) - {option.name for option in fields(cls)}
        if unknown:
            raise errors.ServerOptionsError(f"unknown json:api options: {', '.join(sorted(unknown))}")
        values.update(overrides)
        return cls(**values).validated()

    def validated(self) -> "Options":
        """
        :return: a copy of the options with a normalized path prefix
        :raise ServerOptionsError: the options can't be used to construct an API
        """
        if self.default_page_size is None or self.default_page_size < 0:
            raise errors.ServerOptionsError(f"provided default page size with negative value: {self.default_page_size}")
        if self.include_nested_limit is not None and self.include_nested_limit < 0:
            raise errors.ServerOptionsError(f"provided negative include nested limit: {self.include_nested_limit}")
        if self.filter_value_limit is not None and self.filter_value_limit < 0:
            raise errors.ServerOptionsError(f"provided negative filter value limit: {self.filter_value_limit}")

        path_prefix = self.path_prefix or ""
        parsed = urlsplit(path_prefix)
        if parsed.scheme or parsed.netloc or parsed.query or parsed.fragment:
            raise errors.ServerOptionsError(f"provided invalid path prefix: '{path_prefix}'")
        if not posixpath.isabs(path_prefix):
            path_prefix = "/" + path_prefix
        path_prefix = path_prefix.rstrip("/")
        return replace(self, path_prefix=path_prefix)

    @property
    def model_handler_map(self) -> Mapping[type, Any]:
        """
        :return: model class => handler
        :raise ServerOptionsError: a model has more than one handler
        """
        result = {}
        for model, handler in self.model_handlers:
            if model in result:
                raise errors.ServerOptionsError(f"duplicated json:api model handler for model: '{model.__name__}'")
            result[model] = handler
        return result

    @property
    def models(self) -> List[type]:
        """All the models exposed by the API, in registration order"""
        result = []
        for model in [model for model, _ in self.model_handlers] + list(self.default_handler_models):
            if model not in result:
                result.append(model)
        return result

