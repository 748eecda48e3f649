"""Transforms for common response shapes, for use with ``handle_when``."""
from __future__ import annotations

import json
from typing import Any, Callable

from twinekit.pipeline import keys
from twinekit.pipeline.errors import TransformError


def _assert_with_status(condition: Any, environment: dict, message: str) -> None:
    if not condition:
        raise TransformError(
            f"{message}. Status code {environment.get(keys.RESPONSE_STATUS_CODE)}", environment
        )


class Receives:
    @staticmethod
    def json(response: Any, environment: dict) -> Any:
        try:
            return json.loads(response)
        except (TypeError, ValueError) as exc:
            raise TransformError("Response body could not be parsed as JSON", environment) from exc

    @staticmethod
    def empty(substitute_value: Any) -> Callable[[Any, dict], Any]:
        """Substitute a value when the response is expected to be empty."""

        def substitute(response: Any, environment: dict) -> Any:
            _assert_with_status(not response, environment, "Receives.empty used for a response that is not empty")
            return substitute_value

        return substitute

    @staticmethod
    def wrapped_api_item(response: Any, environment: dict) -> Any:
        """Parse JSON and unwrap ``data.item``."""
        document = Receives.json(response, environment)
        data = document.get("data") or document.get("Data")
        _assert_with_status(data, environment, "Receives.wrapped_api_item used for a response that had no .data property")
        item = data.get("item") or data.get("Item")
        _assert_with_status(item, environment, "Receives.wrapped_api_item used for a response that had no .data.item property")
        return item

    @staticmethod
    def wrapped_api_collection(response: Any, environment: dict) -> Any:
        """Parse JSON and unwrap ``data.items``."""
        document = Receives.json(response, environment)
        data = document.get("data") or document.get("Data")
        _assert_with_status(data, environment, "Receives.wrapped_api_collection used for a response that had no .data property")
        items = data.get("items")
        if items is None:
            items = data.get("Items")
        _assert_with_status(items is not None, environment, "Receives.wrapped_api_collection used for a response that had no .data.items property")
        return items

    @staticmethod
    def raw(response: Any, environment: dict) -> dict:
        return {
            "headers": environment.get(keys.RESPONSE_HEADERS),
            "status_code": environment.get(keys.RESPONSE_STATUS_CODE),
            "body": environment.get(keys.RESPONSE_BODY),
        }
