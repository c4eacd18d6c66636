"""Operation handler registration and invocation.

Handlers are the external collaborators that actually talk to wallets,
exchanges and notification services. The engine only knows them by node
``type``. A handler takes the node's resolved parameters and returns a
result, or raises ``OperationError`` with a classification. Any other
exception is classified here so the retry coordinator can decide on it.
"""

import asyncio
import inspect
import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import httpx

from intentflow.errors import ErrorKind, OperationError
from intentflow.graph.retry import RetryPolicy

logger = logging.getLogger(__name__)

# Upstream statuses that usually clear up on their own
RETRYABLE_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})

_NETWORK_MESSAGE = re.compile(r"ECONNRESET|ETIMEDOUT|ENOTFOUND|network", re.IGNORECASE)


def classify_exception(exc: BaseException) -> OperationError:
    """Map an arbitrary handler exception onto the error taxonomy."""
    if isinstance(exc, OperationError):
        return exc
    message = str(exc) or type(exc).__name__

    if isinstance(exc, httpx.TimeoutException):
        return OperationError(ErrorKind.TIMEOUT, message)
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 429:
            return OperationError(ErrorKind.RATE_LIMITED, message)
        if status in RETRYABLE_STATUS_CODES:
            return OperationError(ErrorKind.UPSTREAM_UNAVAILABLE, message)
        return OperationError(ErrorKind.HANDLER_ERROR, message, retryable=False)
    if isinstance(exc, httpx.TransportError):
        return OperationError(ErrorKind.NETWORK, message)
    if isinstance(exc, TimeoutError):
        return OperationError(ErrorKind.TIMEOUT, message)
    if isinstance(exc, ConnectionError) or _NETWORK_MESSAGE.search(message):
        return OperationError(ErrorKind.NETWORK, message)
    if isinstance(exc, ValueError | TypeError | KeyError):
        return OperationError(ErrorKind.VALIDATION, message)
    return OperationError(ErrorKind.HANDLER_ERROR, message, retryable=False)


def _accepts_cancellation(func: Callable) -> bool:
    try:
        params = inspect.signature(func).parameters
    except (TypeError, ValueError):
        return False
    if "cancellation" in params:
        return True
    return any(p.kind is inspect.Parameter.VAR_KEYWORD for p in params.values())


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


@dataclass
class RegisteredHandler:
    """A handler plus the metadata the engine needs to call it."""

    intent_type: str
    handler: Callable[..., Any]
    required_params: tuple[str, ...] = ()
    retry_policy: RetryPolicy | None = None
    accepts_cancellation: bool = False
    description: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


class OperationHandlerRegistry:
    """
    Maps node types to handlers.

    Example:
        registry = OperationHandlerRegistry()

        @registry.handler("sentiment_check", required_params=["token"])
        async def sentiment(params):
            return {"label": await analyzer.label(params["token"])}

        def price_alert(token: str, target_price: float):
            return alerts.create(token, target_price)

        registry.register_function(price_alert, type="price_alert")
    """

    def __init__(self) -> None:
        self._handlers: dict[str, RegisteredHandler] = {}

    def register(
        self,
        type: str,
        handler: Callable[..., Any],
        required_params: Iterable[str] = (),
        retry_policy: RetryPolicy | None = None,
        description: str = "",
    ) -> None:
        """
        Register a handler taking the resolved parameter dict.

        Args:
            type: Node type this handler serves (replaces any previous one)
            handler: ``handler(params)`` or ``handler(params, cancellation=token)``,
                sync or async
            required_params: Parameters that must be present and non-empty
            retry_policy: Overrides the engine's default policy for this type
        """
        if type in self._handlers:
            logger.warning(f"Replacing handler for intent type '{type}'")
        self._handlers[type] = RegisteredHandler(
            intent_type=type,
            handler=handler,
            required_params=tuple(required_params),
            retry_policy=retry_policy,
            accepts_cancellation=_accepts_cancellation(handler),
            description=description or (handler.__doc__ or "").strip(),
        )

    def register_function(
        self,
        func: Callable[..., Any],
        type: str | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        """
        Register a plain function whose keyword arguments are the node parameters.

        Required parameters are derived from the signature (arguments without
        defaults). Unknown parameters are dropped unless the function takes
        ``**kwargs``.
        """
        intent_type = type or func.__name__
        sig = inspect.signature(func)
        required: list[str] = []
        accepted: set[str] = set()
        takes_kwargs = False
        wants_cancellation = False

        for param_name, param in sig.parameters.items():
            if param_name in ("self", "cls"):
                continue
            if param.kind is inspect.Parameter.VAR_KEYWORD:
                takes_kwargs = True
                continue
            if param.kind is inspect.Parameter.VAR_POSITIONAL:
                continue
            if param_name == "cancellation":
                wants_cancellation = True
                continue
            accepted.add(param_name)
            if param.default is inspect.Parameter.empty:
                required.append(param_name)

        def _select(params: dict) -> dict:
            if takes_kwargs:
                return dict(params)
            return {k: v for k, v in params.items() if k in accepted}

        if inspect.iscoroutinefunction(func):

            async def handler(params: dict, cancellation=None) -> Any:
                kwargs = _select(params)
                if wants_cancellation:
                    kwargs["cancellation"] = cancellation
                return await func(**kwargs)

        else:

            def handler(params: dict, cancellation=None) -> Any:
                kwargs = _select(params)
                if wants_cancellation:
                    kwargs["cancellation"] = cancellation
                return func(**kwargs)

        handler.__doc__ = func.__doc__
        self.register(intent_type, handler, required_params=required, retry_policy=retry_policy)

    def handler(
        self,
        type: str,
        required_params: Iterable[str] = (),
        retry_policy: RetryPolicy | None = None,
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator form of register()."""

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.register(type, func, required_params=required_params, retry_policy=retry_policy)
            return func

        return decorator

    def has_handler(self, type: str) -> bool:
        return type in self._handlers

    def get(self, type: str) -> RegisteredHandler | None:
        return self._handlers.get(type)

    @property
    def registered_types(self) -> list[str]:
        return sorted(self._handlers)

    def retry_policies(self) -> dict[str, RetryPolicy]:
        """Per-type policies supplied at registration."""
        return {
            name: entry.retry_policy
            for name, entry in self._handlers.items()
            if entry.retry_policy is not None
        }

    async def invoke(self, type: str, params: dict[str, Any], cancellation: Any = None) -> Any:
        """
        Call the handler for ``type`` once.

        Sync handlers run in a worker thread.

        Raises:
            OperationError: For every failure, already classified
        """
        entry = self._handlers.get(type)
        if entry is None:
            raise OperationError(
                ErrorKind.UNSUPPORTED_INTENT_TYPE,
                f"No handler registered for intent type '{type}'",
            )

        missing = [name for name in entry.required_params if _is_missing(params.get(name))]
        if missing:
            raise OperationError(
                ErrorKind.VALIDATION,
                f"Missing required parameters for '{type}': {', '.join(missing)}",
            )

        kwargs = {"cancellation": cancellation} if entry.accepts_cancellation else {}
        try:
            if inspect.iscoroutinefunction(entry.handler):
                return await entry.handler(params, **kwargs)
            result = await asyncio.to_thread(entry.handler, params, **kwargs)
            if inspect.isawaitable(result):
                result = await result
            return result
        except OperationError:
            raise
        except Exception as e:
            error = classify_exception(e)
            logger.debug(
                f"Handler for '{type}' raised {e.__class__.__name__}, classified as {error.kind}"
            )
            raise error from e
