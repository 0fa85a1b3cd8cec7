"""
Temporal decorators for creating activities and workflow proxies

This module provides decorators that:
1. Wrap the async protocol methods of a backend repository as Temporal
   activities
2. Generate workflow proxy classes that delegate those methods to the
   activities
Both sides discover methods the same way, so an activity name can never
exist on one side only.
"""

import functools
import inspect
import logging
from datetime import timedelta
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Type,
    TypeVar,
    get_type_hints,
)

from temporalio import activity, workflow
from temporalio.common import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

NONE_TYPE = type(None)


def discover_protocol_methods(cls: type) -> Dict[str, Callable[..., Any]]:
    """
    Find the public async methods declared by the protocols ``cls``
    implements.

    Returns a mapping of method name to the protocol's declaration, in MRO
    order. Helpers defined only on the concrete class are not included.
    """
    methods: Dict[str, Callable[..., Any]] = {}
    for base in cls.__mro__:
        if base is object or not base.__dict__.get("_is_protocol", False):
            continue
        for name, member in base.__dict__.items():
            if name.startswith("_") or name in methods:
                continue
            if inspect.iscoroutinefunction(member):
                methods[name] = member
    logger.debug(
        "Protocol methods discovered",
        extra={"class": cls.__name__, "methods": list(methods)},
    )
    return methods


def temporal_activity_registration(
    activity_prefix: str,
) -> Callable[[Type[T]], Type[T]]:
    """
    Class decorator that registers every protocol method as a Temporal
    activity named ``{activity_prefix}.{method}``.

    The decorated class keeps its constructor and behaviour; each method
    is replaced by an activity-defined wrapper around the concrete
    implementation.

    Example:
        @temporal_activity_registration("booking.booking_repo.postgresql")
        class TemporalPostgreSQLBookingRepository(
            PostgreSQLBookingRepository
        ):
            pass
    """

    def decorator(cls: Type[T]) -> Type[T]:
        wrapped = []
        for name in discover_protocol_methods(cls):
            implementation = getattr(cls, name)
            activity_name = f"{activity_prefix}.{name}"
            setattr(
                cls,
                name,
                activity.defn(name=activity_name)(
                    _activity_method(implementation, activity_name)
                ),
            )
            wrapped.append(name)

        logger.debug(
            "Registered activities",
            extra={
                "class": cls.__name__,
                "activity_prefix": activity_prefix,
                "wrapped_methods": wrapped,
            },
        )
        return cls

    return decorator


def _activity_method(
    implementation: Callable[..., Any], activity_name: str
) -> Callable[..., Any]:
    @functools.wraps(implementation)
    async def method(self: Any, *args: Any) -> Any:
        logger.info("Activity: %s", activity_name)
        return await implementation(self, *args)

    return method


def temporal_workflow_proxy(
    activity_base: str,
    default_timeout_seconds: int = 30,
    retry_methods: Optional[List[str]] = None,
    maximum_attempts: int = 5,
) -> Callable[[Type[T]], Type[T]]:
    """
    Class decorator that implements every protocol method as a call to the
    ``{activity_base}.{method}`` activity.

    Methods named in ``retry_methods`` are retried with exponential
    backoff up to ``maximum_attempts``; every other method fails after its
    first attempt. Return values are decoded with the method's declared
    return type, so Pydantic models (and lists of them) come back as
    models rather than dicts.

    Example:
        @temporal_workflow_proxy(
            "booking.calendar_source",
            default_timeout_seconds=30,
            retry_methods=["create_event"],
        )
        class WorkflowCalendarSourceProxy(CalendarSourceAdapter):
            pass
    """

    def decorator(cls: Type[T]) -> Type[T]:
        retrying = set(retry_methods or [])
        timeout = timedelta(seconds=default_timeout_seconds)
        retry_policy = RetryPolicy(
            initial_interval=timedelta(seconds=1),
            backoff_coefficient=2.0,
            maximum_interval=timedelta(seconds=30),
            maximum_attempts=maximum_attempts,
        )
        fail_fast_policy = RetryPolicy(maximum_attempts=1)

        methods = discover_protocol_methods(cls)
        for name, declaration in methods.items():
            setattr(
                cls,
                name,
                _proxy_method(
                    declaration,
                    f"{activity_base}.{name}",
                    timeout,
                    retry_policy if name in retrying else fail_fast_policy,
                ),
            )

        def __init__(proxy_self: Any) -> None:
            proxy_self.activity_timeout = timeout
            proxy_self.activity_retry_policy = retry_policy

        setattr(cls, "__init__", __init__)

        logger.debug(
            "Created workflow proxy",
            extra={
                "class": cls.__name__,
                "activity_base": activity_base,
                "wrapped_methods": list(methods),
                "retry_methods": sorted(retrying),
            },
        )
        return cls

    return decorator


def _proxy_method(
    declaration: Callable[..., Any],
    activity_name: str,
    timeout: timedelta,
    retry_policy: RetryPolicy,
) -> Callable[..., Any]:
    result_type = get_type_hints(declaration).get("return")
    if result_type is NONE_TYPE:
        result_type = None

    @functools.wraps(declaration)
    async def method(self: Any, *args: Any, **kwargs: Any) -> Any:
        if kwargs:
            raise ValueError(
                f"Workflow proxy for {activity_name} takes positional "
                "arguments only"
            )
        logger.debug(
            "Workflow: Calling activity",
            extra={"activity_name": activity_name, "args_count": len(args)},
        )
        options: Dict[str, Any] = {
            "args": list(args),
            "start_to_close_timeout": timeout,
            "retry_policy": retry_policy,
        }
        if result_type is not None:
            options["result_type"] = result_type
        return await workflow.execute_activity(activity_name, **options)

    return method
