import inspect
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from ..core.exceptions import RegistryLockedError
from ..gherkin.tag_expression import matches_any
from .models import DEFAULT_HOOK_ORDER, Hook, HookType

logger = logging.getLogger(__name__)


class HookRegistry:
    """In-memory catalog of lifecycle hooks, sorted by order within each type"""

    def __init__(self):
        self._hooks: Dict[HookType, List[Hook]] = {hook_type: [] for hook_type in HookType}
        self._locked = False

    def register(
            self,
            hook_type: Union[HookType, str],
            function: Callable,
            name: Optional[str] = None,
            order: int = DEFAULT_HOOK_ORDER,
            tags: Union[str, Iterable[str], None] = None,
            timeout: Optional[int] = None,
            always_run: bool = False,
            condition: Optional[Callable[[], bool]] = None,
            description: str = ""
    ) -> Hook:
        """
        Register a hook

        Args:
            hook_type: Lifecycle point
            function: Sync or async callable taking the execution context
            name: Defaults to the function name
            order: Lower runs first; ties keep registration order
            tags: Tag expressions; the hook matches when any of them does
            timeout: Milliseconds, executor default when None
            always_run: Keep a setup chain going when this hook fails
            condition: Predicate checked at lookup time

        Raises:
            RegistryLockedError: registry is locked and the type is not run-level
        """
        hook_type = HookType(hook_type)
        if self._locked and not hook_type.is_run_level:
            raise RegistryLockedError(
                f"Cannot register {hook_type.value} hook '{name or function.__name__}': registry is locked"
            )

        if isinstance(tags, str):
            tags = [tags]

        hook = Hook(
            type=hook_type,
            function=function,
            name=name if name is not None else getattr(function, '__name__', 'anonymous'),
            order=order,
            tags=list(tags or []),
            timeout=timeout,
            always_run=always_run,
            condition=condition,
            description=description,
        )

        hooks = self._hooks[hook_type]
        hooks.append(hook)
        # list.sort is stable, so equal orders keep registration sequence
        hooks.sort(key=lambda h: h.order)

        logger.debug(f"Registered {hook_type.value} hook: {hook.name} (order: {hook.order})")
        return hook

    def _decorator(self, hook_type: HookType, function: Optional[Callable], options: Dict[str, Any]):
        if function is not None:
            self.register(hook_type, function, **options)
            return function

        def decorator(func):
            self.register(hook_type, func, **options)
            return func

        return decorator

    def before(self, function: Optional[Callable] = None, **options):
        """Decorator for Before (scenario) hooks"""
        return self._decorator(HookType.BEFORE, function, options)

    def after(self, function: Optional[Callable] = None, **options):
        """Decorator for After (scenario) hooks"""
        return self._decorator(HookType.AFTER, function, options)

    def before_step(self, function: Optional[Callable] = None, **options):
        return self._decorator(HookType.BEFORE_STEP, function, options)

    def after_step(self, function: Optional[Callable] = None, **options):
        return self._decorator(HookType.AFTER_STEP, function, options)

    def before_feature(self, function: Optional[Callable] = None, **options):
        return self._decorator(HookType.BEFORE_FEATURE, function, options)

    def after_feature(self, function: Optional[Callable] = None, **options):
        return self._decorator(HookType.AFTER_FEATURE, function, options)

    def before_all(self, function: Optional[Callable] = None, **options):
        return self._decorator(HookType.BEFORE_ALL, function, options)

    def after_all(self, function: Optional[Callable] = None, **options):
        return self._decorator(HookType.AFTER_ALL, function, options)

    def get_hooks(self, hook_type: Union[HookType, str], tags: Optional[Iterable[str]] = None) -> List[Hook]:
        """
        Hooks of ``hook_type`` applicable to ``tags``, in execution order.

        Untagged hooks always apply. Tagged hooks apply when one of their
        expressions matches. A raising condition counts as false.
        """
        hook_type = HookType(hook_type)
        tags = list(tags or [])
        applicable = []

        for hook in self._hooks[hook_type]:
            if hook.tags and not matches_any(hook.tags, tags):
                continue

            if hook.condition is not None:
                try:
                    if not hook.condition():
                        continue
                except Exception as e:
                    logger.warning(f"Hook condition failed for '{hook.name}': {e}")
                    continue

            applicable.append(hook)

        return applicable

    def lock(self) -> None:
        self._locked = True
        logger.debug("Hook registry locked")

    def unlock(self) -> None:
        self._locked = False
        logger.debug("Hook registry unlocked")

    @property
    def is_locked(self) -> bool:
        return self._locked

    def remove(self, hook_type: Union[HookType, str], name: str) -> bool:
        """Remove the hook called ``name``; returns whether one was found"""
        hook_type = HookType(hook_type)
        if self._locked and not hook_type.is_run_level:
            raise RegistryLockedError(f"Cannot remove {hook_type.value} hook '{name}': registry is locked")

        hooks = self._hooks[hook_type]
        for index, hook in enumerate(hooks):
            if hook.name == name:
                del hooks[index]
                logger.debug(f"Removed {hook_type.value} hook: {name}")
                return True
        return False

    def clear(self, hook_type: Union[HookType, str, None] = None) -> None:
        """Clear hooks of one type, or all of them"""
        if hook_type is None:
            for hooks in self._hooks.values():
                hooks.clear()
        else:
            self._hooks[HookType(hook_type)].clear()

    def reset(self) -> None:
        """Drop every hook and unlock"""
        self.clear()
        self._locked = False

    def has_hooks(self, hook_type: Union[HookType, str]) -> bool:
        return bool(self._hooks[HookType(hook_type)])

    def count(self, hook_type: Union[HookType, str, None] = None) -> int:
        if hook_type is None:
            return sum(len(hooks) for hooks in self._hooks.values())
        return len(self._hooks[HookType(hook_type)])

    def counts(self) -> Dict[str, int]:
        return {hook_type.value: len(hooks) for hook_type, hooks in self._hooks.items()}

    def all_hooks(self) -> List[Hook]:
        return [hook for hooks in self._hooks.values() for hook in hooks]

    def statistics(self) -> Dict[str, Any]:
        hooks = self.all_hooks()
        return {
            'total': len(hooks),
            'by_type': self.counts(),
            'tagged': sum(1 for hook in hooks if hook.tags),
            'conditional': sum(1 for hook in hooks if hook.condition is not None),
            'always_run': sum(1 for hook in hooks if hook.always_run),
            'with_timeout': sum(1 for hook in hooks if hook.timeout is not None),
            'locked': self._locked,
        }

    def export(self) -> List[Dict[str, Any]]:
        return [hook.to_dict() for hook in self.all_hooks()]

    def validate(self) -> Dict[str, Any]:
        """
        Check registered hooks for configuration problems.

        Empty names and non-positive timeouts are errors; negative orders and
        duplicate names are warnings. Nothing is raised.
        """
        errors = []
        warnings = []

        for hook_type, hooks in self._hooks.items():
            seen = set()
            for hook in hooks:
                if not hook.name or not hook.name.strip():
                    errors.append(f"{hook_type.value} hook has an empty name")
                if hook.timeout is not None and hook.timeout <= 0:
                    errors.append(f"Hook '{hook.id}' has a non-positive timeout: {hook.timeout}")
                if hook.order < 0:
                    warnings.append(f"Hook '{hook.id}' has a negative order: {hook.order}")
                if hook.name in seen:
                    warnings.append(f"Duplicate {hook_type.value} hook name: {hook.name}")
                seen.add(hook.name)

        for message in errors:
            logger.error(message)
        for message in warnings:
            logger.warning(message)

        return {'valid': not errors, 'errors': errors, 'warnings': warnings}

    def register_from_module(self, module) -> int:
        """Register every function marked with a hook decorator in ``module``"""
        registered = 0
        for name, obj in inspect.getmembers(module):
            definitions = getattr(obj, '_hook_definitions', None)
            if not definitions:
                continue
            for hook_info in definitions:
                options = dict(hook_info)
                hook_type = options.pop('type')
                self.register(hook_type, obj, **options)
                registered += 1
        return registered


# Utility decorators for marking module functions as hooks
def _mark(hook_type: HookType, function: Optional[Callable], options: Dict[str, Any]):
    def decorator(func):
        if not hasattr(func, '_hook_definitions'):
            func._hook_definitions = []
        func._hook_definitions.append({'type': hook_type, **options})
        return func

    if function is not None:
        return decorator(function)
    return decorator


def before(function: Optional[Callable] = None, **options):
    """Mark function as a Before hook"""
    return _mark(HookType.BEFORE, function, options)


def after(function: Optional[Callable] = None, **options):
    """Mark function as an After hook"""
    return _mark(HookType.AFTER, function, options)


def before_step(function: Optional[Callable] = None, **options):
    return _mark(HookType.BEFORE_STEP, function, options)


def after_step(function: Optional[Callable] = None, **options):
    return _mark(HookType.AFTER_STEP, function, options)


def before_feature(function: Optional[Callable] = None, **options):
    return _mark(HookType.BEFORE_FEATURE, function, options)


def after_feature(function: Optional[Callable] = None, **options):
    return _mark(HookType.AFTER_FEATURE, function, options)


def before_all(function: Optional[Callable] = None, **options):
    return _mark(HookType.BEFORE_ALL, function, options)


def after_all(function: Optional[Callable] = None, **options):
    return _mark(HookType.AFTER_ALL, function, options)
