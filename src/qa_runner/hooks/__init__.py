from .models import DEFAULT_HOOK_ORDER, Hook, HookStats, HookType
from .registry import (
    HookRegistry,
    before,
    after,
    before_step,
    after_step,
    before_feature,
    after_feature,
    before_all,
    after_all,
)
from .executor import DEFAULT_HOOK_TIMEOUT, HookExecutor, executing_hooks, first_failure

__all__ = [
    'DEFAULT_HOOK_ORDER',
    'DEFAULT_HOOK_TIMEOUT',
    'Hook',
    'HookStats',
    'HookType',
    'HookRegistry',
    'HookExecutor',
    'executing_hooks',
    'first_failure',
    'before',
    'after',
    'before_step',
    'after_step',
    'before_feature',
    'after_feature',
    'before_all',
    'after_all',
]
