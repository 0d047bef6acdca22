"""Attach before / after / stub hooks to methods of existing objects and classes, and restore them."""

import re
import logging
import traceback
import functools
from enum import Enum
from logging import Logger
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict


logger = logging.getLogger(__name__)

HOOK_PREFIX = '===>(stub_a)'
CLASS_HOOK_PREFIX = '===>(stub_a:class)'


class HookKind(str, Enum):
    BEFORE = 'before'
    AFTER = 'after'
    STUB = 'stub'
    ORIGIN = 'origin'


DETACHABLE_KINDS = (HookKind.BEFORE, HookKind.AFTER, HookKind.STUB)


class BeforeArgs(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    method_name: str
    args: Tuple[Any, ...] = ()
    kwargs: Dict[str, Any] = {}


class StubArgs(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    method: Callable[..., Any]
    args: Tuple[Any, ...] = ()
    kwargs: Dict[str, Any] = {}


class AfterArgs(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    method_name: str
    args: Tuple[Any, ...] = ()
    kwargs: Dict[str, Any] = {}
    return_value: Any = None


class StubAError(Exception):
    """Base class of every error raised by StubA."""
    pass


class UnknownOperation(StubAError, AttributeError):
    """The method name does not resolve to a callable on the target."""
    pass


class MissingBehavior(StubAError, ValueError):
    """A stub was requested without a replacement callable."""
    pass


class MissingTarget(StubAError, LookupError):
    """Restore could not tell which method to put back."""
    pass


class AmbiguousTarget(MissingTarget):
    """Restore without a method name while several methods are wrapped."""
    pass


class InvalidHookKind(StubAError, ValueError):
    """A hook kind outside before / after / stub."""
    pass


_MISSING = object()


def _lookup_static(klass: type, name: str) -> Any:
    """Return the raw attribute `name` as stored in the MRO of `klass`, without invoking descriptors."""
    for base in klass.__mro__:
        if name in vars(base):
            return vars(base)[name]
    return _MISSING


def _bind(original: Any, instance: Any, owner: type) -> Any:
    getter = getattr(type(original), '__get__', None)
    return getter(original, instance, owner) if getter else original


def _wraps(original: Any) -> Callable:
    # Bound methods, classmethod and staticmethod keep the function in __func__
    return functools.wraps(getattr(original, '__func__', original))


# ----------------------------------------------------------------------------------------------------------------------

class PreservedOrigin:
    """Original of an instance-scoped method, and whether it was stored in the instance's own ``__dict__``."""

    def __init__(self, method: Callable, local: bool):
        self.__wrapped__ = method
        self.local = local

    def __call__(self, *args, **kwargs):
        return self.__wrapped__(*args, **kwargs)

    def __repr__(self):
        return f"<PreservedOrigin {self.__wrapped__!r} local={self.local}>"


class InstanceScope:
    """Methods of a single object.

    Members are written into the object's own ``__dict__``, so neither its class
    nor its sibling instances can see them.
    """

    prefix = HOOK_PREFIX

    def __init__(self, entity: Any):
        self.entity = entity

    @property
    def namespace(self) -> dict:
        # __slots__ objects without __dict__ can hold no hooks
        namespace = getattr(self.entity, '__dict__', None)
        return {} if namespace is None else namespace

    def has_member(self, member: str) -> bool:
        return member in self.namespace

    def get_member(self, member: str) -> Any:
        return self.namespace.get(member)

    def set_member(self, member: str, value: Any):
        self.namespace[member] = value

    def del_member(self, member: str):
        del self.namespace[member]

    def resolve(self, name: str) -> PreservedOrigin:
        if not hasattr(self.entity, '__dict__'):
            raise UnknownOperation(f"{type(self.entity).__name__} object has no __dict__ to hold hooks for '{name}'")
        local = name in self.namespace
        original = self.namespace[name] if local else getattr(self.entity, name, None)
        if not callable(original):
            raise UnknownOperation(f"{type(self.entity).__name__} object has no method '{name}'")
        return PreservedOrigin(original, local)

    def bind(self, original: PreservedOrigin, receiver: Any) -> Any:
        return original.__wrapped__

    def make_dispatcher(self, original: PreservedOrigin, dispatch: Callable) -> Any:
        entity = self.entity

        @_wraps(original.__wrapped__)
        def dispatcher(*args, **kwargs):
            return dispatch(entity, args, kwargs)
        return dispatcher

    def put_back(self, name: str, original: PreservedOrigin):
        del self.namespace[name]
        if original.local:
            self.namespace[name] = original.__wrapped__

    def __repr__(self):
        return f"<InstanceScope {type(self.entity).__qualname__} at {id(self.entity):#x}>"


class TypeScope:
    """Instance methods of a class, shared by every instance that does not override them."""

    prefix = HOOK_PREFIX

    def __init__(self, entity: type):
        self.entity = entity

    @property
    def namespace(self):
        return vars(self.entity)

    def has_member(self, member: str) -> bool:
        return member in self.namespace

    def get_member(self, member: str) -> Any:
        return self.namespace.get(member)

    def set_member(self, member: str, value: Any):
        setattr(self.entity, member, value)

    def del_member(self, member: str):
        delattr(self.entity, member)

    def resolve(self, name: str) -> Any:
        original = _lookup_static(self.entity, name)
        if isinstance(original, (classmethod, staticmethod)) or \
                not (callable(original) or isinstance(original, functools.partialmethod)):
            raise UnknownOperation(f"{self.entity.__qualname__} has no instance method '{name}'")
        return original

    def bind(self, original: Any, receiver: Any) -> Any:
        return _bind(original, receiver, type(receiver))

    def make_dispatcher(self, original: Any, dispatch: Callable) -> Any:
        @_wraps(original)
        def dispatcher(receiver, *args, **kwargs):
            return dispatch(receiver, args, kwargs)
        return dispatcher

    def put_back(self, name: str, original: Any):
        delattr(self.entity, name)
        if _lookup_static(self.entity, name) is not original:
            setattr(self.entity, name, original)

    def __repr__(self):
        return f"<{type(self).__name__} {self.entity.__qualname__}>"


class ClassScope(TypeScope):
    """Class-level methods (classmethod / staticmethod) of a class.

    Shares the class namespace with TypeScope but uses its own member prefix.
    """

    prefix = CLASS_HOOK_PREFIX

    def resolve(self, name: str) -> Any:
        original = _lookup_static(self.entity, name)
        if not isinstance(original, (classmethod, staticmethod)):
            raise UnknownOperation(f"{self.entity.__qualname__} has no class method '{name}'")
        return original

    def bind(self, original: Any, receiver: Any) -> Any:
        return _bind(original, None, receiver)

    def make_dispatcher(self, original: Any, dispatch: Callable) -> Any:
        @_wraps(original)
        def dispatcher(receiver, *args, **kwargs):
            return dispatch(receiver, args, kwargs)
        return classmethod(dispatcher)


# ----------------------------------------------------------------------------------------------------------------------

class InterceptionEngine:
    """Installs, dispatches and removes method wrappers on a scope.

    For every wrapped method four members may exist on the scope, named after the
    method and the hook kind (see `hook_member_name`):

        origin  - the original implementation, always present while wrapped
        before  - called as ``hook(receiver, BeforeArgs)`` before the method
        stub    - called as ``hook(receiver, StubArgs)`` instead of the method
        after   - called as ``hook(receiver, AfterArgs)`` after the method

    The method name itself is replaced by a dispatcher which reads those members at
    call time, so replacing a hook never requires reinstalling the dispatcher.

    Args:
        logger (Logger, optional): Logger for bookkeeping records and for the default
            before / after hooks. Defaults to the module logger.
    """

    def __init__(self, logger: Optional[Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    # ------------------------------------------------ Naming ------------------------------------------------

    @staticmethod
    def hook_member_name(scope, name: str, kind) -> str:
        return f"{scope.prefix} {HookKind(kind).value}-{name}"

    def hook_member_names(self, scope, name: str) -> Dict[HookKind, str]:
        return {kind: self.hook_member_name(scope, name, kind) for kind in HookKind}

    @staticmethod
    def wrapped_operations(scope) -> Dict[str, List[HookKind]]:
        """Parse the wrapper members of a scope back into ``{method_name: [kinds]}``."""
        pattern = re.compile(r'\A%s (%s)-(.+)\Z' % (re.escape(scope.prefix), '|'.join(k.value for k in HookKind)),
                             re.DOTALL)
        hooks = {}
        for member in list(scope.namespace):
            matched = pattern.match(member) if isinstance(member, str) else None
            if matched:
                hooks.setdefault(matched.group(2), []).append(HookKind(matched.group(1)))
        return hooks

    # ------------------------------------------------ Attach ------------------------------------------------

    def attach_hook(self, scope, name: str, kind, behavior: Optional[Callable] = None):
        """Register a before or after hook for `name`, wrapping the method on first use.

        Args:
            scope: InstanceScope, TypeScope or ClassScope to operate on.
            name (str): Method name.
            kind (HookKind | str): 'before' or 'after'.
            behavior (Callable, optional): ``behavior(receiver, args)``. When omitted a
                logging observer is registered.

        Raises:
            UnknownOperation: `name` is not a method of the scope.
            InvalidHookKind: `kind` is neither 'before' nor 'after'.
        """
        kind = self._hook_kind(kind)
        if kind not in (HookKind.BEFORE, HookKind.AFTER):
            raise InvalidHookKind(f"Cannot attach a '{kind.value}' hook, use 'before' or 'after'")
        if behavior is None:
            behavior = self.default_hook(scope, name, kind)
        self._attach(scope, name, kind, behavior)

    def attach_stub(self, scope, name: str, behavior: Optional[Callable]):
        """Replace `name` with ``behavior(receiver, StubArgs)``. The original stays reachable as ``args.method``."""
        if behavior is None:
            raise MissingBehavior(f"A replacement callable is required to stub '{name}'")
        if not callable(behavior):
            raise MissingBehavior(f"Stub for '{name}' is not callable: {behavior!r}")
        self._attach(scope, name, HookKind.STUB, behavior)

    def _attach(self, scope, name: str, kind: HookKind, behavior: Callable):
        installed = self._install(scope, name)
        try:
            scope.set_member(self.hook_member_name(scope, name, kind), behavior)
        except Exception as e:
            if installed:
                self._uninstall(scope, name)
                self.logger.error(f"Attach {kind.value} hook to '{name}' on {scope!r} failed, rolled back: {e}")
            raise
        self.logger.debug(f"{kind.value} hook attached to '{name}' on {scope!r}")

    def _install(self, scope, name: str) -> bool:
        names = self.hook_member_names(scope, name)
        if scope.has_member(names[HookKind.ORIGIN]):
            return False

        original = scope.resolve(name)
        dispatcher = scope.make_dispatcher(original, functools.partial(self._dispatch, scope, name, names))

        scope.set_member(names[HookKind.ORIGIN], original)
        try:
            scope.set_member(name, dispatcher)
        except Exception as e:
            scope.del_member(names[HookKind.ORIGIN])
            self.logger.error(f"Install dispatcher for '{name}' on {scope!r} failed, rolled back: {e}")
            raise
        self.logger.debug(f"Dispatcher installed for '{name}' on {scope!r}")
        return True

    # ------------------------------------------------ Dispatch ------------------------------------------------

    @staticmethod
    def _dispatch(scope, name: str, names: Dict[HookKind, str], receiver: Any, args: tuple, kwargs: dict) -> Any:
        original = scope.get_member(names[HookKind.ORIGIN])
        if original is None:
            raise UnknownOperation(f"'{name}' is no longer wrapped on {scope!r}")

        before = scope.get_member(names[HookKind.BEFORE])
        if before is not None:
            before(receiver, BeforeArgs(method_name=name, args=args, kwargs=kwargs))

        method = scope.bind(original, receiver)
        stub = scope.get_member(names[HookKind.STUB])
        if stub is not None:
            result = stub(receiver, StubArgs(method=method, args=args, kwargs=kwargs))
        else:
            result = method(*args, **kwargs)

        after = scope.get_member(names[HookKind.AFTER])
        if after is not None:
            after(receiver, AfterArgs(method_name=name, args=args, kwargs=kwargs, return_value=result))

        return result

    # ------------------------------------------------ Detach ------------------------------------------------

    def detach(self, scope, name: Optional[str] = None, *kinds):
        """Remove hooks from a wrapped method. The original is put back once no hook is left.

        Args:
            scope: Scope holding the wrapper.
            name (str, optional): Method name. May be omitted when exactly one method is wrapped.
            *kinds: Any of 'before', 'after', 'stub'. Defaults to all of them.

        Raises:
            MissingTarget: Nothing (or not `name`) is wrapped on the scope.
            AmbiguousTarget: `name` omitted while several methods are wrapped.
            InvalidHookKind: A kind other than 'before', 'after' or 'stub'.
        """
        hooks = self.wrapped_operations(scope)
        if name is None:
            if not hooks:
                raise MissingTarget(f"Method name to be restored is required: nothing is wrapped on {scope!r}")
            if len(hooks) > 1:
                raise AmbiguousTarget(f"Method name to be restored is required, wrapped: {', '.join(hooks)}")
            name = next(iter(hooks))
        if name not in hooks:
            raise MissingTarget(f"'{name}' is not wrapped on {scope!r}")

        kinds = self._detachable_kinds(kinds)
        names = self.hook_member_names(scope, name)
        for kind in kinds:
            if scope.has_member(names[kind]):
                scope.del_member(names[kind])
                self.logger.debug(f"{kind.value} hook detached from '{name}' on {scope!r}")

        if not any(scope.has_member(names[kind]) for kind in DETACHABLE_KINDS):
            self._uninstall(scope, name)

    def detach_all(self, scope):
        for name, kinds in self.wrapped_operations(scope).items():
            for kind in kinds:
                if kind is not HookKind.ORIGIN:
                    scope.del_member(self.hook_member_name(scope, name, kind))
            if HookKind.ORIGIN in kinds:
                self._uninstall(scope, name)

    def _uninstall(self, scope, name: str):
        origin_member = self.hook_member_name(scope, name, HookKind.ORIGIN)
        scope.put_back(name, scope.get_member(origin_member))
        scope.del_member(origin_member)
        self.logger.debug(f"'{name}' restored on {scope!r}")

    def _detachable_kinds(self, kinds) -> List[HookKind]:
        if not kinds:
            return list(DETACHABLE_KINDS)
        result = []
        for kind in kinds:
            kind = self._hook_kind(kind)
            if kind not in DETACHABLE_KINDS:
                raise InvalidHookKind(f"Cannot detach '{kind.value}', use 'before', 'after' or 'stub'")
            if kind not in result:
                result.append(kind)
        return result

    @staticmethod
    def _hook_kind(kind) -> HookKind:
        try:
            return HookKind(kind)
        except ValueError:
            raise InvalidHookKind(f"Unknown hook kind: {kind!r}") from None

    # ------------------------------------------------ Default hooks ------------------------------------------------

    def default_hook(self, scope, name: str, kind) -> Callable:
        kind = HookKind(kind)
        if kind is HookKind.BEFORE:
            return self._default_before_hook()
        if kind is HookKind.AFTER:
            return self._default_after_hook(scope, name)
        raise InvalidHookKind(f"No default hook for '{kind.value}'")

    def _default_before_hook(self) -> Callable:
        log = self.logger

        def default_before(receiver, args: BeforeArgs):
            log.info(f"call `{args.method_name}' ({receiver!r})")
            if args.args or args.kwargs:
                log.info(f"args: {args.args!r} {args.kwargs!r}" if args.kwargs else f"args: {args.args!r}")
        return default_before

    def _default_after_hook(self, scope, name: str) -> Callable:
        log = self.logger
        before_member = self.hook_member_name(scope, name, HookKind.BEFORE)

        def default_after(receiver, args: AfterArgs):
            # The before hook already reported the call.
            if not scope.has_member(before_member):
                log.info(f"call `{args.method_name}' ({receiver!r})")
            log.info(f"return: {args.return_value!r}")
        return default_after


# ----------------------------------------------------------------------------------------------------------------------

class StubA:
    """Hook or stub the methods of an existing class or object without touching its source.

    Passing a class operates on its instance methods, which affects every instance
    including the ones created later. Passing an object operates on that object only;
    its class and sibling instances keep their behavior. Class methods (classmethod /
    staticmethod) are handled by the ``c``-prefixed group and always apply to the class,
    whichever of the two was passed.

    Args:
        target: Class or instance to operate on.
        scope (str): 'auto' decides by the target. 'class' operates on the class of an
            instance target. 'instance' requires an instance target.
        logger (Logger, optional): Logger used by the default before / after hooks.

    Usage:
        stub_a = StubA(Account)
        stub_a.before('withdraw', lambda account, args: print(args.args))
        stub_a.stub('balance', lambda account, args: 0)

        Account().balance()     # 0
        stub_a.restore('balance')
        stub_a.restore_all()
    """

    SCOPES = ('auto', 'class', 'instance')

    def __init__(self, target: Any, scope: str = 'auto', logger: Optional[Logger] = None):
        if scope not in self.SCOPES:
            raise ValueError(f"Unknown scope '{scope}', expected one of {', '.join(self.SCOPES)}")

        is_class = isinstance(target, type)
        if scope == 'instance' and is_class:
            raise TypeError(f"scope='instance' requires an instance, got class {target.__qualname__}")

        klass = target if is_class else type(target)
        if is_class or scope == 'class':
            self.__target = TypeScope(klass)
        else:
            self.__target = InstanceScope(target)
        self.__target_class = ClassScope(klass)
        self.__engine = InterceptionEngine(logger or logging.getLogger(__name__))

    @property
    def target(self):
        """Scope of the instance-method group (before / after / stub / restore)."""
        return self.__target

    @property
    def target_class(self):
        """Scope of the class-method group (cbefore / cafter / cstub / crestore)."""
        return self.__target_class

    @property
    def engine(self) -> InterceptionEngine:
        return self.__engine

    def hook_method_name(self, method_name: str, kind) -> str:
        return self.__engine.hook_member_name(self.__target, method_name, kind)

    def chook_method_name(self, method_name: str, kind) -> str:
        return self.__engine.hook_member_name(self.__target_class, method_name, kind)

    # ------------------------------------------------ Instance methods ------------------------------------------------

    def before(self, method_name: str, hook: Optional[Callable] = None) -> 'StubA':
        """Call ``hook(receiver, BeforeArgs)`` right before the instance method runs.

        Without a hook the call and its arguments are logged.
        """
        self.__engine.attach_hook(self.__target, method_name, HookKind.BEFORE, hook)
        return self

    def after(self, method_name: str, hook: Optional[Callable] = None) -> 'StubA':
        """Call ``hook(receiver, AfterArgs)`` right after the instance method returns.

        Without a hook the return value is logged.
        """
        self.__engine.attach_hook(self.__target, method_name, HookKind.AFTER, hook)
        return self

    def stub(self, method_name: str, hook: Optional[Callable] = None) -> 'StubA':
        """Run ``hook(receiver, StubArgs)`` instead of the instance method and return its result."""
        self.__engine.attach_stub(self.__target, method_name, hook)
        return self

    def restore(self, method_name: Optional[str] = None, *kinds):
        """Undo hooks of an instance method.

        ``restore('foo', 'before')`` removes the before hook of ``foo``, several kinds
        may follow the name. Without kinds every hook of ``foo`` is removed, and
        without any argument the single wrapped method is restored.
        """
        self.__engine.detach(self.__target, method_name, *kinds)

    def restore_all(self):
        self.__engine.detach_all(self.__target)

    # ------------------------------------------------ Class methods ------------------------------------------------

    def cbefore(self, method_name: str, hook: Optional[Callable] = None) -> 'StubA':
        self.__engine.attach_hook(self.__target_class, method_name, HookKind.BEFORE, hook)
        return self

    def cafter(self, method_name: str, hook: Optional[Callable] = None) -> 'StubA':
        self.__engine.attach_hook(self.__target_class, method_name, HookKind.AFTER, hook)
        return self

    def cstub(self, method_name: str, hook: Optional[Callable] = None) -> 'StubA':
        self.__engine.attach_stub(self.__target_class, method_name, hook)
        return self

    def crestore(self, method_name: Optional[str] = None, *kinds):
        """Same as `restore`, for class methods."""
        self.__engine.detach(self.__target_class, method_name, *kinds)

    def crestore_all(self):
        self.__engine.detach_all(self.__target_class)

    def __repr__(self):
        return f"<StubA target={self.__target!r} target_class={self.__target_class!r}>"


# ----------------------------------------------------------------------------------------------------------------------

class Account:
    def __init__(self, balance: int = 0):
        self.balance = balance

    def withdraw(self, amount: int) -> int:
        self.balance -= amount
        return self.balance

    @classmethod
    def open(cls, balance: int) -> 'Account':
        return cls(balance)


def main():
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    account = Account.open(100)
    stub_a = StubA(account)

    stub_a.before('withdraw').after('withdraw')
    account.withdraw(30)

    stub_a.stub('withdraw', lambda receiver, args: receiver.balance)
    print(f'Stubbed withdraw: {account.withdraw(1000)}')

    stub_a.restore('withdraw', 'stub')
    stub_a.restore_all()
    print(f'Restored withdraw: {account.withdraw(10)}')

    stub_a.cafter('open')
    Account.open(5)
    stub_a.crestore_all()


# ----------------------------------------------------------------------------------------------------------------------

if __name__ == "__main__":
    try:
        main()
    except Exception as e:
        print('Error =>', e)
        print('Error =>', traceback.format_exc())
        exit()
    finally:
        pass
