import logging
import unittest

from shared_stub import make_foo, stub_a_members
from StubA import (StubA, InterceptionEngine, InstanceScope, TypeScope, ClassScope, HookKind,
                   BeforeArgs, StubArgs, AfterArgs, InvalidHookKind, MissingTarget, UnknownOperation,
                   StubAError)


class TestNaming(unittest.TestCase):
    def setUp(self):
        self.engine = InterceptionEngine()
        self.klass = make_foo()

    def test_member_name(self):
        self.assertEqual(self.engine.hook_member_name(TypeScope(self.klass), 'first', 'before'),
                         '===>(stub_a) before-first')
        self.assertEqual(self.engine.hook_member_name(ClassScope(self.klass), 'zweit', HookKind.ORIGIN),
                         '===>(stub_a:class) origin-zweit')

    def test_member_names_cover_every_kind(self):
        names = self.engine.hook_member_names(TypeScope(self.klass), 'first')
        self.assertEqual(set(names), set(HookKind))
        self.assertEqual(len(set(names.values())), 4)

    def test_wrapped_operations(self):
        scope = TypeScope(self.klass)
        self.engine.attach_hook(scope, 'first', HookKind.BEFORE, lambda foo, args: None)
        self.engine.attach_stub(scope, 'second', lambda foo, args: None)
        self.assertEqual(self.engine.wrapped_operations(scope), {
            'first': [HookKind.ORIGIN, HookKind.BEFORE],
            'second': [HookKind.ORIGIN, HookKind.STUB],
        })

    def test_scopes_of_one_class_do_not_mix(self):
        self.engine.attach_hook(ClassScope(self.klass), 'zweit', 'after', lambda cls, args: None)
        self.assertEqual(self.engine.wrapped_operations(TypeScope(self.klass)), {})
        self.assertEqual(list(self.engine.wrapped_operations(ClassScope(self.klass))), ['zweit'])

    def test_instance_namespace(self):
        foo = self.klass([])
        self.engine.attach_hook(InstanceScope(foo), 'first', 'after', lambda foo, args: None)
        self.assertEqual(self.engine.wrapped_operations(InstanceScope(foo)),
                         {'first': [HookKind.ORIGIN, HookKind.AFTER]})
        self.assertEqual(self.engine.wrapped_operations(InstanceScope(self.klass([]))), {})


class TestDispatcher(unittest.TestCase):
    def setUp(self):
        self.log = []
        self.klass = make_foo()
        self.stub = StubA(self.klass)

    def test_dispatcher_keeps_original_name(self):
        original = vars(self.klass)['first']
        self.stub.before('first', lambda foo, args: None)
        self.assertEqual(self.klass.first.__name__, 'first')
        self.assertIs(self.klass.first.__wrapped__, original)

    def test_argument_records(self):
        seen = []
        self.stub.before('second', lambda foo, args: seen.append(args))
        self.stub.stub('second', lambda foo, args: seen.append(args) or 'stubbed')
        self.stub.after('second', lambda foo, args: seen.append(args))
        self.klass(self.log).second(1, b=2)

        before, stub, after = seen
        self.assertIsInstance(before, BeforeArgs)
        self.assertEqual((before.method_name, before.args, before.kwargs), ('second', (1,), {'b': 2}))
        self.assertIsInstance(stub, StubArgs)
        self.assertEqual((stub.args, stub.kwargs), ((1,), {'b': 2}))
        self.assertIsInstance(after, AfterArgs)
        self.assertEqual((after.method_name, after.args, after.return_value), ('second', (1,), 'stubbed'))

    def test_hook_replaced_between_calls(self):
        foo = self.klass(self.log)
        self.stub.before('first', lambda foo, args: foo.log.append('one'))
        foo.first()
        self.stub.before('first', lambda foo, args: foo.log.append('two'))
        self.assertEqual(foo.first(), ['one', 'origin', 'two', 'origin'])

    def test_existing_instances_see_class_wrapper(self):
        foo = self.klass(self.log)
        self.stub.before('first', lambda foo, args: foo.log.append('before'))
        self.assertEqual(foo.first(), ['before', 'origin'])

    def test_hook_calling_another_wrapped_method(self):
        self.stub.before('second', lambda foo, args: foo.log.append('second'))
        self.stub.before('first', lambda foo, args: foo.second(0, 0))
        self.assertEqual(self.klass(self.log).first(), ['second', 'origin', [0, 0], 'origin'])

    def test_stale_dispatcher_after_restore(self):
        self.stub.before('first', lambda foo, args: None)
        stale = self.klass(self.log).first
        self.stub.restore_all()
        with self.assertRaises(UnknownOperation):
            stale()

    def test_subclass_and_base_wrapped(self):
        class Sub(self.klass):
            pass

        StubA(self.klass).before('first', lambda foo, args: foo.log.append('base'))
        StubA(Sub).before('first', lambda foo, args: foo.log.append('sub'))
        self.assertEqual(Sub(self.log).first(), ['sub', 'base', 'origin'])
        StubA(Sub).restore_all()
        self.assertNotIn('first', vars(Sub))
        self.log.clear()
        self.assertEqual(Sub(self.log).first(), ['base', 'origin'])


class TestAttachErrors(unittest.TestCase):
    def setUp(self):
        self.engine = InterceptionEngine()
        self.klass = make_foo()

    def test_stub_is_not_a_hook_kind(self):
        with self.assertRaises(InvalidHookKind):
            self.engine.attach_hook(TypeScope(self.klass), 'first', 'stub', lambda foo, args: None)
        self.assertEqual(stub_a_members(self.klass), [])

    def test_unknown_kind(self):
        with self.assertRaises(InvalidHookKind):
            self.engine.attach_hook(TypeScope(self.klass), 'first', 'around', lambda foo, args: None)

    def test_errors_share_a_base(self):
        with self.assertRaises(StubAError):
            StubA(self.klass).stub('first')

    def test_dispatcher_install_rolled_back(self):
        class ReadOnlyFirst(type):
            def __setattr__(cls, name, value):
                if name == 'first':
                    raise AttributeError('first is read only')
                super().__setattr__(name, value)

        class Guarded(metaclass=ReadOnlyFirst):
            def first(self):
                return 'origin'

        with self.assertLogs('StubA', level='ERROR'):
            with self.assertRaises(AttributeError):
                StubA(Guarded).before('first', lambda obj, args: None)
        self.assertEqual(stub_a_members(Guarded), [])
        self.assertEqual(Guarded().first(), 'origin')

    def test_hook_registration_rolled_back(self):
        class NoHooks(type):
            def __setattr__(cls, name, value):
                if name.startswith('===>(stub_a) before-'):
                    raise AttributeError('no before hooks')
                super().__setattr__(name, value)

        class Guarded(metaclass=NoHooks):
            def first(self):
                return 'origin'

        original = vars(Guarded)['first']
        with self.assertLogs('StubA', level='ERROR'):
            with self.assertRaises(AttributeError):
                StubA(Guarded).before('first', lambda obj, args: None)
        self.assertEqual(stub_a_members(Guarded), [])
        self.assertIs(vars(Guarded)['first'], original)


class TestDefaultHooks(unittest.TestCase):
    def setUp(self):
        self.log = []
        self.klass = make_foo()
        self.logger = logging.getLogger('stub_a_test.default_hooks')
        self.stub = StubA(self.klass, logger=self.logger)

    def test_default_before_logs_call_and_arguments(self):
        self.stub.before('second')
        with self.assertLogs(self.logger, level='INFO') as cm:
            result = self.klass(self.log).second(1, 2)
        self.assertEqual(result, ['origin', [1, 2]])
        self.assertEqual(len(cm.output), 2)
        self.assertIn("call `second'", cm.output[0])
        self.assertIn('args: (1, 2)', cm.output[1])

    def test_default_before_without_arguments(self):
        self.stub.before('first')
        with self.assertLogs(self.logger, level='INFO') as cm:
            self.klass(self.log).first()
        self.assertEqual(len(cm.output), 1)

    def test_default_after_logs_call_and_return(self):
        self.stub.after('first')
        with self.assertLogs(self.logger, level='INFO') as cm:
            self.klass(self.log).first()
        self.assertEqual(len(cm.output), 2)
        self.assertIn("call `first'", cm.output[0])
        self.assertIn("return: ['origin']", cm.output[1])

    def test_default_after_does_not_repeat_call(self):
        self.stub.before('first', lambda foo, args: None).after('first')
        with self.assertLogs(self.logger, level='INFO') as cm:
            self.klass(self.log).first()
        self.assertEqual(len(cm.output), 1)
        self.assertIn('return:', cm.output[0])

    def test_default_after_reports_call_again_once_before_is_removed(self):
        self.stub.before('first').after('first')
        self.stub.restore('first', 'before')
        with self.assertLogs(self.logger, level='INFO') as cm:
            self.klass(self.log).first()
        self.assertEqual(len(cm.output), 2)

    def test_default_class_hooks(self):
        self.stub.cbefore('zweit').cafter('zweit')
        with self.assertLogs(self.logger, level='INFO') as cm:
            self.klass.zweit(self.log, 1, 2)
        self.assertEqual(len(cm.output), 3)
        self.assertIn("call `zweit'", cm.output[0])


class TestObjectWithoutDict(unittest.TestCase):
    class Slotted:
        __slots__ = ('value',)

        def first(self):
            return 'origin'

    def test_attach_raises_unknown_operation(self):
        with self.assertRaises(UnknownOperation):
            StubA(self.Slotted()).before('first', lambda obj, args: None)

    def test_restore_all_is_noop(self):
        obj = self.Slotted()
        StubA(obj).restore_all()
        self.assertEqual(obj.first(), 'origin')

    def test_restore_without_wrapped_methods(self):
        with self.assertRaises(MissingTarget):
            StubA(self.Slotted()).restore()


class TestFacade(unittest.TestCase):
    def setUp(self):
        self.klass = make_foo()

    def test_class_target(self):
        stub = StubA(self.klass)
        self.assertIsInstance(stub.target, TypeScope)
        self.assertIsInstance(stub.target_class, ClassScope)
        self.assertIs(stub.target.entity, self.klass)

    def test_instance_target(self):
        foo = self.klass([])
        stub = StubA(foo)
        self.assertIsInstance(stub.target, InstanceScope)
        self.assertIs(stub.target_class.entity, self.klass)

    def test_force_class_scope(self):
        log = []
        stub = StubA(self.klass(log), scope='class')
        self.assertIsInstance(stub.target, TypeScope)
        stub.before('first', lambda foo, args: foo.log.append('before'))
        self.assertEqual(self.klass(log).first(), ['before', 'origin'])

    def test_instance_scope_rejects_class(self):
        with self.assertRaises(TypeError):
            StubA(self.klass, scope='instance')

    def test_unknown_scope(self):
        with self.assertRaises(ValueError):
            StubA(self.klass, scope='module')

    def test_repr(self):
        self.assertIn('TypeScope', repr(StubA(self.klass)))


if __name__ == '__main__':
    unittest.main()
