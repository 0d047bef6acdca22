import os
import sys

root_path = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.append(root_path)


def make_foo():
    """A fresh class per test, so wrapping never leaks between test cases."""

    class Foo:
        def __init__(self, log):
            self.log = log

        def first(self):
            self.log.append('origin')
            return self.log

        def second(self, a, b):
            self.log.append('origin')
            self.log.append([a, b])
            return self.log

        def third(self, a, b, block):
            self.log.append('origin')
            block(self.log, a, b)
            return self.log

        @classmethod
        def zweit(cls, log, a, b):
            log.append('origin')
            log.append([a, b])
            return log

        @staticmethod
        def dritt(log, a, b, block):
            log.append('origin')
            block(log, a, b)
            return log

    return Foo


def stub_a_members(entity) -> list:
    return [m for m in vars(entity) if isinstance(m, str) and 'stub_a' in m]
