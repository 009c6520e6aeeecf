"""Tests for target resolution and named-argument binding."""

import sys
import textwrap
from uuid import uuid4

import pytest

from cronsweep.cron.exceptions import BindingError, ResolutionError, TargetFormatError
from cronsweep.cron.targets import TargetResolver

TARGET_SOURCE = textwrap.dedent(
    """
    calls = []

    def greet(name, punctuation="!"):
        calls.append((name, punctuation))
        return f"hello {name}{punctuation}"

    def no_args():
        return "ok"

    class Jobs:
        @staticmethod
        def purge(days=30):
            return days

        @classmethod
        def describe(cls, verbose=False):
            return (cls.__name__, verbose)

        def instance_method(self):
            return "nope"

    not_callable = 42
    """
)


@pytest.fixture
def module_name():
    """A unique module name, removed from sys.modules afterwards."""
    name = f"cronsweep_target_{uuid4().hex}"
    yield name
    sys.modules.pop(name, None)


@pytest.fixture
def resolver(tmp_path, module_name) -> TargetResolver:
    (tmp_path / f"{module_name}.py").write_text(TARGET_SOURCE)
    return TargetResolver(search_paths=[tmp_path])


class TestResolve:
    """Tests for TargetResolver.resolve()."""

    def test_resolve_function_from_search_path(self, resolver, module_name):
        func = resolver.resolve(f"{module_name}::greet")

        assert func("world") == "hello world!"

    def test_resolve_static_method(self, resolver, module_name):
        func = resolver.resolve(f"{module_name}::Jobs.purge")

        assert func(7) == 7

    def test_resolve_class_method(self, resolver, module_name):
        func = resolver.resolve(f"{module_name}::Jobs.describe")

        assert func(True) == ("Jobs", True)

    def test_instance_method_rejected(self, resolver, module_name):
        with pytest.raises(ResolutionError, match="instance method"):
            resolver.resolve(f"{module_name}::Jobs.instance_method")

    def test_missing_entrypoint(self, resolver, module_name):
        with pytest.raises(ResolutionError, match="not found"):
            resolver.resolve(f"{module_name}::missing")

    def test_not_callable(self, resolver, module_name):
        with pytest.raises(ResolutionError, match="not callable"):
            resolver.resolve(f"{module_name}::not_callable")

    def test_missing_module(self, tmp_path):
        resolver = TargetResolver(search_paths=[tmp_path])

        with pytest.raises(ResolutionError, match="not found"):
            resolver.resolve(f"cronsweep_missing_{uuid4().hex}::run")

    def test_invalid_target_format(self, resolver):
        with pytest.raises(TargetFormatError):
            resolver.resolve("no_separator")

    def test_module_loaded_once(self, resolver, module_name):
        resolver.resolve(f"{module_name}::greet")("a")
        resolver.resolve(f"{module_name}::greet")("b")

        assert len(sys.modules[module_name].calls) == 2

    def test_nested_module_path(self, tmp_path, module_name):
        package_dir = tmp_path / "jobs"
        package_dir.mkdir()
        (package_dir / f"{module_name}.py").write_text(TARGET_SOURCE)
        resolver = TargetResolver(search_paths=[tmp_path])
        dotted = f"jobs.{module_name}"

        try:
            assert resolver.resolve(f"{dotted}::no_args")() == "ok"
        finally:
            sys.modules.pop(dotted, None)

    def test_importable_module(self):
        resolver = TargetResolver()

        func = resolver.resolve("os.path::join")

        assert func("a", "b").endswith("b")

    def test_broken_module_raises(self, tmp_path, module_name):
        (tmp_path / f"{module_name}.py").write_text("raise RuntimeError('broken import')\n")
        resolver = TargetResolver(search_paths=[tmp_path])

        with pytest.raises(ResolutionError, match="broken import"):
            resolver.resolve(f"{module_name}::anything")

        assert module_name not in sys.modules

    def test_registered_target_takes_precedence(self, resolver, module_name):
        resolver.register(f"{module_name}::greet", lambda: "registered")

        assert resolver.resolve(f"{module_name}::greet")() == "registered"

    def test_register_without_module(self):
        resolver = TargetResolver()
        resolver.register("virtual::task", lambda: "ran")

        assert resolver.resolve("virtual::task")() == "ran"

    def test_unregister(self):
        resolver = TargetResolver()
        resolver.register("virtual_unregistered::task", lambda: "ran")
        resolver.unregister("virtual_unregistered::task")

        with pytest.raises(ResolutionError):
            resolver.resolve("virtual_unregistered::task")

    def test_register_rejects_bad_target(self):
        with pytest.raises(TargetFormatError):
            TargetResolver().register("bad", lambda: None)


class TestBind:
    """Tests for TargetResolver.bind()."""

    def test_binds_by_name_in_declaration_order(self):
        def func(a, b, c=3):
            pass

        args, kwargs = TargetResolver().bind(func, {"b": 2, "a": 1})

        assert args == [1, 2, 3]
        assert kwargs == {}

    def test_missing_required_argument(self):
        def func(k):
            pass

        with pytest.raises(BindingError) as exc_info:
            TargetResolver().bind(func, {}, job_id="b")

        assert exc_info.value.parameter == "k"
        assert exc_info.value.job_id == "b"

    def test_extra_arguments_ignored(self):
        def func(a):
            pass

        args, kwargs = TargetResolver().bind(func, {"a": 1, "unused": 2})

        assert args == [1]
        assert kwargs == {}

    def test_extra_arguments_passed_to_var_keyword(self):
        def func(a, **options):
            pass

        args, kwargs = TargetResolver().bind(func, {"a": 1, "verbose": True})

        assert args == [1]
        assert kwargs == {"verbose": True}

    def test_keyword_only_parameters(self):
        def func(a, *, flag=False, name):
            pass

        args, kwargs = TargetResolver().bind(func, {"a": 1, "name": "x"})

        assert args == [1]
        assert kwargs == {"flag": False, "name": "x"}

    def test_var_positional_is_skipped(self):
        def func(a, *rest):
            pass

        args, kwargs = TargetResolver().bind(func, {"a": 1, "rest": [2, 3]})

        assert args == [1]
        assert kwargs == {}

    def test_none_value_is_passed(self):
        def func(a=5):
            pass

        args, _ = TargetResolver().bind(func, {"a": None})

        assert args == [None]

    def test_declared_parameters(self):
        def func(a, b=1, *, c):
            pass

        names = [p.name for p in TargetResolver().declared_parameters(func)]

        assert names == ["a", "b", "c"]
