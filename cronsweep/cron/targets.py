"""Resolution of job targets to callables and named-argument binding.

A target has the form ``module::entrypoint``. The entrypoint is a function
name or ``Class.method`` for a static or class method. Modules are looked up
in this order:

1. targets registered explicitly with TargetResolver.register()
2. modules already imported in this process
3. ``<search path>/<module>.py`` for each configured search path
4. a regular import via importlib
"""

import importlib
import importlib.util
import inspect
import logging
import sys
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from cronsweep.cron.exceptions import BindingError, ResolutionError
from cronsweep.cron.job import split_target

logger = logging.getLogger(__name__)


class TargetResolver:
    """Resolves job targets and binds named arguments to them.

    Example:
        resolver = TargetResolver(search_paths=[Path("/var/lib/cron")])
        func = resolver.resolve("maintenance::purge_logs")
        args, kwargs = resolver.bind(func, {"days": 30})
        func(*args, **kwargs)
    """

    def __init__(self, search_paths: Optional[Sequence[Path]] = None) -> None:
        """Initialize the resolver.

        Args:
            search_paths: Directories searched for ``<module>.py`` files
        """
        self._search_paths = [Path(p) for p in (search_paths or [])]
        self._registered: Dict[str, Callable[..., Any]] = {}
        self._file_modules: Dict[str, ModuleType] = {}

    @property
    def search_paths(self) -> List[Path]:
        return list(self._search_paths)

    def register(self, target: str, func: Callable[..., Any]) -> None:
        """Register a callable under a target name, bypassing module lookup."""
        split_target(target)
        if not callable(func):
            raise ResolutionError(f"Registered target '{target}' is not callable")
        self._registered[target] = func

    def unregister(self, target: str) -> None:
        self._registered.pop(target, None)

    def resolve(self, target: str) -> Callable[..., Any]:
        """Resolve a target to a callable.

        Raises:
            TargetFormatError: If the target is not in 'module::entrypoint' form
            ResolutionError: If the module or entry point cannot be found
        """
        module_name, entrypoint = split_target(target)

        if target in self._registered:
            return self._registered[target]

        module = self._load_module(module_name)

        owner: Any = module
        parts = entrypoint.split(".")
        for index, part in enumerate(parts):
            if not hasattr(owner, part):
                where = ".".join([module_name] + parts[:index]) or module_name
                raise ResolutionError(f"Entry point '{part}' not found in {where}")

            if inspect.isclass(owner):
                raw = inspect.getattr_static(owner, part)
                if inspect.isfunction(raw):
                    raise ResolutionError(
                        f"{owner.__name__}.{part} is an instance method; "
                        "use a function, staticmethod or classmethod"
                    )
            owner = getattr(owner, part)

        if not callable(owner):
            raise ResolutionError(f"Entry point '{entrypoint}' in {module_name} is not callable")

        return owner

    def declared_parameters(self, func: Callable[..., Any]) -> List[inspect.Parameter]:
        """Get the parameters an entry point declares, in order."""
        try:
            return list(inspect.signature(func).parameters.values())
        except (TypeError, ValueError) as e:
            raise ResolutionError(f"Cannot inspect signature of {func!r}: {e}") from e

    def bind(
        self,
        func: Callable[..., Any],
        args: Dict[str, Any],
        job_id: Optional[str] = None,
    ) -> Tuple[List[Any], Dict[str, Any]]:
        """Bind named arguments to an entry point's parameters by name.

        Each declared parameter takes the named argument of the same name,
        otherwise its default. Positional order follows the declaration, not
        the order of ``args``. Names matching no parameter are ignored unless
        the entry point accepts ``**kwargs``.

        Returns:
            Positional and keyword arguments for the call

        Raises:
            BindingError: If a required parameter has no value
        """
        positional: List[Any] = []
        keyword: Dict[str, Any] = {}
        consumed = set()

        for param in self.declared_parameters(func):
            if param.kind is inspect.Parameter.VAR_POSITIONAL:
                continue

            if param.kind is inspect.Parameter.VAR_KEYWORD:
                keyword.update({k: v for k, v in args.items() if k not in consumed})
                consumed.update(args)
                continue

            if param.name in args:
                value = args[param.name]
                consumed.add(param.name)
            elif param.default is not inspect.Parameter.empty:
                value = param.default
            else:
                name = getattr(func, "__qualname__", repr(func))
                raise BindingError(
                    f"Missing required argument '{param.name}' for {name}",
                    job_id=job_id,
                    parameter=param.name,
                )

            if param.kind is inspect.Parameter.KEYWORD_ONLY:
                keyword[param.name] = value
            else:
                positional.append(value)

        ignored = set(args) - consumed
        if ignored:
            logger.debug(f"Ignoring unknown arguments for job {job_id}: {sorted(ignored)}")

        return positional, keyword

    def _load_module(self, module_name: str) -> ModuleType:
        if module_name in self._file_modules:
            return self._file_modules[module_name]

        if module_name in sys.modules:
            return sys.modules[module_name]

        relative = Path(*module_name.split(".")).with_suffix(".py")
        for search_path in self._search_paths:
            candidate = search_path / relative
            if candidate.is_file():
                module = self._load_from_file(module_name, candidate)
                self._file_modules[module_name] = module
                return module

        try:
            return importlib.import_module(module_name)
        except ImportError as e:
            raise ResolutionError(f"Module {module_name} not found: {e}") from e

    def _load_from_file(self, module_name: str, path: Path) -> ModuleType:
        """Load a module from a Python file.

        Args:
            module_name: Name to register the module under
            path: Path to the Python file
        """
        spec = importlib.util.spec_from_file_location(module_name, path)
        if not spec or not spec.loader:
            raise ResolutionError(f"Cannot load module {module_name} from {path}")

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            sys.modules.pop(module_name, None)
            raise ResolutionError(f"Failed to load {path}: {e}") from e

        logger.debug(f"Loaded target module {module_name} from {path}")
        return module
