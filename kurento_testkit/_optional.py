"""Loading of adapters whose third-party stack ships as a pip extra."""

from __future__ import annotations

from importlib import import_module
from typing import Iterable, List, Optional, Sequence

from kurento_testkit.errors import HarnessError

PACKAGE = "kurento_testkit"


class OptionalDependencyError(HarnessError, ImportError):
    """An adapter was requested but the extra providing its libraries is not installed."""

    def __init__(self, feature: str, extras: Sequence[str], missing: Optional[str] = None) -> None:
        self.feature = feature
        self.extras = list(dict.fromkeys(extras))
        self.missing = missing
        hint = " or ".join(f"`pip install {PACKAGE}[{extra}]`" for extra in self.extras)
        detail = f" (missing module: {missing})" if missing else ""
        super().__init__(f"{feature} needs optional libraries{detail}. Install them with {hint}.")


def _as_list(extras: str | Iterable[str]) -> List[str]:
    return [extras] if isinstance(extras, str) else list(extras)


def load_adapter(module: str, attribute: str, *, feature: str, extras: str | Iterable[str]):
    """Import ``module.attribute``; a failed third-party import becomes :class:`OptionalDependencyError`."""
    try:
        loaded = import_module(module)
    except OptionalDependencyError:
        raise
    except ImportError as exc:
        raise OptionalDependencyError(feature, _as_list(extras), missing=exc.name) from exc
    try:
        return getattr(loaded, attribute)
    except AttributeError as exc:
        raise AttributeError(f"Adapter module '{module}' has no attribute '{attribute}'") from exc


def require_extra(feature: str, *, extras: str | Iterable[str], missing: Optional[str] = None) -> None:
    raise OptionalDependencyError(feature, _as_list(extras), missing=missing)
