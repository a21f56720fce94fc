from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

COPIES = "copies"

# Scalars that can travel through a callback button
SCALAR_TYPES = (str, int, float)


@dataclass(frozen=True)
class OptionSpec:
    name: str
    values_key: str
    default_key: str
    numeric: bool = False
    # IPP value tag used when the option is sent as a job attribute
    ipp_tag: Optional[str] = None


def _spec(name: str, ipp_tag: Optional[str] = None, values_key: Optional[str] = None, numeric: bool = False) -> OptionSpec:
    return OptionSpec(
        name=name,
        values_key=values_key or f"{name}-supported",
        default_key=f"{name}-default",
        numeric=numeric,
        ipp_tag=ipp_tag,
    )


KNOWN_OPTIONS: Dict[str, OptionSpec] = {
    s.name: s
    for s in (
        _spec(COPIES, "integer", numeric=True),
        # loaded paper rather than everything the printer could take
        _spec("media", "keyword", values_key="media-ready"),
        _spec("sides", "keyword"),
        _spec("print-color-mode", "keyword"),
        _spec("print-quality", "enum"),
        _spec("orientation-requested", "enum"),
        _spec("output-bin", "keyword"),
        _spec("print-scaling", "keyword"),
        _spec("finishings", "enum"),
        _spec("number-up", "integer"),
        _spec("job-priority", "integer"),
        _spec("job-hold-until", "keyword"),
    )
}


def option_spec(name: str) -> OptionSpec:
    spec = KNOWN_OPTIONS.get(name)
    if spec is not None:
        return spec
    return _spec(name)


def job_attribute_tags(option_names: Iterable[str]) -> Dict[str, str]:
    specs = [option_spec(n) for n in option_names]
    return {s.name: s.ipp_tag for s in specs if s.ipp_tag}


def status_keys(option_names: Iterable[str]) -> List[str]:
    """Printer attribute names needed to build menus for the given options."""
    specs = [option_spec(n) for n in option_names]
    keys = [s.values_key for s in specs if not s.numeric]
    keys += [s.default_key for s in specs]
    return keys


def _as_list(raw: Any) -> List[Any]:
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        return [v for v in raw if isinstance(v, SCALAR_TYPES) and not isinstance(v, bool)]
    if isinstance(raw, SCALAR_TYPES) and not isinstance(raw, bool):
        return [raw]
    return []


class AvailableAttributes:
    """Legal values and printer defaults per option, filled by one load."""

    def __init__(self, option_names: Iterable[str]) -> None:
        self._specs: Dict[str, OptionSpec] = {n: option_spec(n) for n in option_names}
        self._values: Dict[str, List[Any]] = {}
        self._defaults: Dict[str, Any] = {}
        self.loaded = False

    def spec(self, name: str) -> Optional[OptionSpec]:
        return self._specs.get(name)

    def update(self, status: Dict[str, Any]) -> None:
        values: Dict[str, List[Any]] = {}
        defaults: Dict[str, Any] = {}
        for name, spec in self._specs.items():
            if not spec.numeric:
                values[name] = _as_list(status.get(spec.values_key))
            default = status.get(spec.default_key)
            if isinstance(default, SCALAR_TYPES) and not isinstance(default, bool):
                defaults[name] = default
        # swap whole dicts so readers never see a half-filled cache
        self._values = values
        self._defaults = defaults
        self.loaded = True

    def values(self, name: str) -> List[Any]:
        return list(self._values.get(name, []))

    def default(self, name: str) -> Optional[Any]:
        return self._defaults.get(name)

    def defaults(self) -> Dict[str, Any]:
        return dict(self._defaults)
