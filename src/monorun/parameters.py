# parameters.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence

from .errors import ConfigurationError


# ---------------------------------------------------------------------
# Custom parameters
# ---------------------------------------------------------------------
# A custom parameter is a command-line option declared in the monorepo
# config. When the operator passes it, its rendered tokens are appended to
# the command of every phase the parameter is associated with:
#
#   monorun run build --production --locale en-us
#     _phase:build  ->  "tsc --production --locale en-us"
#
# ---------------------------------------------------------------------

FLAG = "flag"
STRING = "string"
CHOICE = "choice"
INTEGER = "integer"
STRING_LIST = "stringList"

KINDS = (FLAG, STRING, CHOICE, INTEGER, STRING_LIST)


@dataclass
class CustomParameter:
    """A command-line parameter forwarded into the commands of its phases."""
    long_name: str
    kind: str = FLAG
    description: str = ""
    short_name: Optional[str] = None
    phases: FrozenSet[str] = frozenset()
    alternatives: Sequence[str] = ()  # choice only
    required: bool = False
    default: Optional[str] = None

    # value supplied on the command line (None = not passed)
    value: object = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.kind not in KINDS:
            raise ConfigurationError(
                kind="InvalidConfig",
                message=f"Unknown parameter kind {self.kind!r} for {self.long_name}",
                details={"known_kinds": list(KINDS)},
            )
        if not self.long_name.startswith("--"):
            raise ConfigurationError(
                kind="InvalidConfig",
                message=f"Parameter long name must start with '--': {self.long_name!r}",
            )
        self.phases = frozenset(self.phases)
        if self.kind == STRING_LIST and self.value is None:
            self.value = []

    @property
    def names(self) -> List[str]:
        return [n for n in (self.long_name, self.short_name) if n]

    def append_to_arg_list(self, args: List[str]) -> None:
        """Append the rendered tokens for this parameter (possibly none)."""
        value = self.value
        if value is None and self.default is not None and self.kind != FLAG:
            value = self.default

        if self.kind == FLAG:
            if value:
                args.append(self.long_name)
            return

        if self.kind == STRING_LIST:
            for item in value or []:
                args.extend([self.long_name, str(item)])
            return

        if value is not None:
            args.extend([self.long_name, str(value)])

    def set_value(self, raw: Optional[str]) -> None:
        if self.kind == FLAG:
            self.value = True
            return

        if raw is None:
            raise ConfigurationError(
                kind="InvalidParameter",
                message=f"Parameter {self.long_name} expects a value",
            )

        if self.kind == CHOICE and raw not in self.alternatives:
            raise ConfigurationError(
                kind="InvalidParameter",
                message=f"Invalid value {raw!r} for {self.long_name}",
                details={"alternatives": list(self.alternatives)},
            )
        if self.kind == INTEGER:
            try:
                self.value = int(raw)
            except ValueError:
                raise ConfigurationError(
                    kind="InvalidParameter",
                    message=f"Parameter {self.long_name} expects an integer, got {raw!r}",
                ) from None
            return
        if self.kind == STRING_LIST:
            self.value = list(self.value or []) + [raw]
            return

        self.value = raw


def parse_custom_args(
    tokens: Sequence[str],
    parameters: Iterable[CustomParameter],
) -> Dict[str, CustomParameter]:
    """
    Apply leftover command-line tokens to the declared parameters.

    Accepts `--name`, `--name value`, `--name=value` and short names.
    Returns the parameters keyed by long name.
    """
    by_long: Dict[str, CustomParameter] = {}
    lookup: Dict[str, CustomParameter] = {}
    for p in parameters:
        by_long[p.long_name] = p
        for n in p.names:
            lookup[n] = p

    i = 0
    tokens = list(tokens)
    while i < len(tokens):
        token = tokens[i]
        name, eq, inline = token.partition("=")
        param = lookup.get(name)
        if param is None:
            raise ConfigurationError(
                kind="UnknownParameter",
                message=f"Unrecognized parameter: {token}",
                details={"known_parameters": sorted(lookup)},
            )

        if param.kind == FLAG:
            if eq:
                raise ConfigurationError(
                    kind="InvalidParameter",
                    message=f"Flag {param.long_name} does not take a value",
                )
            param.set_value(None)
            i += 1
            continue

        if eq:
            param.set_value(inline)
            i += 1
        elif i + 1 < len(tokens):
            param.set_value(tokens[i + 1])
            i += 2
        else:
            param.set_value(None)  # raises

    missing = [p.long_name for p in by_long.values() if p.required and p.value in (None, [])]
    if missing:
        raise ConfigurationError(
            kind="InvalidParameter",
            message=f"Missing required parameter(s): {', '.join(sorted(missing))}",
        )

    return by_long
