"""
Route Pricing for x402 Paywalling.

Maps an inbound (method, path) pair to a PaymentRequirement. Routes are
compiled once into an ordered table; the most specific pattern wins, so an
exact path always beats a wildcard pattern covering it.
"""

import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from x402_market.payment.types import (
    DEFAULT_ASSET,
    DEFAULT_MAX_TIMEOUT_SECONDS,
    PaymentRequirement,
)

logger = logging.getLogger(__name__)

_PRICE_PATTERN = re.compile(r"^\$?(\d+(?:\.\d+)?)$")
_PARAM_PATTERN = re.compile(r"^(?:\{(\w+)\}|:(\w+))$")


def parse_price(price: str) -> str:
    """Turn a price such as ``"$0.05"`` into the decimal amount ``"0.05"``.

    Raises:
        ValueError: If the price is not a plain non-negative decimal
    """
    match = _PRICE_PATTERN.match(price.strip())
    if not match:
        raise ValueError(f"Invalid price: {price!r}")
    return match.group(1)


def normalize_path(path: str) -> str:
    """Collapse duplicate slashes and drop a trailing slash."""
    segments = [s for s in path.split("/") if s]
    return "/" + "/".join(segments)


@dataclass(frozen=True)
class RouteConfig:
    """Price configuration for one route."""

    method: str
    path: str
    price: str
    network: str
    description: Optional[str] = None

    @property
    def amount(self) -> str:
        return parse_price(self.price)


@dataclass(frozen=True)
class PriceOverride:
    """Per-resource price, e.g. an agent's custom pricing."""

    price: str
    network: Optional[str] = None


@dataclass(frozen=True)
class RouteMatch:
    """A route that matched a concrete request."""

    route: RouteConfig
    method: str
    path: str
    params: Dict[str, str] = field(default_factory=dict)

    @property
    def resource(self) -> str:
        return f"{self.method} {self.path}"


@dataclass(frozen=True)
class CompiledRoute:
    """A route with its path split into literal and wildcard segments."""

    config: RouteConfig
    method: str
    segments: Tuple[Optional[str], ...]  # None marks a wildcard segment
    param_names: Tuple[Optional[str], ...]
    order: int

    @classmethod
    def compile(cls, config: RouteConfig, order: int) -> "CompiledRoute":
        # Validate the price up front so a bad table fails at load time
        parse_price(config.price)
        segments: List[Optional[str]] = []
        names: List[Optional[str]] = []
        for part in normalize_path(config.path).split("/")[1:]:
            param = _PARAM_PATTERN.match(part)
            if param:
                segments.append(None)
                names.append(param.group(1) or param.group(2))
            elif part == "*":
                segments.append(None)
                names.append(None)
            else:
                segments.append(part)
                names.append(None)
        return cls(
            config=config,
            method=config.method.upper(),
            segments=tuple(segments),
            param_names=tuple(names),
            order=order,
        )

    @property
    def specificity(self) -> Tuple[int, int, int]:
        literals = sum(1 for s in self.segments if s is not None)
        wildcards = len(self.segments) - literals
        return (-literals, wildcards, self.order)

    def match(self, method: str, parts: List[str]) -> Optional[Dict[str, str]]:
        if method != self.method or len(parts) != len(self.segments):
            return None
        params: Dict[str, str] = {}
        for part, segment, name in zip(parts, self.segments, self.param_names):
            if segment is None:
                if name:
                    params[name] = part
            elif segment != part:
                return None
        return params


def compile_routes(routes: Iterable[RouteConfig]) -> Tuple[CompiledRoute, ...]:
    compiled = [CompiledRoute.compile(route, i) for i, route in enumerate(routes)]
    return tuple(sorted(compiled, key=lambda r: r.specificity))


def routes_from_table(
    table: Mapping[str, Mapping[str, Any]],
    default_network: str,
) -> List[RouteConfig]:
    """Build route configs from ``{"METHOD /path": {"price", "network"}}``.

    Raises:
        ValueError: If a key is not of the form ``"METHOD /path"``
    """
    routes = []
    for key, entry in table.items():
        method, _, path = key.strip().partition(" ")
        if not method or not path.strip():
            raise ValueError(f"Invalid route key: {key!r}")
        routes.append(
            RouteConfig(
                method=method.upper(),
                path=path.strip(),
                price=str(entry["price"]),
                network=entry.get("network") or default_network,
                description=entry.get("description"),
            )
        )
    return routes


OverrideProvider = Callable[[RouteMatch], Optional[PriceOverride]]


class PricingResolver:
    """Resolves payment requirements against a snapshot of the price table."""

    def __init__(
        self,
        routes: Iterable[RouteConfig],
        pay_to: str,
        asset: str = DEFAULT_ASSET,
        max_timeout_seconds: int = DEFAULT_MAX_TIMEOUT_SECONDS,
    ):
        self.pay_to = pay_to
        self.asset = asset
        self.max_timeout_seconds = max_timeout_seconds
        self._lock = threading.Lock()
        self._table = compile_routes(routes)

    def replace_routes(self, routes: Iterable[RouteConfig]) -> None:
        """Swap in a new price table; in-flight resolutions keep the old one."""
        table = compile_routes(routes)
        with self._lock:
            self._table = table
        logger.info("Price table replaced: %d routes", len(table))

    def routes(self) -> List[RouteConfig]:
        return [compiled.config for compiled in self._table]

    def match(self, method: str, path: str) -> Optional[RouteMatch]:
        """Find the most specific priced route for a request."""
        table = self._table
        normalized = normalize_path(path)
        parts = normalized.split("/")[1:]
        method = method.upper()
        for compiled in table:
            params = compiled.match(method, parts)
            if params is not None:
                return RouteMatch(
                    route=compiled.config,
                    method=method,
                    path=normalized,
                    params=params,
                )
        return None

    def requirement_for(
        self,
        match: RouteMatch,
        override: Optional[PriceOverride] = None,
    ) -> PaymentRequirement:
        """Build the requirement for a matched route."""
        amount = match.route.amount
        network = match.route.network
        if override is not None:
            amount = parse_price(override.price)
            network = override.network or network
        return PaymentRequirement(
            network=network,
            amount=amount,
            asset=self.asset,
            pay_to=self.pay_to,
            resource=match.resource,
            description=match.route.description,
            max_timeout_seconds=self.max_timeout_seconds,
        )

    def resolve(
        self,
        method: str,
        path: str,
        override: Optional[PriceOverride] = None,
    ) -> Optional[PaymentRequirement]:
        """Return the requirement for a request, or None if it is free."""
        match = self.match(method, path)
        if match is None:
            return None
        return self.requirement_for(match, override)
