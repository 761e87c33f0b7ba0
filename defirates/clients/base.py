from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List

from defirates.http import HttpClient
from defirates.models import Protocol, YieldRate

NativeRecord = Dict[str, Any]


class SourceUnavailable(RuntimeError):
    """The external API returned nothing usable this cycle."""


@dataclass
class Source:
    """An external yield listing: where to fetch it and how to map its records.

    ``adapt`` must always populate the natural key (``pool_name`` and
    ``chain``); ``protocol_id`` is supplied by the caller.
    """

    name: str
    protocol: Protocol
    fetch: Callable[[HttpClient], Awaitable[List[NativeRecord]]]
    adapt: Callable[[NativeRecord, int], YieldRate]
