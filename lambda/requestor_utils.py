import random
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, TypeVar

from requestor_errors import WaitTimeoutError

T = TypeVar("T")


def string_to_boolean(value) -> bool:
    """Custom resource properties are always strings, only "true" is truthy."""
    if isinstance(value, bool):
        return value
    return str(value).lower() == "true"


def boolean_to_string(value: bool) -> str:
    return "true" if value else "false"


def clean_domain_name(domain_name: str) -> str:
    """
    Strip the trailing root dot from a fully qualified domain name.

    Args:
        domain_name: Domain name, e.g. "example.com." or "example.com"

    Returns:
        str: Domain name without trailing dot
    """
    if domain_name.endswith("."):
        return domain_name[:-1]
    return domain_name


def clean_hosted_zone_id(hosted_zone_id: str) -> str:
    prefix = "/hostedzone/"
    if hosted_zone_id.startswith(prefix):
        return hosted_zone_id[len(prefix) :]
    return hosted_zone_id


def clean_change_id(change_id: str) -> str:
    return change_id.replace("/change/", "", 1)


def contains_same(first: Iterable, second: Iterable) -> bool:
    """Compare two collections ignoring order and duplicates."""
    return set(first) == set(second)


def _significance(zone_name: str) -> int:
    return len(clean_domain_name(zone_name).split("."))


def order_by_significance(zone_names: list[str]) -> list[str]:
    """
    Order zone names from the most specific to the least specific.

    Significance is the number of dot separated labels. Zones with the same
    significance keep their input order.

    Args:
        zone_names: Hosted zone names

    Returns:
        list[str]: New list ordered by descending label count
    """
    return sorted(zone_names, key=_significance, reverse=True)


def _name_in_zone(name: str, zone_name: str) -> bool:
    name = clean_domain_name(name).lower()
    zone_name = clean_domain_name(zone_name).lower()
    return name == zone_name or name.endswith(f".{zone_name}")


def match_names_to_zones(
    zone_names: list[str],
    items: list[T],
    name: Callable[[T], str] = lambda item: item,
) -> dict[str, list[T]]:
    """
    Assign every item to the most specific hosted zone that contains it.

    Zones are visited from the most significant to the least significant and
    each zone only sees the items no earlier zone has claimed, so a record for
    "a.b.example.com" lands in "b.example.com" even when "example.com" is
    configured too. Items that fall under no zone are left out of the result.

    Args:
        zone_names: Hosted zone names
        items: Domain names or record sets to distribute
        name: Returns the DNS name of an item

    Returns:
        dict: Zone name to the items it is authoritative for, every zone present
    """
    result: dict[str, list[T]] = {}
    remaining = list(items)
    for zone_name in order_by_significance(zone_names):
        matching = [item for item in remaining if _name_in_zone(name(item), zone_name)]
        remaining = [item for item in remaining if not _name_in_zone(name(item), zone_name)]
        result[zone_name] = matching
    return result


def unmatched_names(zone_names: list[str], names: list[str]) -> list[str]:
    """Return names that no hosted zone is authoritative for."""
    return [
        name
        for name in names
        if not any(_name_in_zone(name, zone_name) for zone_name in zone_names)
    ]


@dataclass(frozen=True)
class Backoff:
    """Exponential backoff with multiplicative jitter for polling loops."""

    base_seconds: float = 0.15
    jitter_seconds: float = 0.05

    def delay(self, attempt: int) -> float:
        factor = 2**attempt
        return random.random() * self.jitter_seconds * factor + self.base_seconds * factor


def try_for(
    max_seconds: float,
    timeout_message: str,
    probe: Callable[[], Optional[T]],
    backoff: Backoff = Backoff(),
    clock: Optional[Callable[[], float]] = None,
) -> T:
    """
    Call probe until it returns something other than None.

    Exceptions raised by the probe are not retried.

    Args:
        max_seconds: Deadline measured from the first attempt
        timeout_message: Message of the WaitTimeoutError raised on deadline
        probe: Returns the awaited value or None when not ready yet
        backoff: Delay policy between attempts
        clock: Monotonic clock in seconds, time.monotonic by default

    Returns:
        The first non-None probe result

    Raises:
        WaitTimeoutError: If the deadline passes before the probe succeeds
    """
    clock = clock or time.monotonic
    start = clock()
    attempt = 0
    while True:
        if clock() - start > max_seconds:
            raise WaitTimeoutError(timeout_message)
        result = probe()
        if result is not None:
            return result
        time.sleep(backoff.delay(attempt))
        attempt += 1
