from __future__ import annotations

from urllib.parse import urlparse

from source_registry_core.models import SeedConfig

SEED_SOURCES: tuple[SeedConfig, ...] = (
    SeedConfig(
        name="OpenStax",
        type="openstax",
        base_url="https://openstax.org",
        seed_url="https://openstax.org/subjects",
        description="Free, peer-reviewed, openly licensed textbooks",
        rate_limit_per_minute=30,
    ),
    SeedConfig(
        name="MIT OpenCourseWare",
        type="mit_ocw",
        base_url="https://ocw.mit.edu",
        seed_url="https://ocw.mit.edu/search",
        description="Free and open educational resources from MIT courses",
        rate_limit_per_minute=30,
    ),
    SeedConfig(
        name="Python Documentation",
        type="sphinx_docs",
        base_url="https://docs.python.org",
        seed_url="https://docs.python.org/3/",
        description="Official Python language and standard library documentation",
        rate_limit_per_minute=30,
        config={"versions": ["3.13", "3.12", "3.11", "3.10"], "defaultLanguage": "en"},
    ),
)

ALLOWED_DOMAINS: tuple[str, ...] = (
    "openstax.org",
    "cnx.org",
    "ocw.mit.edu",
    "mit.edu",
    "docs.python.org",
    "python.org",
)


def get_seed_by_name(name: str, seeds: tuple[SeedConfig, ...] = SEED_SOURCES) -> SeedConfig | None:
    wanted = name.strip().lower()
    return next((s for s in seeds if s.name.lower() == wanted), None)


def get_seeds_by_type(source_type: str, seeds: tuple[SeedConfig, ...] = SEED_SOURCES) -> list[SeedConfig]:
    return [s for s in seeds if s.type == source_type]


def is_domain_allowed(host: str, allowed: tuple[str, ...] = ALLOWED_DOMAINS) -> bool:
    host = host.lower().split(":", 1)[0]
    if host.startswith("www."):
        host = host[4:]
    return any(host == d or host.endswith(f".{d}") for d in allowed)


def is_url_allowed(url: str, allowed: tuple[str, ...] = ALLOWED_DOMAINS) -> bool:
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"}:
        return False
    return is_domain_allowed(parsed.hostname or "", allowed)


def allowed_domains_for(seed: SeedConfig) -> tuple[str, ...]:
    """Built-in allowlist plus the seed's own hosts, so custom seeds can scan themselves."""
    extra = {urlparse(u).hostname or "" for u in (seed.base_url, seed.seed_url)}
    extra.discard("")
    return ALLOWED_DOMAINS + tuple(sorted(h.removeprefix("www.") for h in extra))
