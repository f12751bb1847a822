"""Static source configuration: the provider's allowed regions and their URLs."""

from collections.abc import Iterable

from devops_insights.config.settings import Settings
from devops_insights.sources.schemas import Source


class InvalidRegionError(ValueError):
    """Raised when a region is not in the configured allowed set."""

    def __init__(self, region: str | None, allowed: Iterable[str]):
        self.region = region
        self.allowed = list(allowed)
        super().__init__(f"Invalid source {region!r}. Must be one of: {self.allowed}")


class SourceRegistry:
    """
    Immutable set of sources for one provider.

    Regions are matched case-insensitively; ``normalize()`` is the single
    validation point used by the gateway and the REST routes.
    """

    def __init__(self, sources: list[Source]):
        self._sources = {s.region: s for s in sources}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        interval_seconds: float | None = None,
    ) -> "SourceRegistry":
        """Build one source per allowed region from the URL template."""
        provider = settings.provider
        interval = interval_seconds or settings.poll_interval_seconds
        sources = [
            Source(
                provider=provider,
                region=region,
                url=settings.poll_url_template.format(provider=provider, region=region),
                interval_seconds=interval,
            )
            for region in settings.sources_list
        ]
        return cls(sources)

    @property
    def sources(self) -> list[Source]:
        return list(self._sources.values())

    @property
    def regions(self) -> list[str]:
        return list(self._sources)

    def normalize(self, region: str | None) -> str:
        """
        Validate and canonicalize a region code.

        Raises:
            InvalidRegionError: If the region is empty or not allowed
        """
        candidate = (region or "").strip().lower()
        if candidate not in self._sources:
            raise InvalidRegionError(region, self.regions)
        return candidate

    def get(self, region: str) -> Source:
        return self._sources[self.normalize(region)]

    def __contains__(self, region: object) -> bool:
        return isinstance(region, str) and region.strip().lower() in self._sources

    def __len__(self) -> int:
        return len(self._sources)
