from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Capabilities:
    # Client reports its process id, so counter resets on restart can be detected
    tracks_pid: bool = False


@dataclass(frozen=True)
class ClientTypeDescriptor:
    client_type: str
    network_category: str
    display_name: str
    legacy_prefix: str  # metadata key prefix used before per-instance ids
    capabilities: Capabilities = field(default_factory=Capabilities)


class ClientCatalog:
    """Static description of the client types the metrics engine knows about.

    Built once at startup and handed to every component that needs to group
    by client type or network category.
    """

    def __init__(self, descriptors: list[ClientTypeDescriptor]):
        self._by_type: dict[str, ClientTypeDescriptor] = {}
        for d in descriptors:
            if d.client_type in self._by_type:
                raise ValueError(f"Duplicate client type: {d.client_type}")
            self._by_type[d.client_type] = d

    def __contains__(self, client_type: object) -> bool:
        return client_type in self._by_type

    def __iter__(self):
        return iter(self._by_type.values())

    def __len__(self) -> int:
        return len(self._by_type)

    def get(self, client_type: str) -> ClientTypeDescriptor:
        try:
            return self._by_type[client_type]
        except KeyError:
            valid = ", ".join(self._by_type)
            raise KeyError(f'Unknown client type: "{client_type}". Valid types: {valid}') from None

    def find(self, client_type: str) -> ClientTypeDescriptor | None:
        return self._by_type.get(client_type)

    def tracks_pid(self, client_type: str) -> bool:
        d = self._by_type.get(client_type)
        return d is not None and d.capabilities.tracks_pid

    def network_category(self, client_type: str) -> str:
        return self.get(client_type).network_category

    @property
    def client_types(self) -> list[str]:
        return list(self._by_type)

    @property
    def network_categories(self) -> list[str]:
        seen: list[str] = []
        for d in self._by_type.values():
            if d.network_category not in seen:
                seen.append(d.network_category)
        return seen

    def types_in_category(self, network_category: str) -> list[str]:
        return [
            d.client_type
            for d in self._by_type.values()
            if d.network_category == network_category
        ]


DEFAULT_CATALOG = ClientCatalog(
    [
        ClientTypeDescriptor(
            client_type="amule",
            network_category="ed2k",
            display_name="aMule",
            legacy_prefix="am_",
        ),
        ClientTypeDescriptor(
            client_type="rtorrent",
            network_category="bittorrent",
            display_name="rTorrent",
            legacy_prefix="rt_",
            capabilities=Capabilities(tracks_pid=True),
        ),
        ClientTypeDescriptor(
            client_type="qbittorrent",
            network_category="bittorrent",
            display_name="qBittorrent",
            legacy_prefix="qb_",
        ),
        ClientTypeDescriptor(
            client_type="deluge",
            network_category="bittorrent",
            display_name="Deluge",
            legacy_prefix="de_",
        ),
        ClientTypeDescriptor(
            client_type="transmission",
            network_category="bittorrent",
            display_name="Transmission",
            legacy_prefix="tr_",
        ),
    ]
)


def get_catalog() -> ClientCatalog:
    return DEFAULT_CATALOG
