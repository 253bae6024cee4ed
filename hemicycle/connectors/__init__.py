"""Source connectors, one per upstream source key."""

from typing import Dict, Type

from hemicycle.errors import UnknownSourceError

from .an_amendements import AnAmendementsConnector
from .an_deputes import AnDeputesConnector
from .an_scrutins import AnScrutinsConnector
from .base import Connector, SyncOptions
from .dila_interventions import DilaInterventionsConnector
from .hatvp_lobbyistes import HatvpLobbyistesConnector
from .senat_amendements import SenatAmendementsConnector
from .senat_interventions import SenatInterventionsConnector
from .senat_scrutins import SenatScrutinsConnector
from .senat_senateurs import SenatSenateursConnector

CONNECTORS: Dict[str, Type[Connector]] = {
    cls.source_key: cls
    for cls in (
        AnDeputesConnector,
        SenatSenateursConnector,
        AnScrutinsConnector,
        SenatScrutinsConnector,
        AnAmendementsConnector,
        SenatAmendementsConnector,
        SenatInterventionsConnector,
        DilaInterventionsConnector,
        HatvpLobbyistesConnector,
    )
}


def connector_class(source_key: str) -> Type[Connector]:
    try:
        return CONNECTORS[source_key]
    except KeyError:
        raise UnknownSourceError(f"No connector for source: {source_key}") from None


__all__ = [
    "CONNECTORS",
    "Connector",
    "SyncOptions",
    "connector_class",
]
