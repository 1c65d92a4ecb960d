"""
Builds the undirected station connection graph for the whole network.

Graph structure (networkx.Graph):
  Nodes: station EVA numbers, attributed with the public station dict
  Edges: one per unordered station pair, attributed with
           {station1, station2, average_planned_time, average_actual_time,
            used_stops, distance}

Every station's adjacency walk discovers the same physical edge a second
time from the other end. The second discovery is folded into the first by
halving the sum of the stored mean and the new mean, for planned and actual
times alike. This is not a sample-weighted mean; repeated merges lean
towards the most recent value.

The build runs once after startup (and optionally on an interval) and
publishes its result into the NetworkSnapshot. Progress is reported there
as "Processing station i/N".
"""

import logging
from typing import Any

import networkx as nx
from sqlalchemy.orm import Session

from errors import InconsistentStateError, NotReadyError
from graph.adjacency import Window, extract_connections, observation_window
from graph.snapshot import NetworkSnapshot
from stations.directory import stations_by_eva

logger = logging.getLogger(__name__)

Connection = dict[str, Any]


def build_connection_graph(
    session: Session,
    stations: list[dict[str, Any]],
    snapshot: NetworkSnapshot,
    window: Window | None = None,
) -> nx.Graph:
    """
    Run the adjacency walk for every station, merge the edges, and publish
    the resulting connection list into `snapshot`.

    Raises:
        InconsistentStateError: An existing edge matched neither orientation.
    """
    window = window or observation_window()
    lookup = stations_by_eva(stations)
    G = nx.Graph()
    for station in stations:
        G.add_node(station["eva"], station=station)

    total = len(stations)
    logger.info("Connection build started: %d stations, window %s to %s.", total, *window)
    for index, station in enumerate(stations, start=1):
        snapshot.report_progress(index, total)
        result = extract_connections(session, station, lookup, window)
        for edge in result["connecting_stations"]:
            merge_edge(G, station, edge)
        if index % 100 == 0:
            logger.info("Connection build: %d/%d stations, %d edges.", index, total, G.number_of_edges())

    snapshot.publish_connections(graph_connections(G))
    logger.info(
        "Connection graph built: %d nodes, %d edges.", G.number_of_nodes(), G.number_of_edges()
    )
    return G


def merge_edge(G: nx.Graph, station: dict[str, Any], edge: dict[str, Any]) -> None:
    """
    Insert the edge station -> edge["station"], or fold it into the existing
    undirected edge between the two.
    """
    a = station["eva"]
    b = edge["station"]["eva"]

    if not G.has_edge(a, b):
        G.add_edge(
            a, b,
            station1=station,
            station2=edge["station"],
            average_planned_time=edge["average_planned_time"],
            average_actual_time=edge["average_actual_time"],
            used_stops=edge["used_stops"],
            distance=edge["distance"],
        )
        return

    data = G.edges[a, b]
    recorded = (data["station1"]["eva"], data["station2"]["eva"])
    if recorded not in ((a, b), (b, a)):
        raise InconsistentStateError(
            f"Edge {a}-{b} is recorded between {recorded[0]} and {recorded[1]}."
        )

    data["average_planned_time"] = (data["average_planned_time"] + edge["average_planned_time"]) / 2
    data["average_actual_time"] = (data["average_actual_time"] + edge["average_actual_time"]) / 2
    data["used_stops"] += edge["used_stops"]


def graph_connections(G: nx.Graph) -> list[Connection]:
    return [
        {
            "station1": data["station1"],
            "station2": data["station2"],
            "average_planned_time": data["average_planned_time"],
            "average_actual_time": data["average_actual_time"],
            "used_stops": data["used_stops"],
            "distance": data["distance"],
        }
        for _, _, data in G.edges(data=True)
    ]


def get_all_connections(snapshot: NetworkSnapshot) -> dict[str, Any]:
    """
    The published connection list.

    Raises:
        NotReadyError: No connection snapshot yet; carries the build status.
    """
    connections = snapshot.connections
    if connections is None:
        raise NotReadyError(snapshot.status)
    return {"count": len(connections), "connections": connections}
