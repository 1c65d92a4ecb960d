"""
Tests for the adjacency walk (graph.adjacency), the network-wide merge
(graph.builder) and the snapshot they publish into (graph.snapshot).
"""

import pytest
from datetime import date, datetime
from unittest.mock import patch

import networkx as nx

from errors import InconsistentStateError, NotFoundError, NotReadyError
from graph.adjacency import extract_connections, get_station_connections, observation_window
from graph.builder import build_connection_graph, get_all_connections, merge_edge
from graph.snapshot import STATUS_DONE, STATUS_NOT_STARTED, NetworkSnapshot
from stations.directory import get_all_stations, get_station_by_ds100, stations_by_eva

FF, FD, MH = 8000105, 8000068, 8000244
WINDOW = (datetime(2024, 3, 1), datetime(2024, 4, 1))


def t(hour, minute, day=4):
    return datetime(2024, 3, day, hour, minute)


@pytest.fixture
def network(seed):
    seed.station(FF, "FF", "Frankfurt(Main)Hbf", 50.1071, 8.6636)
    seed.station(FD, "FD", "Darmstadt Hbf", 49.8725, 8.6295)
    seed.station(MH, "RM", "Mannheim Hbf", 49.4794, 8.4699)
    return seed


def _walk(db, ds100, window=WINDOW):
    station = get_station_by_ds100(db, ds100)
    return extract_connections(db, station, stations_by_eva(get_all_stations(db)), window)


def _neighbours(result):
    return {c["station"]["ds100"]: c for c in result["connecting_stations"]}


# ---------------------------------------------------------------------------
# Adjacency walk
# ---------------------------------------------------------------------------

class TestExtractConnections:
    def test_mean_of_two_observations(self, db, network):
        s = network.stop
        network.journey("RE", 1, datetime(2024, 3, 4), [s(FF, dep=t(10, 0)), s(FD, arr=t(10, 5))])
        network.journey("RE", 2, datetime(2024, 3, 4), [s(FF, dep=t(11, 0)), s(FD, arr=t(11, 7))])

        result = _walk(db, "FF")
        fd = _neighbours(result)["FD"]
        assert fd["average_planned_time"] == 6
        assert fd["used_stops"] == 2
        assert result["used_stops"] == 2

    def test_mean_rounds_half_up(self, db, network):
        s = network.stop
        network.journey("RE", 1, datetime(2024, 3, 4), [s(FF, dep=t(10, 0)), s(FD, arr=t(10, 5))])
        network.journey("RE", 2, datetime(2024, 3, 4), [s(FF, dep=t(11, 0)), s(FD, arr=t(11, 6))])
        assert _neighbours(_walk(db, "FF"))["FD"]["average_planned_time"] == 6

    def test_actual_falls_back_per_side(self, db, network):
        s = network.stop
        # Only the arrival has an actual time: 10:00 -> 10:09
        network.journey("RE", 1, datetime(2024, 3, 4), [
            s(FF, dep=t(10, 0)),
            s(FD, arr=t(10, 5), actual={"arr": t(10, 9)}),
        ])
        # Only the departure has an actual time: 11:02 -> 11:05
        network.journey("RE", 2, datetime(2024, 3, 4), [
            s(FF, dep=t(11, 0), actual={"dep": t(11, 2)}),
            s(FD, arr=t(11, 5)),
        ])
        fd = _neighbours(_walk(db, "FF"))["FD"]
        assert fd["average_planned_time"] == 5
        assert fd["average_actual_time"] == 6  # (9 + 3) / 2

    def test_previous_and_next_neighbours(self, db, network):
        s = network.stop
        network.journey("ICE", 100, datetime(2024, 3, 4), [
            s(FF, dep=t(10, 0)),
            s(FD, arr=t(10, 20), dep=t(10, 22)),
            s(MH, arr=t(10, 50)),
        ])
        neighbours = _neighbours(_walk(db, "FD"))
        assert neighbours["FF"]["average_planned_time"] == 20
        assert neighbours["RM"]["average_planned_time"] == 28
        assert neighbours["FF"]["used_stops"] == 1

    def test_same_neighbour_as_previous_and_next_shares_bucket(self, db, network):
        s = network.stop
        network.journey("RE", 1, datetime(2024, 3, 4), [s(FF, dep=t(10, 0)), s(FD, arr=t(10, 10))])
        network.journey("RE", 2, datetime(2024, 3, 4), [s(FD, dep=t(12, 0)), s(FF, arr=t(12, 14))])
        result = _walk(db, "FD")
        ff = _neighbours(result)["FF"]
        assert ff["used_stops"] == 2
        assert ff["average_planned_time"] == 12
        assert len(result["connecting_stations"]) == 1

    def test_stop_without_neighbours_is_skipped(self, db, network):
        s = network.stop
        network.journey("RE", 1, datetime(2024, 3, 4), [s(FF, dep=t(10, 0))])
        result = _walk(db, "FF")
        assert result["used_stops"] == 0
        assert result["connecting_stations"] == []

    def test_stop_whose_observations_lack_planned_times_not_counted(self, db, network):
        s = network.stop
        # FD has no planned departure, so FD -> FF yields no observation.
        network.journey("RE", 1, datetime(2024, 3, 4), [s(FD, arr=t(9, 50)), s(FF, arr=t(10, 0))])
        result = _walk(db, "FF")
        assert result["connecting_stations"] == []
        assert result["used_stops"] == 0

    def test_stop_counted_once_with_one_usable_observation(self, db, network):
        s = network.stop
        network.journey("ICE", 100, datetime(2024, 3, 4), [
            s(FF, arr=t(9, 50)),
            s(FD, arr=t(10, 20), dep=t(10, 22)),
            s(MH, arr=t(10, 50)),
        ])
        result = _walk(db, "FD")
        assert set(_neighbours(result)) == {"RM"}
        assert result["used_stops"] == 1

    def test_stops_outside_window_ignored(self, db, network):
        s = network.stop
        network.journey("RE", 1, datetime(2024, 5, 4), [
            s(FF, dep=datetime(2024, 5, 4, 10, 0)),
            s(FD, arr=datetime(2024, 5, 4, 10, 5)),
        ])
        assert _walk(db, "FF")["connecting_stations"] == []

    def test_distance_attached(self, db, network):
        s = network.stop
        network.journey("RE", 1, datetime(2024, 3, 4), [s(FF, dep=t(10, 0)), s(FD, arr=t(10, 5))])
        distance = _neighbours(_walk(db, "FF"))["FD"]["distance"]
        assert 25 < distance < 28
        assert distance == round(distance, 2)

    def test_distance_none_without_coordinates(self, db, network):
        network.station(8000001, "XNC", "No Coordinates", None, None)
        s = network.stop
        network.journey("RE", 1, datetime(2024, 3, 4), [s(FF, dep=t(10, 0)), s(8000001, arr=t(10, 5))])
        assert _neighbours(_walk(db, "FF"))["XNC"]["distance"] is None

    def test_unknown_neighbour_dropped(self, db, network):
        s = network.stop
        network.journey("RE", 1, datetime(2024, 3, 4), [s(FF, dep=t(10, 0)), s(999, arr=t(10, 5))])
        result = _walk(db, "FF")
        assert result["connecting_stations"] == []
        assert result["used_stops"] == 1

    def test_neighbours_of_other_journey_occurrence_not_mixed(self, db, network):
        s = network.stop
        # Same train on two days; ordinals line up but journeys differ.
        network.journey("RE", 1, datetime(2024, 3, 4), [s(FF, dep=t(10, 0)), s(FD, arr=t(10, 5))])
        network.journey("RE", 1, datetime(2024, 3, 5), [s(MH, dep=t(10, 0, 5)), s(FF, arr=t(10, 40, 5))])
        neighbours = _neighbours(_walk(db, "FF"))
        assert set(neighbours) == {"FD", "RM"}
        assert neighbours["FD"]["used_stops"] == 1
        assert neighbours["RM"]["average_planned_time"] == 40


class TestGetStationConnections:
    def test_unknown_station_raises(self, db, network):
        with pytest.raises(NotFoundError):
            get_station_connections(db, "XX", window=WINDOW)

    def test_loads_stations_when_snapshot_missing(self, db, network):
        s = network.stop
        network.journey("RE", 1, datetime(2024, 3, 4), [s(FF, dep=t(10, 0)), s(FD, arr=t(10, 5))])
        result = get_station_connections(db, "FF", None, window=WINDOW)
        assert result["station"]["ds100"] == "FF"
        assert [c["station"]["ds100"] for c in result["connecting_stations"]] == ["FD"]


class TestObservationWindow:
    def test_trailing_days_by_default(self):
        with (
            patch("graph.adjacency.CONNECTION_WINDOW_START", ""),
            patch("graph.adjacency.CONNECTION_WINDOW_END", ""),
            patch("graph.adjacency.CONNECTION_WINDOW_DAYS", 7),
        ):
            start, end = observation_window(today=date(2024, 3, 10))
        assert end == datetime(2024, 3, 10)
        assert start == datetime(2024, 3, 3)

    def test_explicit_bounds_end_inclusive(self):
        with (
            patch("graph.adjacency.CONNECTION_WINDOW_START", "2023-09-01"),
            patch("graph.adjacency.CONNECTION_WINDOW_END", "2023-09-07"),
        ):
            start, end = observation_window()
        assert start == datetime(2023, 9, 1)
        assert end == datetime(2023, 9, 8)


# ---------------------------------------------------------------------------
# Network-wide merge
# ---------------------------------------------------------------------------

def _station(eva):
    return {"eva": eva, "name": str(eva), "ds100": str(eva), "location": None}


def _edge(eva, planned, actual, used=1):
    return {
        "station": _station(eva),
        "average_planned_time": planned,
        "average_actual_time": actual,
        "used_stops": used,
        "distance": None,
    }


class TestMergeEdge:
    def test_first_discovery_inserts(self):
        G = nx.Graph()
        merge_edge(G, _station(1), _edge(2, 10, 12))
        assert G.edges[1, 2]["average_planned_time"] == 10
        assert G.edges[1, 2]["station1"]["eva"] == 1

    def test_reverse_discovery_halves_sum(self):
        G = nx.Graph()
        merge_edge(G, _station(1), _edge(2, 10, 12, used=3))
        merge_edge(G, _station(2), _edge(1, 20, 14, used=2))
        assert G.number_of_edges() == 1
        data = G.edges[1, 2]
        assert data["average_planned_time"] == 15
        assert data["average_actual_time"] == 13
        assert data["used_stops"] == 5

    def test_repeated_merge_leans_to_latest(self):
        G = nx.Graph()
        merge_edge(G, _station(1), _edge(2, 10, 10))
        merge_edge(G, _station(2), _edge(1, 20, 20))
        merge_edge(G, _station(1), _edge(2, 20, 20))
        # (10 + 20) / 2 = 15, then (15 + 20) / 2
        assert G.edges[1, 2]["average_planned_time"] == 17.5

    def test_mismatched_endpoints_raise(self):
        G = nx.Graph()
        G.add_edge(1, 2, station1=_station(3), station2=_station(2),
                   average_planned_time=1, average_actual_time=1, used_stops=1, distance=None)
        with pytest.raises(InconsistentStateError):
            merge_edge(G, _station(1), _edge(2, 5, 5))


class TestBuildConnectionGraph:
    @pytest.fixture
    def ice100(self, network):
        s = network.stop
        network.journey("ICE", 100, datetime(2024, 3, 4), [
            s(FF, dep=t(10, 0)),
            s(FD, arr=t(10, 20), dep=t(10, 22)),
            s(MH, arr=t(10, 50)),
        ])
        return network

    def test_one_edge_per_station_pair(self, db, ice100):
        snapshot = NetworkSnapshot()
        build_connection_graph(db, get_all_stations(db), snapshot, WINDOW)
        pairs = [
            frozenset((c["station1"]["eva"], c["station2"]["eva"]))
            for c in snapshot.connections
        ]
        assert len(pairs) == len(set(pairs)) == 2
        assert set(pairs) == {frozenset((FF, FD)), frozenset((FD, MH))}

    def test_both_directions_merged(self, db, ice100):
        snapshot = NetworkSnapshot()
        G = build_connection_graph(db, get_all_stations(db), snapshot, WINDOW)
        data = G.edges[FF, FD]
        assert data["average_planned_time"] == 20
        assert data["used_stops"] == 2
        assert 25 < data["distance"] < 28

    def test_publishes_and_marks_done(self, db, ice100):
        snapshot = NetworkSnapshot()
        build_connection_graph(db, get_all_stations(db), snapshot, WINDOW)
        assert snapshot.status == STATUS_DONE
        assert snapshot.built_at is not None
        assert get_all_connections(snapshot)["count"] == 2

    def test_inconsistent_edge_aborts_without_publishing(self, db, ice100):
        snapshot = NetworkSnapshot()
        with (
            patch("graph.builder.merge_edge", side_effect=InconsistentStateError("Edge 1-2")),
            pytest.raises(InconsistentStateError),
        ):
            build_connection_graph(db, get_all_stations(db), snapshot, WINDOW)

        assert snapshot.connections is None
        assert snapshot.built_at is None
        # Darmstadt sorts first and already has neighbours.
        assert snapshot.status == "Processing station 1/3"

    def test_empty_network(self, db):
        snapshot = NetworkSnapshot()
        build_connection_graph(db, [], snapshot, WINDOW)
        assert get_all_connections(snapshot) == {"count": 0, "connections": []}

    def test_progress_visible_while_building(self, db):
        snapshot = NetworkSnapshot()
        stations = [_station(i) for i in range(1, 11)]
        seen = []

        def fake_extract(session, station, lookup, window):
            if station["eva"] == 3:
                with pytest.raises(NotReadyError) as exc_info:
                    get_all_connections(snapshot)
                seen.append(exc_info.value.status)
            return {"station": station, "used_stops": 0, "connecting_stations": []}

        with patch("graph.builder.extract_connections", side_effect=fake_extract):
            build_connection_graph(db, stations, snapshot, WINDOW)

        assert seen == ["Processing station 3/10"]


class TestSnapshot:
    def test_cold_snapshot_is_absent(self):
        snapshot = NetworkSnapshot()
        assert snapshot.stations is None
        assert snapshot.connections is None
        assert snapshot.status == STATUS_NOT_STARTED

    def test_not_ready_carries_progress(self):
        snapshot = NetworkSnapshot()
        snapshot.report_progress(3, 10)
        with pytest.raises(NotReadyError) as exc_info:
            get_all_connections(snapshot)
        assert "3" in exc_info.value.status
        assert "10" in exc_info.value.status

    def test_rebuild_keeps_previous_connections_until_published(self):
        snapshot = NetworkSnapshot()
        snapshot.publish_connections([{"x": 1}])
        snapshot.report_progress(1, 5)
        assert snapshot.connections == [{"x": 1}]
        snapshot.publish_connections([])
        assert snapshot.connections == []

    def test_mark_failed(self):
        snapshot = NetworkSnapshot()
        snapshot.mark_failed(InconsistentStateError("boom"))
        assert snapshot.status == "Failed: boom"
