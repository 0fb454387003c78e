"""
Builders for encoded GTFS-RT FeedMessages.

Produces the same protobuf bytes the live endpoints serve, so the decoders in
ingestion.gtfs_realtime (and the query layer above them) can be exercised
without network access.  Used by the test-suite and handy for serving a fake
feed from a local stub server during development.

Each builder takes plain dicts and returns serialized bytes:

    vehicle_positions_feed([{"vehicle_id": "bus-7", "trip_id": "T1",
                             "route_id": "R1", "lat": 33.95, "lon": -83.37,
                             "occupancy": 1}])
    trip_updates_feed([{"trip_id": "T1", "stop_time_updates": [
                           {"stop_sequence": 3, "departure_delay": 120}]}])
    service_alerts_feed([{"alert_id": "A1", "header": "Detour",
                          "route_ids": ["R1"]}])

Keys left out of a dict are left unset on the message, which is how tests
exercise the "absent field" paths.
"""

import time
from typing import Any

from google.transit import gtfs_realtime_pb2


def _new_feed(timestamp: int | None = None) -> gtfs_realtime_pb2.FeedMessage:
    feed = gtfs_realtime_pb2.FeedMessage()
    feed.header.gtfs_realtime_version = "2.0"
    feed.header.timestamp = int(time.time()) if timestamp is None else timestamp
    return feed


def vehicle_positions_feed(vehicles: list[dict[str, Any]], timestamp: int | None = None) -> bytes:
    feed = _new_feed(timestamp)
    for i, v in enumerate(vehicles):
        entity = feed.entity.add()
        entity.id = v.get("entity_id", f"vp-{i}")
        vp = entity.vehicle
        if "vehicle_id" in v:
            vp.vehicle.id = v["vehicle_id"]
        if "trip_id" in v or "route_id" in v:
            vp.trip.trip_id = v.get("trip_id", "")
            vp.trip.route_id = v.get("route_id", "")
        if "lat" in v:
            vp.position.latitude = v["lat"]
            vp.position.longitude = v["lon"]
            if "bearing" in v:
                vp.position.bearing = v["bearing"]
            if "speed" in v:
                vp.position.speed = v["speed"]
        if "occupancy" in v:
            vp.occupancy_status = v["occupancy"]
        if "current_stop_sequence" in v:
            vp.current_stop_sequence = v["current_stop_sequence"]
        if "current_status" in v:
            vp.current_status = v["current_status"]
        if "timestamp" in v:
            vp.timestamp = v["timestamp"]
    return feed.SerializeToString()


def trip_updates_feed(updates: list[dict[str, Any]], timestamp: int | None = None) -> bytes:
    feed = _new_feed(timestamp)
    for i, u in enumerate(updates):
        entity = feed.entity.add()
        entity.id = u.get("entity_id", f"tu-{i}")
        tu = entity.trip_update
        tu.trip.trip_id = u["trip_id"]
        if "route_id" in u:
            tu.trip.route_id = u["route_id"]
        if "timestamp" in u:
            tu.timestamp = u["timestamp"]
        for s in u.get("stop_time_updates", []):
            stu = tu.stop_time_update.add()
            if "stop_sequence" in s:
                stu.stop_sequence = s["stop_sequence"]
            if "stop_id" in s:
                stu.stop_id = s["stop_id"]
            for event in ("arrival", "departure"):
                if f"{event}_delay" in s:
                    getattr(stu, event).delay = s[f"{event}_delay"]
                if f"{event}_time" in s:
                    getattr(stu, event).time = s[f"{event}_time"]
                if f"{event}_uncertainty" in s:
                    getattr(stu, event).uncertainty = s[f"{event}_uncertainty"]
    return feed.SerializeToString()


def service_alerts_feed(alerts: list[dict[str, Any]], timestamp: int | None = None) -> bytes:
    feed = _new_feed(timestamp)
    for a in alerts:
        entity = feed.entity.add()
        entity.id = a["alert_id"]
        alert = entity.alert
        alert.header_text.translation.add(text=a.get("header", ""), language="en")
        if "description" in a:
            alert.description_text.translation.add(text=a["description"], language="en")
        for route_id in a.get("route_ids", []):
            alert.informed_entity.add(route_id=route_id)
        for stop_id in a.get("stop_ids", []):
            alert.informed_entity.add(stop_id=stop_id)
        for trip_id in a.get("trip_ids", []):
            ie = alert.informed_entity.add()
            ie.trip.trip_id = trip_id
        if "start" in a or "end" in a:
            period = alert.active_period.add()
            if "start" in a:
                period.start = a["start"]
            if "end" in a:
                period.end = a["end"]
    return feed.SerializeToString()
