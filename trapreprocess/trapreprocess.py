#!/usr/bin/env python3
"""Normalize TRA metadata catalogs and reshape daily schedule payloads."""

from __future__ import annotations

import argparse
import json
import logging
import math
import re
from pathlib import Path
from typing import Any

import tqdm

logger = logging.getLogger(__name__)

PAREN_RE = re.compile(r"\(.*?\)")


class FormatError(ValueError):
    """Input JSON does not have the expected shape."""


def as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def hhmmss_to_minutes(value: Any) -> int | None:
    # "19:49:30" -> 1189, seconds are ignored
    if not value or not isinstance(value, str):
        return None
    parts = value.strip().split(":")
    if len(parts) < 2:
        return None
    try:
        hours = int(parts[0])
        minutes = int(parts[1])
    except ValueError:
        return None
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        return None
    return hours * 60 + minutes


def parse_order(value: Any) -> int | float | None:
    if value is None:
        return 0
    try:
        order = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(order):
        return None
    return int(order) if order.is_integer() else order


def normalize_train_types(records: Any) -> dict[str, dict[str, Any]]:
    """Build ``TrainTypeID -> {"name", "alias"}`` from the train-type catalog.

    The catalog is a list like ``[{"TrainTypeID": "1100", "TrainTypeName":
    {"Zh_tw": "自強(DMU2800、2900、3000型)"}}, ...]``. Parenthesized parts of
    the display name are dropped so the front end shows the short form.
    """
    if not isinstance(records, list):
        raise FormatError("cars.json format unexpected (expected an array list)")

    mapping: dict[str, dict[str, Any]] = {}
    for record in records:
        if not isinstance(record, dict):
            continue
        type_id = as_text(record.get("TrainTypeID"))
        if not type_id:
            continue

        names = record.get("TrainTypeName")
        raw_name = names.get("Zh_tw") if isinstance(names, dict) else None
        if raw_name is None:
            raw_name = type_id
        mapping[type_id] = {"name": PAREN_RE.sub("", as_text(raw_name)), "alias": None}
    return mapping


def normalize_stations(records: Any) -> dict[str, str]:
    if not isinstance(records, list):
        raise FormatError("stations.json format unexpected (expected an array)")

    mapping: dict[str, str] = {}
    for record in records:
        if not isinstance(record, dict):
            continue
        code = as_text(record.get("stationCode"))
        name = record.get("stationName")
        if name is None:
            name = record.get("name")
        name = as_text(name)
        if code and name:
            mapping[code] = name
    return mapping


def build_stops(time_infos: Any) -> list[list[Any]]:
    if not isinstance(time_infos, list):
        return []

    stops: list[list[Any]] = []
    for entry in time_infos:
        if not isinstance(entry, dict):
            continue
        station = as_text(entry.get("Station"))
        order = parse_order(entry.get("Order"))
        if not station or order is None:
            continue

        dep = hhmmss_to_minutes(entry.get("DEPTime"))
        arr = hhmmss_to_minutes(entry.get("ARRTime"))
        if dep is None:
            dep = arr
        if arr is None:
            arr = dep
        if dep is None:
            continue
        stops.append([station, order, dep, arr])

    stops.sort(key=lambda stop: stop[1])
    return stops


def preprocess_day(
    raw: Any,
    *,
    progress: bool = False,
) -> tuple[dict[str, dict[str, Any]], dict[str, list[str]]]:
    """Split one daily payload into per-train stop lists and a station index.

    Returns ``(trains, stop_index)`` where ``trains`` maps the train number to
    ``{"train", "carClass", "line", "lineDir", "stops"}`` and every stop is
    ``[station, order, dep_minute, arr_minute]``. ``stop_index`` maps a
    station code to the train numbers calling there.
    """
    train_infos = raw.get("TrainInfos") if isinstance(raw, dict) else None
    if not isinstance(train_infos, list):
        raise FormatError("raw missing TrainInfos[]")

    trains: dict[str, dict[str, Any]] = {}
    stop_index: dict[str, list[str]] = {}

    for train_info in tqdm.tqdm(train_infos, desc="trains", unit="train", disable=not progress):
        if not isinstance(train_info, dict):
            continue
        train_no = as_text(train_info.get("Train"))
        if not train_no:
            continue

        stops = build_stops(train_info.get("TimeInfos"))
        for stop in stops:
            stop_index.setdefault(stop[0], []).append(train_no)

        if train_no in trains:
            logger.debug("Duplicate train %s, keeping the later record", train_no)
        trains[train_no] = {
            "train": train_no,
            "carClass": as_text(train_info.get("CarClass")),
            "line": as_text(train_info.get("Line")),
            "lineDir": as_text(train_info.get("LineDir")),
            "stops": stops,
        }

    for station, train_numbers in stop_index.items():
        stop_index[station] = list(dict.fromkeys(train_numbers))

    return trains, stop_index


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Preprocess one saved TRA daily schedule JSON into trains/stopIndex files"
    )
    parser.add_argument("raw_json", help="Daily schedule payload (YYYYMMDD.json)")
    parser.add_argument("output_dir", help="Dir for trains.json and stopIndex.json")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    raw_path = Path(args.raw_json)
    output_dir = Path(args.output_dir)
    try:
        raw = json.loads(raw_path.read_text(encoding="utf-8-sig"))
    except json.JSONDecodeError as exc:
        raise FormatError(f"{raw_path} is not valid JSON: {exc}") from exc

    trains, stop_index = preprocess_day(raw, progress=True)

    output_dir.mkdir(parents=True, exist_ok=True)
    for name, payload in (("trains.json", trains), ("stopIndex.json", stop_index)):
        (output_dir / name).write_text(
            json.dumps(payload, ensure_ascii=False, separators=(",", ":")),
            encoding="utf-8",
        )
    logger.info("Wrote %s: trains=%d stations=%d", output_dir, len(trains), len(stop_index))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
