#!/usr/bin/env python3
"""Download the TRA daily schedule feed and write static JSON for the timetable UI."""

from __future__ import annotations

import argparse
import datetime as dt
import json
import logging
import os
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable
from urllib.parse import urljoin, urlparse
from zoneinfo import ZoneInfo

import requests
from bs4 import BeautifulSoup
from dotenv import load_dotenv

from trapreprocess.trapreprocess import (
    FormatError,
    normalize_stations,
    normalize_train_types,
    preprocess_day,
)

LOGGER = logging.getLogger("tra_timetable_pipeline")

INDEX_URL = "https://ods.railway.gov.tw/tra-ods-web/ods/download/dataResource/railway_schedule/JSON/list"
INDEX_LINK_MARKER = "exceptionDataResource/"
DAY_FILENAME_RE = re.compile(r"^\d{8}\.json$")
TAIPEI = ZoneInfo("Asia/Taipei")

DEFAULT_DAYS = 7
HTML_TIMEOUT_SECONDS = 60
SNIPPET_LENGTH = 200

DEFAULT_CARS_PATH = Path("./public/cars.json")
DEFAULT_STATIONS_PATH = Path("./public/stations.json")
DEFAULT_OUTPUT_ROOT = Path("public/data")

USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36"
HTML_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}
JSON_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "application/json,*/*",
}


class FetchError(RuntimeError):
    def __init__(self, url: str, status: int, reason: str = "", snippet: str = ""):
        self.url = url
        self.status = status
        self.reason = reason
        self.snippet = snippet[:SNIPPET_LENGTH]
        status_text = f"{status} {reason}" if reason else str(status)
        message = f"Fetch failed {status_text}: {url}"
        if self.snippet:
            message = f"{message}\n{self.snippet}"
        super().__init__(message)


class ParseError(RuntimeError):
    pass


@dataclass(frozen=True)
class IndexEntry:
    filename: str
    href: str


IndexResolver = Callable[[str, str], list[IndexEntry]]


@dataclass(frozen=True)
class PipelineConfig:
    index_url: str
    output_root: Path
    days: int
    html_timeout: float
    download_timeout: float
    keep_raw: bool
    show_progress: bool

    @property
    def meta_dir(self) -> Path:
        return self.output_root / "meta"

    @property
    def days_dir(self) -> Path:
        return self.output_root / "days"

    @property
    def raw_dir(self) -> Path:
        return self.output_root / "raw"


def env_flag(name: str, default: bool = False) -> bool:
    value = (os.getenv(name) or "").strip().lower()
    if not value:
        return default
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean flag, got {value!r}")


def load_config() -> PipelineConfig:
    """Read pipeline settings from ``TRA_*`` environment variables."""
    days = int(os.getenv("TRA_DAYS") or DEFAULT_DAYS)
    if days < 1:
        raise ValueError(f"TRA_DAYS must be positive, got {days}")
    html_timeout = float(os.getenv("TRA_HTTP_TIMEOUT") or HTML_TIMEOUT_SECONDS)
    return PipelineConfig(
        index_url=(os.getenv("TRA_INDEX_URL") or "").strip() or INDEX_URL,
        output_root=Path((os.getenv("TRA_OUTPUT_ROOT") or "").strip() or DEFAULT_OUTPUT_ROOT),
        days=days,
        html_timeout=html_timeout,
        download_timeout=html_timeout * 3,
        keep_raw=env_flag("TRA_KEEP_RAW"),
        show_progress=sys.stderr.isatty(),
    )


def now_iso() -> str:
    return dt.datetime.now(dt.UTC).replace(microsecond=0).isoformat()


def today_in_taipei(now: dt.datetime | None = None) -> dt.date:
    if now is None:
        now = dt.datetime.now(TAIPEI)
    return now.astimezone(TAIPEI).date()


def target_filenames(today: dt.date, days: int = DEFAULT_DAYS) -> list[str]:
    return [f"{(today + dt.timedelta(days=offset)):%Y%m%d}.json" for offset in range(days)]


def read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8-sig"))


def write_json(path: Path, payload: Any, indent: int | None = None) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    separators = None if indent else (",", ":")
    path.write_text(
        json.dumps(payload, ensure_ascii=False, indent=indent, separators=separators),
        encoding="utf-8",
    )


def raise_for_response(response: requests.Response, url: str) -> None:
    if response.ok:
        return
    raise FetchError(url, response.status_code, response.reason or "", response.text or "")


def fetch_text(session: requests.Session, url: str, timeout: float = HTML_TIMEOUT_SECONDS) -> str:
    response = session.get(url, headers=HTML_HEADERS, timeout=timeout)
    raise_for_response(response, url)
    return response.text


def download_payload(
    session: requests.Session,
    url: str,
    timeout: float = HTML_TIMEOUT_SECONDS * 3,
) -> bytes:
    response = session.get(url, headers=JSON_HEADERS, timeout=timeout, allow_redirects=True)
    raise_for_response(response, url)
    return response.content


def parse_index_html(html: str, index_url: str) -> list[IndexEntry]:
    """Collect ``YYYYMMDD.json`` download links from the open-data list page."""
    parsed = urlparse(index_url)
    host_root = f"{parsed.scheme}://{parsed.netloc}/"

    soup = BeautifulSoup(html, "html.parser")
    entries: list[IndexEntry] = []
    for anchor in soup.find_all("a", href=True):
        href = str(anchor["href"]).strip()
        if INDEX_LINK_MARKER not in href:
            continue
        filename = anchor.get_text(strip=True)
        if not DAY_FILENAME_RE.match(filename):
            continue
        entries.append(IndexEntry(filename=filename, href=urljoin(host_root, href)))
    return entries


def resolve_download_index(
    index_url: str,
    session: requests.Session,
    resolver: IndexResolver = parse_index_html,
    timeout: float = HTML_TIMEOUT_SECONDS,
) -> dict[str, str]:
    html = fetch_text(session, index_url, timeout=timeout)
    entries = resolver(html, index_url)
    if not entries:
        raise ParseError("Parse list failed: no entries found (HTML structure changed?)")
    return {entry.filename: entry.href for entry in entries}


def decode_payload(filename: str, payload: bytes) -> Any:
    try:
        return json.loads(payload.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise FormatError(f"{filename} is not valid JSON: {exc}") from exc


def write_metadata(cars_path: Path, stations_path: Path, meta_dir: Path) -> tuple[int, int]:
    cars_map = normalize_train_types(read_json(cars_path))
    stations_map = normalize_stations(read_json(stations_path))
    write_json(meta_dir / "carsMap.json", cars_map)
    write_json(meta_dir / "stationsMap.json", stations_map)
    return len(cars_map), len(stations_map)


def process_day(
    filename: str,
    url: str,
    config: PipelineConfig,
    session: requests.Session,
) -> dict[str, Any]:
    day_key = filename.removesuffix(".json")
    LOGGER.info("[GET] %s <- %s", filename, url)
    payload = download_payload(session, url, timeout=config.download_timeout)

    if config.keep_raw:
        raw_path = config.raw_dir / filename
        raw_path.parent.mkdir(parents=True, exist_ok=True)
        raw_path.write_bytes(payload)

    trains, stop_index = preprocess_day(decode_payload(filename, payload), progress=config.show_progress)

    out_dir = config.days_dir / day_key
    write_json(out_dir / "trains.json", trains)
    write_json(out_dir / "stopIndex.json", stop_index)

    LOGGER.info("[OK] %s: trains=%d stationsIndexed=%d", day_key, len(trains), len(stop_index))
    return {"day": day_key, "trains": len(trains), "stations": len(stop_index)}


def run_pipeline(
    cars_path: Path,
    stations_path: Path,
    config: PipelineConfig,
    session: requests.Session,
    today: dt.date,
    resolver: IndexResolver = parse_index_html,
) -> dict[str, Any]:
    """Run one full update and return the manifest written under ``meta/``."""
    car_count, station_count = write_metadata(cars_path, stations_path, config.meta_dir)
    LOGGER.info("Metadata: trainTypes=%d stations=%d", car_count, station_count)

    file_urls = resolve_download_index(
        config.index_url,
        session,
        resolver=resolver,
        timeout=config.html_timeout,
    )

    targets = target_filenames(today, config.days)
    LOGGER.info("Today(Taipei): %s", f"{today:%Y%m%d}")
    LOGGER.info("Targets: %s", ", ".join(targets))

    processed: list[dict[str, Any]] = []
    skipped: list[str] = []
    for filename in targets:
        url = file_urls.get(filename)
        if not url:
            LOGGER.warning("[SKIP] Not found in list: %s", filename)
            skipped.append(filename)
            continue
        processed.append(process_day(filename, url, config, session))

    manifest = {
        "generated_at": now_iso(),
        "today": f"{today:%Y%m%d}",
        "targets": targets,
        "days": processed,
        "skipped": skipped,
    }
    write_json(config.meta_dir / "manifest.json", manifest, indent=2)
    return manifest


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Download the next days of TRA schedules and write preprocessed JSON."
    )
    parser.add_argument(
        "cars_path",
        nargs="?",
        type=Path,
        default=DEFAULT_CARS_PATH,
        help="Train-type catalog (JSON array).",
    )
    parser.add_argument(
        "stations_path",
        nargs="?",
        type=Path,
        default=DEFAULT_STATIONS_PATH,
        help="Station catalog (JSON array).",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    load_dotenv()
    logging.basicConfig(
        level=(os.getenv("TRA_LOG_LEVEL") or "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config()
        with requests.Session() as session:
            run_pipeline(args.cars_path, args.stations_path, config, session, today_in_taipei())
    except Exception:
        LOGGER.exception("Update failed")
        return 1

    LOGGER.info("Done. output=%s", config.output_root)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
