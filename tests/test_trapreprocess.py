import json
import tempfile
import unittest
from pathlib import Path

from trapreprocess import trapreprocess as tp


def time_info(station, order, dep=None, arr=None):
    entry = {"Station": station, "Order": order}
    if dep is not None:
        entry["DEPTime"] = dep
    if arr is not None:
        entry["ARRTime"] = arr
    return entry


class MetadataTests(unittest.TestCase):
    def test_train_types_strip_parenthesized_text(self):
        records = [
            {"TrainTypeID": "1100", "TrainTypeName": {"Zh_tw": "自強(柴)"}},
            {"TrainTypeID": 1131, "TrainTypeName": {"Zh_tw": "區間車(EMU500)(一般)"}},
            {"TrainTypeID": "1108", "TrainTypeName": {"En": "Tze-Chiang"}},
            {"TrainTypeID": "", "TrainTypeName": {"Zh_tw": "無"}},
            {"TrainTypeName": {"Zh_tw": "無代碼"}},
            "not-a-record",
        ]

        result = tp.normalize_train_types(records)

        self.assertEqual(
            result,
            {
                "1100": {"name": "自強", "alias": None},
                "1131": {"name": "區間車", "alias": None},
                "1108": {"name": "1108", "alias": None},
            },
        )

    def test_train_types_require_array(self):
        with self.assertRaises(tp.FormatError):
            tp.normalize_train_types({"TrainTypeID": "1100"})

    def test_stations_keep_only_complete_records(self):
        records = [
            {"stationCode": "1000", "stationName": "臺北"},
            {"stationCode": 1010, "name": "萬華"},
            {"stationCode": "1020", "stationName": ""},
            {"stationCode": "", "stationName": "板橋"},
            {"stationName": "樹林"},
        ]

        self.assertEqual(tp.normalize_stations(records), {"1000": "臺北", "1010": "萬華"})

    def test_stations_require_array(self):
        with self.assertRaises(tp.FormatError):
            tp.normalize_stations(None)


class ClockTimeTests(unittest.TestCase):
    def test_hhmmss_to_minutes(self):
        self.assertEqual(tp.hhmmss_to_minutes("19:49:30"), 1189)
        self.assertEqual(tp.hhmmss_to_minutes("00:00:00"), 0)
        self.assertEqual(tp.hhmmss_to_minutes("23:59:59"), 1439)
        self.assertEqual(tp.hhmmss_to_minutes("08:05"), 485)

    def test_malformed_times_are_none(self):
        self.assertIsNone(tp.hhmmss_to_minutes(None))
        self.assertIsNone(tp.hhmmss_to_minutes(""))
        self.assertIsNone(tp.hhmmss_to_minutes("ab:cd:00"))
        self.assertIsNone(tp.hhmmss_to_minutes("0800"))
        self.assertIsNone(tp.hhmmss_to_minutes("25:00:00"))
        self.assertIsNone(tp.hhmmss_to_minutes(480))


class PreprocessDayTests(unittest.TestCase):
    def test_two_station_train(self):
        raw = {
            "TrainInfos": [
                {
                    "Train": "123",
                    "CarClass": "1131",
                    "Line": "0",
                    "LineDir": "1",
                    "TimeInfos": [
                        time_info("B", "2", arr="08:30:00"),
                        time_info("A", "1", dep="08:00:00"),
                    ],
                },
                {"Train": "", "TimeInfos": [time_info("C", "1", dep="09:00:00")]},
            ]
        }

        trains, stop_index = tp.preprocess_day(raw)

        self.assertEqual(list(trains), ["123"])
        self.assertEqual(trains["123"]["stops"], [["A", 1, 480, 480], ["B", 2, 510, 510]])
        self.assertEqual(trains["123"]["carClass"], "1131")
        self.assertEqual(trains["123"]["lineDir"], "1")
        self.assertEqual(stop_index, {"A": ["123"], "B": ["123"]})

    def test_departure_only_is_mirrored(self):
        raw = {"TrainInfos": [{"Train": "7", "TimeInfos": [time_info("1000", 1, dep="08:05:00")]}]}

        trains, _ = tp.preprocess_day(raw)

        self.assertEqual(trains["7"]["stops"], [["1000", 1, 485, 485]])

    def test_stop_without_times_is_dropped(self):
        raw = {
            "TrainInfos": [
                {
                    "Train": "8",
                    "TimeInfos": [
                        time_info("A", 1, dep="10:00:00", arr="09:58:00"),
                        time_info("X", 2),
                        time_info("Y", 3, dep="xx:yy:00"),
                        time_info("", 4, dep="10:30:00"),
                        time_info("Z", "not-a-number", dep="10:40:00"),
                    ],
                }
            ]
        }

        trains, stop_index = tp.preprocess_day(raw)

        self.assertEqual(trains["8"]["stops"], [["A", 1, 600, 598]])
        self.assertNotIn("X", stop_index)
        self.assertNotIn("Y", stop_index)
        self.assertNotIn("Z", stop_index)

    def test_stops_sorted_and_times_in_range(self):
        raw = {
            "TrainInfos": [
                {
                    "Train": "150",
                    "TimeInfos": [
                        time_info("D", "10", dep="23:59:00"),
                        time_info("B", "3", dep="12:01:00", arr="12:00:00"),
                        time_info("A", "1", dep="00:00:00"),
                        time_info("C", "7", arr="18:45:00"),
                    ],
                }
            ]
        }

        trains, _ = tp.preprocess_day(raw)
        stops = trains["150"]["stops"]

        self.assertEqual([stop[0] for stop in stops], ["A", "B", "C", "D"])
        self.assertEqual([stop[1] for stop in stops], sorted(stop[1] for stop in stops))
        for _, _, dep, arr in stops:
            self.assertIsNotNone(dep)
            self.assertIsNotNone(arr)
            self.assertTrue(0 <= dep <= 1439)
            self.assertTrue(0 <= arr <= 1439)

    def test_station_index_is_deduplicated(self):
        raw = {
            "TrainInfos": [
                {
                    "Train": "500",
                    "TimeInfos": [
                        time_info("A", 1, dep="06:00:00"),
                        time_info("A", 2, arr="06:30:00"),
                    ],
                },
                {"Train": "502", "TimeInfos": [time_info("A", 1, dep="07:00:00")]},
            ]
        }

        _, stop_index = tp.preprocess_day(raw)

        self.assertEqual(stop_index, {"A": ["500", "502"]})

    def test_missing_train_infos(self):
        for raw in ({}, {"TrainInfos": {}}, [], None):
            with self.subTest(raw=raw):
                with self.assertRaises(tp.FormatError):
                    tp.preprocess_day(raw)

    def test_time_infos_not_a_list(self):
        trains, stop_index = tp.preprocess_day({"TrainInfos": [{"Train": "9", "TimeInfos": None}]})

        self.assertEqual(trains["9"]["stops"], [])
        self.assertEqual(stop_index, {})


class CliTests(unittest.TestCase):
    def test_main_writes_day_files(self):
        with tempfile.TemporaryDirectory() as tmp:
            tmp_path = Path(tmp)
            raw_path = tmp_path / "20250101.json"
            raw_path.write_text(
                json.dumps(
                    {"TrainInfos": [{"Train": "1", "TimeInfos": [time_info("1000", 1, dep="05:00:00")]}]}
                ),
                encoding="utf-8",
            )
            out_dir = tmp_path / "out"

            self.assertEqual(tp.main([str(raw_path), str(out_dir)]), 0)

            trains = json.loads((out_dir / "trains.json").read_text(encoding="utf-8"))
            stop_index = json.loads((out_dir / "stopIndex.json").read_text(encoding="utf-8"))
            self.assertEqual(trains["1"]["stops"], [["1000", 1, 300, 300]])
            self.assertEqual(stop_index, {"1000": ["1"]})

    def test_main_rejects_invalid_json(self):
        with tempfile.TemporaryDirectory() as tmp:
            raw_path = Path(tmp) / "broken.json"
            raw_path.write_text("{not json", encoding="utf-8")

            with self.assertRaises(tp.FormatError):
                tp.main([str(raw_path), str(Path(tmp) / "out")])


if __name__ == "__main__":
    unittest.main()
