import random
import threading
import time
import unittest
from unittest import mock

from ipgroup.lib import classifier
from ipgroup.lib import config_loader
from ipgroup.lib import geoip_lookup

PROVINCES = ["Beijing", "Shanghai", "Guangdong", "Zhejiang"]
ISPS = ["ChinaTelecom", "ChinaUnicom", "ChinaMobile"]


def fake_lookup(ip: str, _config=None) -> geoip_lookup.LookupResult:
    last = int(ip.rsplit(".", 1)[-1]) if "." in ip else 0
    if last % 10 == 0:
        return geoip_lookup.LookupResult.failure(ip, "not found")
    return geoip_lookup.LookupResult(
        ip=ip,
        province=PROVINCES[last % len(PROVINCES)],
        isp=ISPS[last % len(ISPS)],
        ret=1,
    )


class ClassifyTest(unittest.TestCase):
    def setUp(self) -> None:
        patcher = mock.patch.object(classifier.logging_utils, "warn")
        self.warn = patcher.start()
        self.addCleanup(patcher.stop)

    def test_groups_by_province_and_isp(self) -> None:
        with mock.patch.object(classifier.geoip_lookup, "lookup", side_effect=fake_lookup):
            grouping = classifier.classify_ips(["10.0.0.1", "10.0.0.5", "10.0.0.2"])
        self.assertEqual(grouping["Shanghai"]["ChinaUnicom"], ["10.0.0.1"])
        self.assertEqual(grouping["Guangdong"]["ChinaMobile"], ["10.0.0.2"])
        self.assertEqual(grouping["Shanghai"]["ChinaMobile"], ["10.0.0.5"])

    def test_failure_lands_in_unknown_bucket(self) -> None:
        with mock.patch.object(classifier.geoip_lookup, "lookup", side_effect=fake_lookup):
            grouping = classifier.classify_ips(["10.0.0.10", "10.0.0.1"])
        self.assertEqual(grouping["unknown"]["unknown"], ["10.0.0.10"])
        self.assertEqual(classifier.count_unknown(grouping), 1)
        self.warn.assert_called_once()
        self.assertIn("10.0.0.10", self.warn.call_args[0][0])

    def test_custom_unknown_label(self) -> None:
        config = dict(config_loader.DEFAULT_CONFIG, unknown="n/a")
        with mock.patch.object(classifier.geoip_lookup, "lookup", side_effect=fake_lookup):
            grouping = classifier.classify_ips(["10.0.0.20"], config)
        self.assertEqual(grouping, {"n/a": {"n/a": ["10.0.0.20"]}})

    def test_empty_province_on_success_is_unknown(self) -> None:
        result = geoip_lookup.LookupResult(ip="10.0.0.1", province="", isp="ChinaTelecom", ret=1)
        with mock.patch.object(classifier.geoip_lookup, "lookup", return_value=result):
            grouping = classifier.classify_ips(["10.0.0.1"])
        self.assertEqual(grouping, {"unknown": {"ChinaTelecom": ["10.0.0.1"]}})

    def test_lookup_exception_is_absorbed(self) -> None:
        with mock.patch.object(classifier.geoip_lookup, "lookup", side_effect=RuntimeError("boom")):
            grouping = classifier.classify_ips(["10.0.0.1", "10.0.0.2"])
        self.assertEqual(sorted(grouping["unknown"]["unknown"]), ["10.0.0.1", "10.0.0.2"])

    def test_empty_input(self) -> None:
        with mock.patch.object(classifier.geoip_lookup, "lookup") as lookup:
            self.assertEqual(classifier.classify_ips([]), {})
        lookup.assert_not_called()

    def test_every_address_classified_exactly_once_under_load(self) -> None:
        ips = ["10.%d.%d.%d" % (i // 65536, (i // 256) % 256, i % 256) for i in range(500)]

        def slow_lookup(ip, config=None):
            time.sleep(random.uniform(0, 0.005))
            return fake_lookup(ip, config)

        with mock.patch.object(classifier.geoip_lookup, "lookup", side_effect=slow_lookup):
            grouping = classifier.classify_ips(ips)
        seen = [ip for isps in grouping.values() for bucket in isps.values() for ip in bucket]
        self.assertEqual(classifier.count_addresses(grouping), 500)
        self.assertEqual(sorted(seen), sorted(ips))

    def test_runs_lookups_concurrently(self) -> None:
        barrier = threading.Barrier(4, timeout=5)

        def blocking_lookup(ip, config=None):
            barrier.wait()
            return fake_lookup(ip, config)

        ips = ["10.0.0.1", "10.0.0.2", "10.0.0.3", "10.0.0.4"]
        with mock.patch.object(classifier.geoip_lookup, "lookup", side_effect=blocking_lookup):
            grouping = classifier.classify_ips(ips)
        self.assertEqual(classifier.count_addresses(grouping), 4)
        self.assertNotIn("unknown", grouping)

    def test_workers_bound_respected(self) -> None:
        active = []
        peak = []
        lock = threading.Lock()

        def tracking_lookup(ip, config=None):
            with lock:
                active.append(ip)
                peak.append(len(active))
            time.sleep(0.01)
            with lock:
                active.remove(ip)
            return fake_lookup(ip, config)

        config = dict(config_loader.DEFAULT_CONFIG, workers=2)
        ips = ["10.0.1.%d" % i for i in range(1, 9)]
        with mock.patch.object(classifier.geoip_lookup, "lookup", side_effect=tracking_lookup):
            grouping = classifier.classify_ips(ips, config)
        self.assertEqual(classifier.count_addresses(grouping), 8)
        self.assertLessEqual(max(peak), 2)


class RenderTest(unittest.TestCase):
    grouping = {
        "unknown": {"unknown": ["10.0.0.2"]},
        "Beijing": {"ChinaUnicom": ["10.0.0.3"], "ChinaTelecom": ["10.0.0.1", "10.0.0.4"]},
    }

    def test_nested_shape(self) -> None:
        rendered = classifier.render(self.grouping)
        self.assertEqual(list(rendered), ["Beijing", "unknown"])
        self.assertEqual(list(rendered["Beijing"]), ["ChinaTelecom", "ChinaUnicom"])
        self.assertEqual(rendered["Beijing"]["ChinaTelecom"], ["10.0.0.1", "10.0.0.4"])

    def test_flat_shape(self) -> None:
        rendered = classifier.render(self.grouping, "flat")
        self.assertEqual(
            rendered,
            [
                {"province": "Beijing", "isp": "ChinaTelecom", "ips": ["10.0.0.1", "10.0.0.4"]},
                {"province": "Beijing", "isp": "ChinaUnicom", "ips": ["10.0.0.3"]},
                {"province": "unknown", "isp": "unknown", "ips": ["10.0.0.2"]},
            ],
        )

    def test_unsupported_format(self) -> None:
        with self.assertRaises(ValueError):
            classifier.render(self.grouping, "yaml")


if __name__ == "__main__":
    unittest.main()
