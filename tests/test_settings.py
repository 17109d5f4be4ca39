import json
import tempfile
import unittest
from pathlib import Path

from s3a_filesystem.settings import (
    MIN_MULTIPART_SIZE,
    FileSystemSettings,
    SettingsStorage,
    parse_bool,
    parse_size,
)


class FileSystemSettingsTests(unittest.TestCase):
    def test_defaults(self):
        settings = FileSystemSettings()

        self.assertEqual(15, settings.max_connections)
        self.assertEqual(5000, settings.max_paging_keys)
        self.assertEqual(100 * 1024 * 1024, settings.multipart_size)
        self.assertEqual(2147483647, settings.multipart_threshold)
        self.assertEqual(32 * 1024 * 1024, settings.block_size)
        self.assertTrue(settings.multi_object_delete)
        self.assertFalse(settings.fast_upload)

    def test_multipart_sizes_are_clamped_to_floor(self):
        with self.assertLogs("s3a_filesystem.settings", level="ERROR") as captured:
            settings = FileSystemSettings(multipart_size=1024, multipart_threshold=10)

        self.assertEqual(MIN_MULTIPART_SIZE, settings.multipart_size)
        self.assertEqual(MIN_MULTIPART_SIZE, settings.multipart_threshold)
        self.assertEqual(2, len(captured.records))

    def test_from_mapping_parses_strings(self):
        settings = FileSystemSettings.from_mapping(
            {
                "max_connections": "30",
                "secure_connections": "false",
                "multipart_size": "64M",
                "readahead_range": "128K",
                "path_style_access": "yes",
                "endpoint": " minio.local:9000 ",
                "unknown_key": "ignored",
            }
        )

        self.assertEqual(30, settings.max_connections)
        self.assertFalse(settings.secure_connections)
        self.assertEqual(64 * 1024 * 1024, settings.multipart_size)
        self.assertEqual(128 * 1024, settings.readahead_range)
        self.assertTrue(settings.path_style_access)
        self.assertEqual("minio.local:9000", settings.endpoint)

    def test_from_mapping_maps_deprecated_keys(self):
        settings = FileSystemSettings.from_mapping({"awsAccessKeyId": "AKIA", "awsSecretAccessKey": "s3cr3t"})

        self.assertEqual("AKIA", settings.legacy_access_key)
        self.assertEqual("s3cr3t", settings.legacy_secret_key)

    def test_from_mapping_rejects_values_below_minimum(self):
        with self.assertRaisesRegex(ValueError, "max_paging_keys"):
            FileSystemSettings.from_mapping({"max_paging_keys": 0})

    def test_from_mapping_rejects_unparseable_values(self):
        with self.assertRaisesRegex(ValueError, "max_connections"):
            FileSystemSettings.from_mapping({"max_connections": "many"})

    def test_from_mapping_ignores_null_values(self):
        settings = FileSystemSettings.from_mapping({"max_threads": None, "region": None})

        self.assertEqual(256, settings.max_threads)
        self.assertIsNone(settings.region)


class ParserTests(unittest.TestCase):
    def test_parse_size_units(self):
        self.assertEqual(10, parse_size("10"))
        self.assertEqual(2048, parse_size("2K"))
        self.assertEqual(5 * 1024 * 1024, parse_size("5mb"))
        self.assertEqual(1024 ** 3, parse_size("1G"))
        self.assertEqual(7, parse_size(7))

    def test_parse_size_rejects_garbage(self):
        for value in ("", "abc", "10T", True):
            with self.subTest(value=value):
                with self.assertRaises(ValueError):
                    parse_size(value)

    def test_parse_bool(self):
        self.assertTrue(parse_bool("TRUE"))
        self.assertTrue(parse_bool("1"))
        self.assertFalse(parse_bool("off"))
        with self.assertRaises(ValueError):
            parse_bool("maybe")


class SettingsStorageTests(unittest.TestCase):
    def test_load_returns_defaults_when_missing(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "settings.json"
            storage = SettingsStorage(path)

            settings = storage.load()

            self.assertEqual(FileSystemSettings(), settings)

    def test_load_returns_defaults_when_corrupt(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "settings.json"
            path.write_text("{not json", encoding="utf-8")
            storage = SettingsStorage(path)

            with self.assertLogs("s3a_filesystem.settings", level="WARNING"):
                settings = storage.load()

            self.assertEqual(FileSystemSettings(), settings)

    def test_load_reads_values(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "settings.json"
            path.write_text(
                json.dumps({"max_paging_keys": 100, "multi_object_delete": False, "endpoint": "http://minio"}),
                encoding="utf-8",
            )
            storage = SettingsStorage(path)

            settings = storage.load()

            self.assertEqual(100, settings.max_paging_keys)
            self.assertFalse(settings.multi_object_delete)
            self.assertEqual("http://minio", settings.endpoint)

    def test_save_omits_secrets(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "nested" / "settings.json"
            storage = SettingsStorage(path)
            settings = FileSystemSettings(
                access_key="AKIA",
                secret_key="secret",
                proxy_username="user",
                proxy_password="pass",
                max_threads=8,
            )

            storage.save(settings)

            saved = json.loads(path.read_text(encoding="utf-8"))
            self.assertNotIn("access_key", saved)
            self.assertNotIn("secret_key", saved)
            self.assertNotIn("proxy_password", saved)
            self.assertEqual("user", saved["proxy_username"])
            self.assertEqual(8, storage.load().max_threads)


if __name__ == "__main__":
    unittest.main()
