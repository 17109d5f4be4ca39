import unittest

from fake_s3 import FakeS3Client
from s3a_filesystem.backend import S3ObjectStore
from s3a_filesystem.errors import NotFoundError
from s3a_filesystem.listing import ListingEngine
from s3a_filesystem.paths import PathTranslator
from s3a_filesystem.status import MetadataResolver


class ListingEngineTests(unittest.TestCase):
    def setUp(self):
        self.client = FakeS3Client("bucket")
        self.store = S3ObjectStore(self.client, "bucket")
        self.make_engine(max_keys=5000)

    def make_engine(self, max_keys):
        translator = PathTranslator("bucket")
        resolver = MetadataResolver(self.store, translator, block_size=64)
        self.listing = ListingEngine(self.store, translator, resolver, max_keys=max_keys, block_size=64)

    def entries(self, path):
        return {
            status.path: (status.is_directory, status.is_empty_directory, status.length)
            for status in self.listing.list_status(path)
        }

    def test_directory_listing_classifies_entries(self):
        self.client.add_object("d/", b"")
        self.client.add_object("d/file.txt", b"abc")
        self.client.add_object("d/empty/", b"")
        self.client.add_object("d/sub/nested", b"x")
        self.client.add_object("d/old_$folder$", b"")

        self.assertEqual(
            {
                "/d/file.txt": (False, None, 3),
                "/d/empty": (True, False, 0),
                "/d/sub": (True, False, 0),
            },
            self.entries("/d"),
        )

    def test_zero_length_marker_in_contents_is_empty_directory(self):
        self.client.add_object("d/file", b"x")

        def list_with_marker(**kwargs):
            response = FakeS3Client.list_objects_v2(self.client, **kwargs)
            response["Contents"].append({"Key": "d/marker/", "Size": 0})
            return response

        self.client.list_objects_v2 = list_with_marker

        self.assertEqual((True, True, 0), self.entries("/d")["/d/marker"])

    def test_file_listing_returns_own_status(self):
        self.client.add_object("d/file.txt", b"abcd")

        statuses = self.listing.list_status("/d/file.txt")

        self.assertEqual(1, len(statuses))
        self.assertEqual("/d/file.txt", statuses[0].path)
        self.assertEqual(4, statuses[0].length)
        self.assertEqual(64, statuses[0].block_size)

    def test_root_listing(self):
        self.client.add_object("top.txt", b"x")
        self.client.add_object("dir/inner", b"y")

        self.assertEqual({"/top.txt": (False, None, 1), "/dir": (True, False, 0)}, self.entries("/"))
        self.assertNotIn("Prefix", self.client.calls_for("ListObjectsV2")[-1])

    def test_empty_directory_lists_nothing(self):
        self.client.add_object("e/", b"")

        self.assertEqual([], self.listing.list_status("/e"))

    def test_missing_path(self):
        with self.assertRaises(NotFoundError):
            self.listing.list_status("/missing")

    def test_listing_pages_until_exhausted(self):
        for index in range(12):
            self.client.add_object(f"many/f{index:02d}", b"x")
        self.make_engine(max_keys=5)

        statuses = self.listing.list_status("/many")

        self.assertEqual(12, len(statuses))
        paged = [call for call in self.client.calls_for("ListObjectsV2") if call.get("Delimiter") == "/" and call["MaxKeys"] == 5]
        self.assertEqual(3, len(paged))

    def test_iter_objects_is_recursive(self):
        self.client.add_object("t/a", b"")
        self.client.add_object("t/b/c", b"")
        self.client.add_object("t/b/d/e", b"")
        self.client.add_object("u/x", b"")

        keys = [summary.key for summary in self.listing.iter_objects("t/")]

        self.assertEqual(["t/a", "t/b/c", "t/b/d/e"], keys)


if __name__ == "__main__":
    unittest.main()
