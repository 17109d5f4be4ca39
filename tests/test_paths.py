import unittest

from s3a_filesystem.paths import PathTranslator, basename, child, is_root, normalize_path, parent


class PathHelperTests(unittest.TestCase):
    def test_normalize_path(self):
        self.assertEqual("/", normalize_path(""))
        self.assertEqual("/", normalize_path("/"))
        self.assertEqual("/a/b", normalize_path("a/b/"))
        self.assertEqual("/a/b", normalize_path("//a//b"))
        self.assertEqual("/a", normalize_path("/a/b/.."))
        self.assertEqual("/dir/file", normalize_path("s3a://bucket/dir/file"))
        self.assertEqual("/", normalize_path("s3a://bucket"))

    def test_parent_and_basename(self):
        self.assertIsNone(parent("/"))
        self.assertEqual("/", parent("/a"))
        self.assertEqual("/a", parent("/a/b.txt"))
        self.assertEqual("b.txt", basename("/a/b.txt"))
        self.assertTrue(is_root("s3a://bucket/"))

    def test_child(self):
        self.assertEqual("/a/b", child("/a", "b/"))
        with self.assertRaises(ValueError):
            child("/a", " / ")


class PathTranslatorTests(unittest.TestCase):
    def setUp(self):
        self.translator = PathTranslator("bucket", "/user/alice")

    def test_root_maps_to_empty_key(self):
        self.assertEqual("", self.translator.path_to_key("/"))

    def test_absolute_path_strips_separator(self):
        self.assertEqual("dir/file.txt", self.translator.path_to_key("/dir/file.txt"))
        self.assertEqual("dir/file.txt", self.translator.path_to_key("s3a://bucket/dir/file.txt"))

    def test_relative_path_resolves_against_working_directory(self):
        self.assertEqual("user/alice/data/x", self.translator.path_to_key("data/x"))

        self.translator.working_directory = "/tmp"

        self.assertEqual("tmp/data/x", self.translator.path_to_key("data/x"))
        self.assertEqual("/tmp", self.translator.working_directory)

    def test_key_to_path(self):
        self.assertEqual("/", self.translator.key_to_path(""))
        self.assertEqual("/a/b", self.translator.key_to_path("a/b/"))

    def test_qualify(self):
        self.assertEqual("s3a://bucket/user/alice/f", self.translator.qualify("f"))


if __name__ == "__main__":
    unittest.main()
