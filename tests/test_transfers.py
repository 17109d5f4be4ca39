from concurrent.futures import CancelledError, ThreadPoolExecutor
import os
import tempfile
import threading
import unittest
from unittest import mock

from fake_s3 import MIB, FakeS3Client, InlineExecutorFactory, client_error, transfer_config
from s3a_filesystem.backend import S3ObjectStore
from s3a_filesystem.errors import BackendError, TransferCancelledError
from s3a_filesystem.settings import FileSystemSettings
from s3a_filesystem.transfers import (
    PendingTransfer,
    ProgressEventType,
    TransferManager,
    create_transfer_config,
    part_count,
    thread_pool_factory,
)


class Recorder:
    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def __call__(self, event):
        with self._lock:
            self.events.append(event)

    def types(self):
        return [event.event_type for event in self.events]


class TransferConfigTests(unittest.TestCase):
    def test_config_follows_settings(self):
        settings = FileSystemSettings(
            max_threads=3, max_total_tasks=2, multipart_size=6 * MIB, multipart_threshold=7 * MIB
        )

        config = create_transfer_config(settings)

        self.assertEqual(3, config.max_request_concurrency)
        self.assertEqual(6, config.max_request_queue_size)
        self.assertEqual(6 * MIB, config.multipart_chunksize)
        self.assertEqual(7 * MIB, config.multipart_threshold)

    def test_zero_threads_scales_with_cpu_count(self):
        with mock.patch("os.cpu_count", return_value=2):
            config = create_transfer_config(FileSystemSettings(max_threads=0, max_total_tasks=1))

        self.assertEqual(16, config.max_request_concurrency)
        self.assertEqual(16, config.max_request_queue_size)

    def test_part_count(self):
        config = transfer_config()

        self.assertEqual(3, part_count(11 * MIB, config))
        self.assertEqual(2, part_count(10 * MIB, config))
        self.assertEqual(1, part_count(0, config))

    def test_thread_pool_factory_names_threads(self):
        executor = thread_pool_factory("s3a-test")(max_workers=1)
        try:
            name = executor.submit(lambda: threading.current_thread().name).result()
        finally:
            executor.shutdown()

        self.assertTrue(name.startswith("s3a-test"))


class PendingTransferTests(unittest.TestCase):
    def make_transfer(self, future, recorder):
        return PendingTransfer("uploading x", "PutObject", "x", listeners=[recorder]).attach(future)

    def test_interrupted_wait_becomes_cancellation(self):
        recorder = Recorder()
        future = mock.Mock()
        future.result.side_effect = KeyboardInterrupt
        transfer = self.make_transfer(future, recorder)

        with self.assertRaisesRegex(TransferCancelledError, "Interrupted uploading x, cancelling"):
            transfer.wait_for_result()

        self.assertEqual([ProgressEventType.TRANSFER_CANCELED], recorder.types())

    def test_cancelled_future(self):
        recorder = Recorder()
        future = mock.Mock()
        future.result.side_effect = CancelledError()
        transfer = self.make_transfer(future, recorder)

        transfer.cancel()
        with self.assertRaises(TransferCancelledError):
            transfer.wait_for_result()

        future.cancel.assert_called_once_with()
        self.assertEqual([ProgressEventType.TRANSFER_CANCELED], recorder.types())

    def test_store_failure_is_translated(self):
        recorder = Recorder()
        future = mock.Mock()
        future.result.side_effect = client_error(503, "SlowDown", "PutObject")
        transfer = self.make_transfer(future, recorder)

        with self.assertRaises(BackendError) as ctx:
            transfer.wait_for_result()

        self.assertEqual(503, ctx.exception.status_code)
        self.assertEqual([ProgressEventType.TRANSFER_FAILED], recorder.types())


class TransferManagerTests(unittest.TestCase):
    def setUp(self):
        self.client = FakeS3Client("bucket")
        self.store = S3ObjectStore(self.client, "bucket", server_side_encryption="AES256")
        self.executors = InlineExecutorFactory()
        self.manager = TransferManager(self.store, transfer_config(), executor_cls=self.executors)
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def local_file(self, data):
        path = os.path.join(self.tmp.name, "source.bin")
        with open(path, "wb") as handle:
            handle.write(data)
        return path

    def test_small_upload_is_single_put(self):
        recorder = Recorder()
        path = self.local_file(b"payload")

        self.manager.upload_file("key", path, 7, listeners=[recorder]).wait_for_result()

        self.assertEqual(b"payload", self.client.body("key"))
        put = self.client.calls_for("PutObject")[0]
        self.assertEqual("AES256", put["ServerSideEncryption"])
        self.assertEqual(0, self.client.count("CreateMultipartUpload"))
        self.assertEqual(1, self.store.statistics.write_ops)
        self.assertEqual(
            [ProgressEventType.TRANSFER_STARTED, ProgressEventType.TRANSFER_COMPLETED],
            [t for t in recorder.types() if t is not ProgressEventType.BYTES_TRANSFERRED],
        )

    def test_large_upload_is_split_into_parts(self):
        data = os.urandom(11 * MIB)
        path = self.local_file(data)

        self.manager.upload_file("big", path, len(data)).wait_for_result()

        self.assertEqual(data, self.client.body("big"))
        self.assertEqual(3, self.client.count("UploadPart"))
        self.assertEqual(1, self.client.count("CompleteMultipartUpload"))
        self.assertEqual("AES256", self.client.calls_for("CreateMultipartUpload")[0]["ServerSideEncryption"])
        self.assertEqual(4, self.store.statistics.write_ops)
        self.assertEqual({}, self.client.uploads)

    def test_failed_part_aborts_upload(self):
        recorder = Recorder()
        path = self.local_file(b"x" * (11 * MIB))
        self.client.fail("UploadPart", client_error(500, "InternalError", "UploadPart"))

        with self.assertRaises(BackendError):
            self.manager.upload_file("big", path, 11 * MIB, listeners=[recorder]).wait_for_result()

        self.assertEqual(1, self.client.count("AbortMultipartUpload"))
        self.assertEqual({}, self.client.uploads)
        self.assertNotIn("big", self.client.objects)
        self.assertEqual(ProgressEventType.TRANSFER_FAILED, recorder.types()[-1])
        self.assertEqual(0, self.store.statistics.write_ops)

    def test_copy_clones_known_metadata(self):
        recorder = Recorder()
        self.client.add_object(
            "src", b"body", ContentType="text/plain", Metadata={"origin": "test"}
        )

        self.manager.copy("src", "dst", 4, listeners=[recorder]).wait_for_result()

        copy = self.client.calls_for("CopyObject")[0]
        self.assertEqual("REPLACE", copy["MetadataDirective"])
        self.assertEqual("text/plain", copy["ContentType"])
        self.assertEqual({"origin": "test"}, copy["Metadata"])
        self.assertEqual("AES256", copy["ServerSideEncryption"])
        self.assertNotIn("ETag", copy)
        self.assertEqual(b"body", self.client.body("dst"))
        self.assertEqual(1, self.client.count("HeadObject"))
        self.assertIn(ProgressEventType.BYTES_TRANSFERRED, recorder.types())

    def test_large_copy_uses_part_copies(self):
        data = b"y" * (11 * MIB)
        self.client.add_object("src", data, ContentType="application/x-test")

        self.manager.copy("src", "dst", len(data)).wait_for_result()

        part_copies = self.client.calls_for("UploadPartCopy")
        self.assertEqual(
            ["bytes=0-5242879", "bytes=5242880-10485759", "bytes=10485760-11534335"],
            [call["CopySourceRange"] for call in part_copies],
        )
        self.assertEqual(self.client.objects["src"]["ETag"], part_copies[0]["CopySourceIfMatch"])
        self.assertEqual("application/x-test", self.client.calls_for("CreateMultipartUpload")[0]["ContentType"])
        self.assertEqual(data, self.client.body("dst"))
        self.assertEqual(4, self.store.statistics.write_ops)

    def test_cancel_requested_aborts_multipart_copy(self):
        recorder = Recorder()
        self.client.add_object("src", b"z" * (11 * MIB))

        transfer = self.manager.copy("src", "dst", 11 * MIB, listeners=[recorder], cancel_requested=lambda: True)
        with self.assertRaises(TransferCancelledError):
            transfer.wait_for_result()

        self.assertEqual(1, self.client.count("UploadPartCopy"))
        self.assertEqual(1, self.client.count("AbortMultipartUpload"))
        self.assertEqual(0, self.client.count("CompleteMultipartUpload"))
        self.assertEqual({}, self.client.uploads)
        self.assertNotIn("dst", self.client.objects)
        self.assertEqual(ProgressEventType.TRANSFER_CANCELED, recorder.types()[-1])

    def test_shutdown_stops_every_pool(self):
        self.manager.shutdown()

        self.assertEqual(3, len(self.executors.executors))
        self.assertEqual([[True], [True], [True]], [e.shutdown_calls for e in self.executors.executors])


class ThreadedTransferTests(unittest.TestCase):
    def setUp(self):
        self.client = FakeS3Client("bucket")
        self.store = S3ObjectStore(self.client, "bucket")
        self.manager = TransferManager(
            self.store, transfer_config(concurrency=1), executor_cls=ThreadPoolExecutor
        )
        self.addCleanup(self.manager.shutdown)
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def test_cancel_while_parts_are_in_flight_aborts_upload(self):
        path = os.path.join(self.tmp.name, "big.bin")
        with open(path, "wb") as handle:
            handle.write(b"p" * (11 * MIB))
        second_part = threading.Event()
        release = threading.Event()

        def hold_second_part(request):
            if request["PartNumber"] == 2:
                second_part.set()
                release.wait(5)

        self.client.on("UploadPart", hold_second_part)
        transfer = self.manager.upload_file("big", path, 11 * MIB)

        self.assertTrue(second_part.wait(5))
        transfer.cancel()
        release.set()
        with self.assertRaises(TransferCancelledError):
            transfer.wait_for_result()

        self.assertEqual(1, self.client.count("AbortMultipartUpload"))
        self.assertEqual(0, self.client.count("CompleteMultipartUpload"))
        self.assertLessEqual(self.client.count("UploadPart"), 2)
        self.assertEqual({}, self.client.uploads)
        self.assertNotIn("big", self.client.objects)

    def test_threaded_upload_completes(self):
        data = os.urandom(16 * MIB)
        path = os.path.join(self.tmp.name, "parallel.bin")
        with open(path, "wb") as handle:
            handle.write(data)

        self.manager.upload_file("parallel", path, len(data)).wait_for_result()

        self.assertEqual(data, self.client.body("parallel"))
        self.assertEqual(4, self.client.count("UploadPart"))


if __name__ == "__main__":
    unittest.main()
