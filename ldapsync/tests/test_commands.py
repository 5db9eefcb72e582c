# type: ignore
from io import StringIO
from unittest.mock import patch

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import SimpleTestCase

from ldapsync.exceptions import DirectoryNotConfigured, DirectoryUnavailable
from ldapsync.provisioning import SyncReport


@patch("ldapsync.management.commands.sync_directory.DirectoryService")
class TestSyncDirectoryCommand(SimpleTestCase):

    def test_sync_active_directory_and_wait(self, service_class):
        service = service_class.return_value
        service.get_active.return_value.uuid = "abc"
        service.sync.return_value.result.return_value = SyncReport(found=4, inserted=3, failed=1)
        out = StringIO()
        call_command("sync_directory", "--wait", stdout=out)
        service.sync.assert_called_once_with("abc")
        self.assertIn("Directory abc: found 4, inserted 3, failed 1", out.getvalue())

    def test_sync_named_directory_in_background(self, service_class):
        service = service_class.return_value
        out = StringIO()
        call_command("sync_directory", "xyz", stdout=out)
        service.get_active.assert_not_called()
        service.sync.assert_called_once_with("xyz")
        service.sync.return_value.result.assert_not_called()
        self.assertIn("Started sync of directory xyz", out.getvalue())

    def test_not_configured(self, service_class):
        service_class.return_value.get_active.side_effect = DirectoryNotConfigured("nope")
        with self.assertRaises(CommandError):
            call_command("sync_directory")

    def test_connect_failure(self, service_class):
        service_class.return_value.sync.side_effect = DirectoryUnavailable("refused")
        with self.assertRaises(CommandError):
            call_command("sync_directory", "xyz")
